import pytest

from stablehub.services.roles import (
    FACILITY_ROLES,
    LEADERSHIP,
    STABLE_OPERATIONS,
    UNKNOWN_LEVEL,
    RoleRegistry,
    default_registry,
)


class TestRoleRegistry:
    def test_hierarchy_levels(self):
        assert default_registry.get_hierarchy_level("Groom") == 1
        assert default_registry.get_hierarchy_level("Ground Supervisor") == 2
        assert default_registry.get_hierarchy_level("Stable Manager") == 3
        assert default_registry.get_hierarchy_level("School Administrator") == 4
        assert default_registry.get_hierarchy_level("Director") == 5
        assert default_registry.get_hierarchy_level("Super Admin") == 5

    def test_unknown_role_never_raises(self):
        assert default_registry.get_hierarchy_level("Wizard") == UNKNOWN_LEVEL
        assert default_registry.get_hierarchy_level(None) == UNKNOWN_LEVEL
        assert default_registry.get_permissions("Wizard") == frozenset()
        assert default_registry.get_department("Wizard") is None
        assert not default_registry.is_known_role("")

    def test_permissions_are_frozen(self):
        perms = default_registry.get_permissions("Stable Manager")
        assert isinstance(perms, frozenset)
        assert "assign_tasks" in perms
        assert "escalate_to_director" in perms

    def test_department_roles(self):
        stable = default_registry.get_department_roles(STABLE_OPERATIONS)
        assert {"Groom", "Riding Boy", "Rider", "Farrier", "Jamedar", "Instructor", "Stable Manager"} == set(stable)
        assert default_registry.get_department_roles(LEADERSHIP) == frozenset(
            {"School Administrator", "Director", "Super Admin"}
        )
        assert default_registry.get_department_roles("Kitchen") == frozenset()

    def test_every_role_registered_once(self):
        assert len(default_registry.role_names) == len(FACILITY_ROLES) == 18
        assert len(default_registry.departments) == 4

    def test_duplicate_definitions_rejected(self):
        with pytest.raises(ValueError):
            RoleRegistry(FACILITY_ROLES + FACILITY_ROLES[:1])

    def test_registry_has_no_mutators(self):
        role = default_registry.get("Groom")
        with pytest.raises(Exception):
            role.level = 9
        assert default_registry.get_hierarchy_level("Groom") == 1
