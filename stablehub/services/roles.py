"""
Static role registry for facility designations.

Each designation maps to a hierarchy level (higher is more privileged), the
department it belongs to, and the set of named permissions it carries. The
registry is built once at import time and is read-only afterwards.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Optional


UNKNOWN_LEVEL = -1

GROUND_OPERATIONS = "Ground Operations"
STABLE_OPERATIONS = "Stable Operations"
ACCOUNTS_ADMINISTRATION = "Accounts/Administration"
LEADERSHIP = "Leadership"


@dataclass(frozen=True)
class RoleDefinition:
    name: str
    level: int
    department: str
    permissions: FrozenSet[str]


class RoleRegistry:
    """Read-only lookup over a fixed set of role definitions."""

    def __init__(self, roles: Iterable[RoleDefinition]):
        by_name: Dict[str, RoleDefinition] = {}
        by_department: Dict[str, set] = {}
        for role in roles:
            if role.name in by_name:
                raise ValueError(f"Duplicate role definition: {role.name}")
            by_name[role.name] = role
            by_department.setdefault(role.department, set()).add(role.name)
        self._roles: Mapping[str, RoleDefinition] = MappingProxyType(by_name)
        self._departments: Mapping[str, FrozenSet[str]] = MappingProxyType(
            {dept: frozenset(names) for dept, names in by_department.items()}
        )

    @property
    def role_names(self) -> FrozenSet[str]:
        return frozenset(self._roles)

    @property
    def departments(self) -> FrozenSet[str]:
        return frozenset(self._departments)

    def get(self, role: Optional[str]) -> Optional[RoleDefinition]:
        if not role:
            return None
        return self._roles.get(role)

    def is_known_role(self, role: Optional[str]) -> bool:
        return self.get(role) is not None

    def get_permissions(self, role: Optional[str]) -> FrozenSet[str]:
        definition = self.get(role)
        return definition.permissions if definition else frozenset()

    def get_hierarchy_level(self, role: Optional[str]) -> int:
        definition = self.get(role)
        return definition.level if definition else UNKNOWN_LEVEL

    def get_department(self, role: Optional[str]) -> Optional[str]:
        definition = self.get(role)
        return definition.department if definition else None

    def get_department_roles(self, department: Optional[str]) -> FrozenSet[str]:
        if not department:
            return frozenset()
        return self._departments.get(department, frozenset())


def _role(name: str, level: int, department: str, *permissions: str) -> RoleDefinition:
    return RoleDefinition(name=name, level=level, department=department, permissions=frozenset(permissions))


FACILITY_ROLES = (
    # Ground Operations
    _role("Guard", 1, GROUND_OPERATIONS,
          "log_gate_attendance", "log_visitor", "view_own_attendance", "submit_task_update"),
    _role("Gardener", 1, GROUND_OPERATIONS,
          "log_attendance", "view_assigned_tasks", "submit_task_completion", "upload_photos"),
    _role("Housekeeping", 1, GROUND_OPERATIONS,
          "log_attendance", "fill_cleaning_checklist", "upload_room_photos", "view_assigned_tasks"),
    _role("Electrician", 1, GROUND_OPERATIONS,
          "log_attendance_by_shift", "log_work_performed", "mark_issue_status", "upload_evidence"),
    _role("Ground Supervisor", 2, GROUND_OPERATIONS,
          "view_team_attendance", "assign_daily_tasks", "approve_reject_tasks",
          "view_activity_logs", "escalate_to_admin"),

    # Stable Operations
    _role("Groom", 1, STABLE_OPERATIONS,
          "view_assigned_horses", "mark_task_completion", "add_activity_notes", "submit_horse_care_logs"),
    _role("Riding Boy", 1, STABLE_OPERATIONS,
          "log_attendance", "log_horse_activity", "submit_task_updates", "view_assigned_horses"),
    _role("Rider", 1, STABLE_OPERATIONS,
          "log_attendance", "log_horse_activity", "complete_cleaning_checklist",
          "submit_task_updates", "upload_photos"),
    _role("Farrier", 1, STABLE_OPERATIONS,
          "log_farrier_visits", "record_hoof_work", "schedule_next_visit", "upload_before_after_photos"),
    _role("Jamedar", 1, STABLE_OPERATIONS,
          "log_medicine_administration", "record_treatment_notes", "flag_low_stock", "upload_treatment_photos"),
    _role("Instructor", 2, STABLE_OPERATIONS,
          "update_training_logs", "add_feed_notes", "review_groom_activity",
          "suggest_medical_attention", "view_horse_care_logs"),
    _role("Stable Manager", 3, STABLE_OPERATIONS,
          "assign_horses_to_staff", "assign_tasks", "approve_groom_logs", "approve_medicine_entries",
          "approve_instructor_updates", "view_feed_compliance", "view_medical_alerts", "escalate_to_director"),

    # Accounts / Administration
    _role("Executive Admin", 1, ACCOUNTS_ADMINISTRATION,
          "create_vouchers", "upload_receipts", "submit_for_approval"),
    _role("Executive Accounts", 1, ACCOUNTS_ADMINISTRATION,
          "create_vouchers", "create_bills", "upload_receipts", "submit_for_approval"),
    _role("Senior Executive Accounts", 2, ACCOUNTS_ADMINISTRATION,
          "approve_bills", "export_reports", "lock_entries", "view_all_financials"),

    # Leadership
    _role("School Administrator", 4, LEADERSHIP,
          "view_all_dashboards", "override_approvals", "assign_temporary_roles", "generate_reports",
          "escalate_issues", "view_all_employees", "view_all_horses"),
    _role("Director", 5, LEADERSHIP,
          "full_system_access", "manage_all_roles", "revoke_approvals", "manage_master_data",
          "system_configuration", "override_any_decision"),
    _role("Super Admin", 5, LEADERSHIP,
          "full_system_access", "manage_all_roles", "system_configuration"),
)


default_registry = RoleRegistry(FACILITY_ROLES)
