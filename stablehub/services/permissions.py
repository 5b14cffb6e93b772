"""
Permission checking for designations.

Endpoint rules are keyed by ``"METHOD /route/template"``. A rule lists the
designations allowed through, or the wildcard ``"all"`` for any recognized
designation. Endpoints without a rule are denied.
"""
from types import MappingProxyType
from typing import FrozenSet, Iterable, Mapping, Optional

from .roles import RoleRegistry, default_registry


ALL_ROLES = "all"

APPROVER_ROLES = frozenset({
    "Ground Supervisor",
    "Stable Manager",
    "School Administrator",
    "Director",
    "Super Admin",
})

TASK_ASSIGNER_ROLES = frozenset({
    "Ground Supervisor",
    "Stable Manager",
    "School Administrator",
    "Director",
    "Super Admin",
})

ADMIN_ROLES = frozenset({
    "School Administrator",
    "Director",
    "Super Admin",
})

# Roles whose task list shows the tasks they created rather than the ones assigned to them
CREATOR_VIEW_ROLES = frozenset({
    "Super Admin",
    "Director",
    "School Administrator",
    "Stable Manager",
    "Ground Supervisor",
    "Jamedar",
})

OVERRIDE_PERMISSIONS = frozenset({"override_approvals", "override_any_decision", "full_system_access"})

EMPLOYEE_VIEWERS = ("Ground Supervisor", "Stable Manager", "School Administrator", "Director", "Super Admin")
EMPLOYEE_MANAGERS = ("Director", "School Administrator", "Super Admin")
HORSE_VIEWERS = (
    "Groom", "Riding Boy", "Rider", "Instructor", "Stable Manager", "Jamedar", "Farrier",
    "School Administrator", "Director", "Super Admin",
)
HORSE_EDITORS = ("Stable Manager", "Director", "Super Admin")
ATTENDANCE_MARKERS = ("Ground Supervisor", "Stable Manager", "School Administrator", "Director", "Super Admin")
WORKSHEET_AUTHORS = ("Groom", "Stable Manager", "School Administrator", "Director", "Super Admin")
WORKSHEET_VIEWERS = WORKSHEET_AUTHORS + ("Instructor",)

ENDPOINT_RULES = {
    "GET /api/tasks": (ALL_ROLES,),
    "POST /api/tasks": tuple(sorted(TASK_ASSIGNER_ROLES)),
    "GET /api/tasks/my-tasks": (ALL_ROLES,),
    "GET /api/tasks/{task_id}": (ALL_ROLES,),
    "DELETE /api/tasks/{task_id}": (ALL_ROLES,),
    "PATCH /api/tasks/{task_id}/start": (ALL_ROLES,),
    "PATCH /api/tasks/{task_id}/submit-completion": (ALL_ROLES,),
    "POST /api/tasks/{task_id}/approve": tuple(sorted(APPROVER_ROLES)),
    "POST /api/tasks/{task_id}/reject": tuple(sorted(APPROVER_ROLES)),
    "POST /api/tasks/{task_id}/cancel": (ALL_ROLES,),
    "POST /api/tasks/{task_id}/override": tuple(sorted(ADMIN_ROLES)),
    "GET /api/tasks/{task_id}/approvals": (ALL_ROLES,),

    "GET /api/approvals": tuple(sorted(APPROVER_ROLES)),
    "POST /api/approvals/escalate": tuple(sorted(ADMIN_ROLES)),

    "GET /api/employees": EMPLOYEE_VIEWERS,
    "POST /api/employees": EMPLOYEE_MANAGERS,
    "GET /api/employees/{employee_id}": EMPLOYEE_VIEWERS,
    "PATCH /api/employees/{employee_id}/approve": EMPLOYEE_MANAGERS,
    "PUT /api/employees/{employee_id}/supervisor": EMPLOYEE_MANAGERS,
    "GET /api/employees/{employee_id}/hierarchy": EMPLOYEE_VIEWERS,

    "GET /api/horses": HORSE_VIEWERS,
    "POST /api/horses": HORSE_EDITORS,
    "GET /api/horses/{horse_id}": HORSE_VIEWERS,

    "GET /api/notifications": (ALL_ROLES,),
    "PUT /api/notifications/{notification_id}/read": (ALL_ROLES,),

    "GET /api/audit-logs": tuple(sorted(ADMIN_ROLES)),

    "GET /api/attendance": ATTENDANCE_MARKERS,
    "POST /api/attendance": ATTENDANCE_MARKERS,
    "GET /api/attendance/me": (ALL_ROLES,),

    "GET /api/grooming/worksheets": WORKSHEET_VIEWERS,
    "POST /api/grooming/worksheets": WORKSHEET_AUTHORS,
    "GET /api/grooming/worksheets/{worksheet_id}": WORKSHEET_VIEWERS,
}


class PermissionChecker:
    def __init__(
        self,
        registry: RoleRegistry,
        endpoint_rules: Mapping[str, Iterable[str]],
        approver_roles: Iterable[str] = APPROVER_ROLES,
        task_assigner_roles: Iterable[str] = TASK_ASSIGNER_ROLES,
        admin_roles: Iterable[str] = ADMIN_ROLES,
        creator_view_roles: Iterable[str] = CREATOR_VIEW_ROLES,
    ):
        self.registry = registry
        self._rules: Mapping[str, FrozenSet[str]] = MappingProxyType(
            {_normalize_key(key): frozenset(roles) for key, roles in endpoint_rules.items()}
        )
        self._approvers = frozenset(approver_roles)
        self._assigners = frozenset(task_assigner_roles)
        self._admins = frozenset(admin_roles)
        self._creator_view = frozenset(creator_view_roles)

    def can_access_endpoint(self, role: Optional[str], method: str, path: str) -> bool:
        if not self.registry.is_known_role(role):
            return False
        allowed = self._rules.get(_normalize_key(f"{method} {path}"))
        if not allowed:
            return False
        if ALL_ROLES in allowed:
            return True
        return role in allowed

    def has_permission(self, role: Optional[str], permission: str) -> bool:
        return permission in self.registry.get_permissions(role)

    def can_approve(self, role: Optional[str]) -> bool:
        return role in self._approvers

    def can_assign_tasks(self, role: Optional[str]) -> bool:
        return role in self._assigners

    def is_admin(self, role: Optional[str]) -> bool:
        return role in self._admins

    def sees_created_tasks(self, role: Optional[str]) -> bool:
        return role in self._creator_view

    def can_override(self, role: Optional[str]) -> bool:
        return bool(self.registry.get_permissions(role) & OVERRIDE_PERMISSIONS)


def _normalize_key(key: str) -> str:
    method, _, path = key.strip().partition(" ")
    path = path.strip()
    if len(path) > 1:
        path = path.rstrip("/")
    return f"{method.upper()} {path}"


def build_permission_checker(registry: RoleRegistry = default_registry) -> PermissionChecker:
    return PermissionChecker(registry, ENDPOINT_RULES)

