from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any, Literal, Union

from accessflow.core.errors import UnknownPermissionError


class Permission(str, Enum):
    DASHBOARD_READ = "dashboard.read"
    HRMS_EMPLOYEE_READ_ALL = "hrms.employee.read.all"
    HRMS_EMPLOYEE_READ_TEAM = "hrms.employee.read.team"
    HRMS_EMPLOYEE_READ_SELF = "hrms.employee.read.self"
    HRMS_LEAVE_APPROVE = "hrms.leave.approve"
    FINANCIAL_INVOICE_MANAGE = "financial.invoice.manage"
    OS_GOAL_READ_ALL = "os.goal.read.all"
    OS_GOAL_READ_TEAM = "os.goal.read.team"
    OS_GOAL_READ_SELF = "os.goal.read.self"
    SECURITY_READ = "security.read"
    SECURITY_MANAGE = "security.manage"


class RoleCode(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    HR = "HR"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"
    FINANCE = "FINANCE"
    AUDITOR = "AUDITOR"


class Scope(str, Enum):
    ALL = "all"
    TEAM = "team"
    SELF = "self"


# (name, description) per catalog entry; module/resource/action derive from the code.
PERMISSION_CATALOG: dict[Permission, tuple[str, str]] = {
    Permission.DASHBOARD_READ: ("Read dashboard summary", "View dashboard summary metrics"),
    Permission.HRMS_EMPLOYEE_READ_ALL: ("Read all employees", "View all employee records"),
    Permission.HRMS_EMPLOYEE_READ_TEAM: ("Read team employees", "View direct reportee employee records"),
    Permission.HRMS_EMPLOYEE_READ_SELF: ("Read own employee record", "View own employee record"),
    Permission.HRMS_LEAVE_APPROVE: ("Approve leave", "Approve or reject leave requests"),
    Permission.FINANCIAL_INVOICE_MANAGE: ("Manage invoices", "Create, update, and approve invoices"),
    Permission.OS_GOAL_READ_ALL: ("Read all goals", "View all goals"),
    Permission.OS_GOAL_READ_TEAM: ("Read team goals", "View goals for direct reportees"),
    Permission.OS_GOAL_READ_SELF: ("Read own goals", "View own goals"),
    Permission.SECURITY_READ: ("Read security configuration", "View roles, permissions, and workflows"),
    Permission.SECURITY_MANAGE: (
        "Manage security configuration",
        "Create/update roles, permissions, workflows, and assignments",
    ),
}

ALL_PERMISSIONS: frozenset[Permission] = frozenset(Permission)

ROLE_PERMISSION_FALLBACK: dict[RoleCode, frozenset[Permission]] = {
    RoleCode.SUPER_ADMIN: ALL_PERMISSIONS,
    RoleCode.ADMIN: ALL_PERMISSIONS,
    RoleCode.HR: frozenset({
        Permission.DASHBOARD_READ,
        Permission.HRMS_EMPLOYEE_READ_ALL,
        Permission.HRMS_LEAVE_APPROVE,
        Permission.OS_GOAL_READ_ALL,
        Permission.SECURITY_READ,
    }),
    RoleCode.MANAGER: frozenset({
        Permission.DASHBOARD_READ,
        Permission.HRMS_EMPLOYEE_READ_TEAM,
        Permission.HRMS_EMPLOYEE_READ_SELF,
        Permission.HRMS_LEAVE_APPROVE,
        Permission.OS_GOAL_READ_TEAM,
        Permission.OS_GOAL_READ_SELF,
    }),
    RoleCode.EMPLOYEE: frozenset({
        Permission.DASHBOARD_READ,
        Permission.HRMS_EMPLOYEE_READ_SELF,
        Permission.OS_GOAL_READ_SELF,
    }),
    RoleCode.FINANCE: frozenset({
        Permission.DASHBOARD_READ,
        Permission.FINANCIAL_INVOICE_MANAGE,
        Permission.HRMS_EMPLOYEE_READ_ALL,
        Permission.OS_GOAL_READ_ALL,
    }),
    RoleCode.AUDITOR: frozenset({
        Permission.DASHBOARD_READ,
        Permission.HRMS_EMPLOYEE_READ_ALL,
        Permission.FINANCIAL_INVOICE_MANAGE,
        Permission.OS_GOAL_READ_ALL,
        Permission.SECURITY_READ,
    }),
}

Required = Union[str, Permission, Iterable[Union[str, Permission]]]


def describe(permission: Permission) -> dict[str, str]:
    module, resource, *rest = permission.value.split(".")
    name, description = PERMISSION_CATALOG[permission]
    return {
        "code": permission.value,
        "name": name,
        "module": module,
        "resource": resource,
        "action": "_".join(rest),
        "description": description,
    }


def role_code_for(role: str | None) -> RoleCode | None:
    """Map a role display name ("Super Admin") or code ("SUPER_ADMIN") to a RoleCode."""
    if not role:
        return None
    normalized = role.strip().upper().replace(" ", "_").replace("-", "_")
    try:
        return RoleCode(normalized)
    except ValueError:
        return None


def parse_permissions(values: Iterable[str]) -> frozenset[Permission]:
    parsed: set[Permission] = set()
    unknown: list[str] = []
    for value in values:
        try:
            parsed.add(Permission(value))
        except ValueError:
            unknown.append(str(value))
    if unknown:
        raise UnknownPermissionError(unknown)
    return frozenset(parsed)


def fallback_permissions(role: str | None) -> frozenset[Permission]:
    code = role_code_for(role)
    if code is None:
        return frozenset()
    return ROLE_PERMISSION_FALLBACK[code]


def resolve_permissions(user: Mapping[str, Any]) -> frozenset[Permission]:
    explicit = user.get("permissions")
    if explicit is not None:
        return parse_permissions(explicit)
    return fallback_permissions(user.get("role"))


def can(
    permissions: Iterable[str],
    required: Required,
    mode: Literal["any", "all"] = "any",
) -> bool:
    held = permissions if isinstance(permissions, (set, frozenset)) else set(permissions)
    if isinstance(required, str):
        return required in held

    wanted = list(required)
    if not wanted:
        return False
    if mode == "all":
        return all(p in held for p in wanted)
    return any(p in held for p in wanted)


def held_scope(permissions: Iterable[str], base: str) -> Scope | None:
    """Broadest scope held for a scoped permission such as ``hrms.employee.read``."""
    held = set(permissions)
    for scope in (Scope.ALL, Scope.TEAM, Scope.SELF):
        if f"{base}.{scope.value}" in held:
            return scope
    return None
