from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from accessflow.api.deps import require_permission
from accessflow.core.rbac import Permission
from accessflow.models.auth import SessionSnapshot
from accessflow.models.security import (
    AuditEvent,
    PermissionRecord,
    RoleCreate,
    RolePermissionsUpdate,
    RoleRecord,
    RoleUpdate,
    UserPermissions,
    UserRoleAssignment,
)
from accessflow.services.container import event_logger, security_service


router = APIRouter(prefix="/security", tags=["Security"])

can_read = require_permission(Permission.SECURITY_READ, Permission.SECURITY_MANAGE)
can_manage = require_permission(Permission.SECURITY_MANAGE)


@router.get("/permissions", response_model=list[PermissionRecord])
def list_permissions(current_user: SessionSnapshot = Depends(can_read)) -> list[PermissionRecord]:
    _ = current_user
    return security_service.list_permissions()


@router.get("/roles", response_model=list[RoleRecord])
def list_roles(
    active_only: bool = False,
    current_user: SessionSnapshot = Depends(can_read),
) -> list[RoleRecord]:
    _ = current_user
    return security_service.list_roles(active_only)


@router.get("/roles/{role_id}", response_model=RoleRecord)
def get_role(role_id: str, current_user: SessionSnapshot = Depends(can_read)) -> RoleRecord:
    _ = current_user
    return security_service.get_role(role_id)


@router.post("/roles", response_model=RoleRecord, status_code=status.HTTP_201_CREATED)
def create_role(payload: RoleCreate, current_user: SessionSnapshot = Depends(can_manage)) -> RoleRecord:
    return security_service.create_role(current_user, payload)


@router.put("/roles/{role_id}", response_model=RoleRecord)
def update_role(
    role_id: str,
    payload: RoleUpdate,
    current_user: SessionSnapshot = Depends(can_manage),
) -> RoleRecord:
    return security_service.update_role(current_user, role_id, payload)


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_role(role_id: str, current_user: SessionSnapshot = Depends(can_manage)) -> Response:
    security_service.delete_role(current_user, role_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/roles/{role_id}/permissions", response_model=RoleRecord)
def set_role_permissions(
    role_id: str,
    payload: RolePermissionsUpdate,
    current_user: SessionSnapshot = Depends(can_manage),
) -> RoleRecord:
    return security_service.set_role_permissions(current_user, role_id, payload.permissions)


@router.get("/users/{user_id}/permissions", response_model=UserPermissions)
def get_user_permissions(user_id: str, current_user: SessionSnapshot = Depends(can_read)) -> UserPermissions:
    _ = current_user
    return security_service.user_permissions(user_id)


@router.put("/users/{user_id}/role", response_model=UserPermissions)
def assign_user_role(
    user_id: str,
    payload: UserRoleAssignment,
    current_user: SessionSnapshot = Depends(can_manage),
) -> UserPermissions:
    return security_service.assign_user_role(current_user, user_id, payload.role_id)


@router.get("/audit/events", response_model=list[AuditEvent])
def get_recent_events(
    limit: int = Query(default=100, ge=1, le=1000),
    event_type: Optional[str] = None,
    current_user: SessionSnapshot = Depends(can_read),
) -> list[AuditEvent]:
    _ = current_user
    return [AuditEvent(**e) for e in event_logger.recent_events(limit=limit, event_type=event_type)]
