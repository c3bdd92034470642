from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from accessflow.core.rbac import Permission


class PermissionRecord(BaseModel):
    code: Permission
    name: str
    module: str
    resource: str
    action: str
    description: str


class RoleCreate(BaseModel):
    name: str = Field(min_length=2, max_length=80)
    code: str = Field(min_length=2, max_length=40, pattern=r"^[A-Z][A-Z0-9_]*$")
    description: Optional[str] = Field(default=None, max_length=250)
    is_active: bool = True
    permissions: list[Permission] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=80)
    description: Optional[str] = Field(default=None, max_length=250)
    is_active: Optional[bool] = None


class RoleRecord(BaseModel):
    role_id: str
    name: str
    code: str
    description: Optional[str] = None
    is_system_role: bool = False
    is_active: bool = True
    permissions: list[Permission] = Field(default_factory=list)
    uses_fallback: bool = False
    created_at: datetime
    updated_at: datetime


class RolePermissionsUpdate(BaseModel):
    permissions: list[Permission]


class UserRoleAssignment(BaseModel):
    role_id: str


class UserPermissions(BaseModel):
    user_id: str
    role: str
    permissions: list[Permission]


class AuditEvent(BaseModel):
    timestamp: datetime
    event_type: str
    actor_id: str
    actor_role: str
    details: dict[str, Any]
