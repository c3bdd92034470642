from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from accessflow.core.rbac import Permission


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


class SessionSnapshot(BaseModel):
    """Immutable per-request view of who the caller is and what they may do.

    Refreshing never mutates a snapshot; it produces a new one.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str
    role: str
    permissions: frozenset[Permission]
    config_version: int
    stale: bool = False


class SessionUser(BaseModel):
    id: str
    username: str
    role: str
    permissions: list[Permission]


class CurrentSession(BaseModel):
    is_authenticated: bool
    user: Optional[SessionUser] = None
    stale: bool = False
    config_version: int


class UserPublic(BaseModel):
    user_id: str
    username: str
    full_name: str
    role_id: str
    role: str
    manager_id: Optional[str] = None
    department_id: Optional[str] = None
    is_active: bool = True


class UserRecord(UserPublic):
    hashed_password: str


class EmployeeDirectory(BaseModel):
    scope: str
    employees: list[UserPublic] = Field(default_factory=list)
