from __future__ import annotations

from typing import Any

from accessflow.core.errors import AuthorizationError
from accessflow.core.rbac import Scope, held_scope, parse_permissions
from accessflow.core.security import create_access_token, hash_password, verify_password
from accessflow.models.auth import (
    CurrentSession,
    EmployeeDirectory,
    SessionSnapshot,
    SessionUser,
    Token,
    UserPublic,
)
from accessflow.repositories.data_store import DataStore
from accessflow.services.audit_service import EventLogger
from accessflow.services.permission_service import PermissionService


class AuthService:
    def __init__(
        self,
        store: DataStore,
        event_logger: EventLogger,
        permission_service: PermissionService,
        seed: bool = True,
    ) -> None:
        self.store = store
        self.event_logger = event_logger
        self.permission_service = permission_service
        if seed:
            self._seed_users()

    def _seed_users(self) -> None:
        departments = [
            {"department_id": "dept-ops", "name": "Operations", "head_id": "u-admin-001"},
            {"department_id": "dept-people", "name": "People", "head_id": "u-hr-001"},
            {"department_id": "dept-eng", "name": "Engineering", "head_id": "u-mgr-001"},
            {"department_id": "dept-fin", "name": "Finance", "head_id": "u-fin-001"},
        ]
        seed = [
            {
                "user_id": "u-admin-001",
                "username": "admin",
                "full_name": "Morgan Ellis",
                "role_id": "role-admin",
                "manager_id": None,
                "department_id": "dept-ops",
                "password": "admin123",
            },
            {
                "user_id": "u-hr-001",
                "username": "hr_dana",
                "full_name": "Dana Whitfield",
                "role_id": "role-hr",
                "manager_id": "u-admin-001",
                "department_id": "dept-people",
                "password": "people2024",
            },
            {
                "user_id": "u-mgr-001",
                "username": "mgr_omar",
                "full_name": "Omar Haddad",
                "role_id": "role-manager",
                "manager_id": "u-admin-001",
                "department_id": "dept-eng",
                "password": "teamlead2024",
            },
            {
                "user_id": "u-emp-001",
                "username": "emp_lena",
                "full_name": "Lena Fischer",
                "role_id": "role-employee",
                "manager_id": "u-mgr-001",
                "department_id": "dept-eng",
                "password": "staff2024",
            },
            {
                "user_id": "u-emp-002",
                "username": "emp_raj",
                "full_name": "Raj Mehta",
                "role_id": "role-employee",
                "manager_id": "u-mgr-001",
                "department_id": "dept-eng",
                "password": "staff2025",
            },
            {
                "user_id": "u-fin-001",
                "username": "fin_riley",
                "full_name": "Riley Chen",
                "role_id": "role-finance",
                "manager_id": "u-admin-001",
                "department_id": "dept-fin",
                "password": "finance123",
            },
        ]

        with self.store.lock:
            if self.store.users:
                return
            for department in departments:
                self.store.departments[department["department_id"]] = dict(department)
            for user in seed:
                record = {
                    **user,
                    "is_active": True,
                    "hashed_password": hash_password(user["password"]),
                }
                del record["password"]
                self.store.users[record["user_id"]] = record

    def authenticate(self, username: str, password: str) -> dict[str, Any] | None:
        with self.store.lock:
            users = list(self.store.users.values())
        user = next((u for u in users if u["username"] == username), None)
        if not user or not user.get("is_active", True):
            return None
        if not verify_password(password, user["hashed_password"]):
            return None
        return user

    def issue_token(self, user: dict[str, Any]) -> Token:
        session = self.permission_service.build_session(user)
        return self.token_for(session)

    def token_for(self, session: SessionSnapshot) -> Token:
        token, expires_at = create_access_token(
            subject=session.user_id,
            role=session.role,
            permissions=session.permissions,
            config_version=session.config_version,
        )
        self.event_logger.log_event(
            event_type="auth_login",
            actor_id=session.user_id,
            actor_role=session.role,
            details={"username": session.username, "config_version": session.config_version},
        )
        return Token(access_token=token, expires_at=expires_at)

    def session_from_claims(self, claims: dict[str, Any]) -> SessionSnapshot:
        user = self.require_user(claims["sub"])
        return SessionSnapshot(
            user_id=user["user_id"],
            username=user["username"],
            role=claims.get("role", ""),
            permissions=parse_permissions(claims.get("perms", [])),
            config_version=int(claims.get("cfg", 0)),
        )

    def require_user(self, user_id: str) -> dict[str, Any]:
        with self.store.lock:
            user = self.store.users.get(user_id)
        if not user or not user.get("is_active", True):
            raise AuthorizationError("User not found or inactive")
        return user

    def current_session(self, session: SessionSnapshot) -> CurrentSession:
        return CurrentSession(
            is_authenticated=True,
            user=SessionUser(
                id=session.user_id,
                username=session.username,
                role=session.role,
                permissions=sorted(session.permissions, key=lambda p: p.value),
            ),
            stale=session.stale,
            config_version=session.config_version,
        )

    def as_public(self, user: dict[str, Any]) -> UserPublic:
        role = self.permission_service.role_for(user)
        return UserPublic(
            user_id=user["user_id"],
            username=user["username"],
            full_name=user["full_name"],
            role_id=user["role_id"],
            role=role["name"] if role else "",
            manager_id=user.get("manager_id"),
            department_id=user.get("department_id"),
            is_active=bool(user.get("is_active", True)),
        )

    def list_employees(self, session: SessionSnapshot) -> EmployeeDirectory:
        scope = held_scope(session.permissions, "hrms.employee.read")
        if scope is None:
            raise AuthorizationError("Insufficient permissions")

        with self.store.lock:
            users = list(self.store.users.values())

        if scope == Scope.ALL:
            visible = users
        elif scope == Scope.TEAM:
            visible = [
                u for u in users
                if u.get("manager_id") == session.user_id or u["user_id"] == session.user_id
            ]
        else:
            visible = [u for u in users if u["user_id"] == session.user_id]

        return EmployeeDirectory(scope=scope.value, employees=[self.as_public(u) for u in visible])
