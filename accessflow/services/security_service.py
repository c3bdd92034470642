from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from accessflow.core.errors import ConflictError, NotFoundError
from accessflow.core.rbac import Permission, RoleCode, describe
from accessflow.models.auth import SessionSnapshot
from accessflow.models.security import (
    PermissionRecord,
    RoleCreate,
    RoleRecord,
    RoleUpdate,
    UserPermissions,
)
from accessflow.repositories.data_store import DataStore
from accessflow.services.audit_service import EventLogger
from accessflow.services.permission_service import PermissionService

SYSTEM_ROLE_NAMES: dict[RoleCode, str] = {
    RoleCode.SUPER_ADMIN: "Super Admin",
    RoleCode.ADMIN: "Admin",
    RoleCode.HR: "HR",
    RoleCode.MANAGER: "Manager",
    RoleCode.EMPLOYEE: "Employee",
    RoleCode.FINANCE: "Finance",
    RoleCode.AUDITOR: "Auditor",
}


class SecurityService:
    def __init__(
        self,
        store: DataStore,
        event_logger: EventLogger,
        permission_service: PermissionService,
    ) -> None:
        self.store = store
        self.event_logger = event_logger
        self.permission_service = permission_service
        self._seed_roles()

    @staticmethod
    def _iso_now() -> str:
        return datetime.now(timezone.utc).isoformat()

    def _seed_roles(self) -> None:
        # System roles start without permission links, so the static fallback
        # table answers for them until an operator assigns permissions.
        now = self._iso_now()
        with self.store.lock:
            if self.store.roles:
                return
            for code, name in SYSTEM_ROLE_NAMES.items():
                role_id = f"role-{code.value.lower().replace('_', '-')}"
                self.store.roles[role_id] = {
                    "role_id": role_id,
                    "name": name,
                    "code": code.value,
                    "description": f"{name} role",
                    "is_system_role": True,
                    "is_active": True,
                    "created_at": now,
                    "updated_at": now,
                }
                self.store.role_permissions[role_id] = set()

    def list_permissions(self) -> list[PermissionRecord]:
        return [PermissionRecord(**describe(p)) for p in Permission]

    def list_roles(self, active_only: bool = False) -> list[RoleRecord]:
        with self.store.lock:
            rows = list(self.store.roles.values())
        if active_only:
            rows = [r for r in rows if r["is_active"]]
        return [self._to_role_model(r) for r in rows]

    def get_role(self, role_id: str) -> RoleRecord:
        return self._to_role_model(self._require_role(role_id))

    def find_role(self, reference: str) -> dict[str, Any] | None:
        """Look a role up by id or by code."""
        with self.store.lock:
            role = self.store.roles.get(reference)
            if role:
                return role
            return next((r for r in self.store.roles.values() if r["code"] == reference), None)

    def create_role(self, actor: SessionSnapshot, payload: RoleCreate) -> RoleRecord:
        now = self._iso_now()
        role_id = f"role-{payload.code.lower().replace('_', '-')}"
        with self.store.lock:
            if any(r["code"] == payload.code or r["name"] == payload.name for r in self.store.roles.values()):
                raise ConflictError(f"A role named {payload.name} or coded {payload.code} already exists")
            row = {
                "role_id": role_id,
                "name": payload.name,
                "code": payload.code,
                "description": payload.description,
                "is_system_role": False,
                "is_active": payload.is_active,
                "created_at": now,
                "updated_at": now,
            }
            self.store.roles[role_id] = row
            self.store.role_permissions[role_id] = {p.value for p in payload.permissions}
        self.store.bump_config_version()

        self._audit(actor, "role_created", role_id=role_id, permissions=[p.value for p in payload.permissions])
        return self._to_role_model(row)

    def update_role(self, actor: SessionSnapshot, role_id: str, payload: RoleUpdate) -> RoleRecord:
        updates = payload.model_dump(exclude_none=True)
        with self.store.lock:
            row = self._require_role(role_id)
            row.update(updates)
            row["updated_at"] = self._iso_now()
        self.store.bump_config_version()

        self._audit(actor, "role_updated", role_id=role_id, changes=updates)
        return self._to_role_model(row)

    def delete_role(self, actor: SessionSnapshot, role_id: str) -> None:
        with self.store.lock:
            row = self._require_role(role_id)
            holders = [u["user_id"] for u in self.store.users.values() if u.get("role_id") == role_id]
            if holders:
                raise ConflictError(
                    f"Role {row['code']} is assigned to {len(holders)} user(s); deactivate it instead"
                )
            del self.store.roles[role_id]
            self.store.role_permissions.pop(role_id, None)
        self.store.bump_config_version()

        self._audit(actor, "role_deleted", role_id=role_id)

    def set_role_permissions(
        self,
        actor: SessionSnapshot,
        role_id: str,
        permissions: list[Permission],
    ) -> RoleRecord:
        with self.store.lock:
            row = self._require_role(role_id)
            self.store.role_permissions[role_id] = {p.value for p in permissions}
            row["updated_at"] = self._iso_now()
        self.store.bump_config_version()

        self._audit(actor, "role_permissions_set", role_id=role_id, permissions=sorted(p.value for p in permissions))
        return self._to_role_model(row)

    def assign_user_role(self, actor: SessionSnapshot, user_id: str, role_id: str) -> UserPermissions:
        with self.store.lock:
            self._require_role(role_id)
            user = self.store.users.get(user_id)
            if not user:
                raise NotFoundError(f"User {user_id} not found")
            previous = user.get("role_id")
            user["role_id"] = role_id
        self.store.bump_config_version()

        self._audit(actor, "user_role_assigned", user_id=user_id, role_id=role_id, previous_role_id=previous)
        return self.user_permissions(user_id)

    def user_permissions(self, user_id: str) -> UserPermissions:
        with self.store.lock:
            user = self.store.users.get(user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        role = self.permission_service.role_for(user)
        permissions = self.permission_service.resolve_permissions(user)
        return UserPermissions(
            user_id=user_id,
            role=role["name"] if role else "",
            permissions=sorted(permissions, key=lambda p: p.value),
        )

    def _require_role(self, role_id: str) -> dict[str, Any]:
        with self.store.lock:
            row = self.store.roles.get(role_id)
        if not row:
            raise NotFoundError(f"Role {role_id} not found")
        return row

    def _audit(self, actor: SessionSnapshot, action: str, **details: Any) -> None:
        self.event_logger.log_event(
            event_type="security_event",
            actor_id=actor.user_id,
            actor_role=actor.role,
            details={"action": action, **details},
        )

    def _to_role_model(self, row: dict[str, Any]) -> RoleRecord:
        with self.store.lock:
            assigned = sorted(self.store.role_permissions.get(row["role_id"], set()))
        return RoleRecord(
            role_id=row["role_id"],
            name=row["name"],
            code=row["code"],
            description=row.get("description"),
            is_system_role=bool(row.get("is_system_role", False)),
            is_active=bool(row.get("is_active", True)),
            permissions=[Permission(p) for p in assigned],
            uses_fallback=not assigned,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
