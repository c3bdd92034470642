from __future__ import annotations

import logging
import warnings
from typing import Any, Literal

from accessflow.core.errors import AuthorizationError, StaleCacheWarning
from accessflow.core.rbac import Permission, Required, can, fallback_permissions, parse_permissions
from accessflow.models.auth import SessionSnapshot
from accessflow.repositories.data_store import DataStore

logger = logging.getLogger(__name__)


class PermissionService:
    """Resolves users to permission sets and answers access decisions for sessions.

    Resolution order: an explicit ``permissions`` array on the user record is
    authoritative; otherwise the permissions assigned to the user's active
    role; otherwise the static fallback table for the role's code.
    """

    def __init__(self, store: DataStore) -> None:
        self.store = store

    def role_for(self, user: dict[str, Any]) -> dict[str, Any] | None:
        with self.store.lock:
            return self.store.roles.get(user.get("role_id", ""))

    def role_permissions(self, role: dict[str, Any]) -> frozenset[Permission]:
        with self.store.lock:
            assigned = set(self.store.role_permissions.get(role["role_id"], set()))
        if assigned:
            return parse_permissions(assigned)
        return fallback_permissions(role["code"])

    def resolve_permissions(self, user: dict[str, Any]) -> frozenset[Permission]:
        explicit = user.get("permissions")
        if explicit is not None:
            return parse_permissions(explicit)

        role = self.role_for(user)
        if role is None:
            logger.warning("User %s references unknown role %s", user.get("user_id"), user.get("role_id"))
            return frozenset()
        if not role.get("is_active", True):
            logger.info("User %s holds inactive role %s", user.get("user_id"), role["code"])
            return frozenset()
        return self.role_permissions(role)

    def build_session(self, user: dict[str, Any], stale: bool = False) -> SessionSnapshot:
        role = self.role_for(user)
        with self.store.lock:
            config_version = self.store.config_version
        return SessionSnapshot(
            user_id=user["user_id"],
            username=user["username"],
            role=role["name"] if role else "",
            permissions=self.resolve_permissions(user),
            config_version=config_version,
            stale=stale,
        )

    def refresh(self, snapshot: SessionSnapshot) -> SessionSnapshot:
        with self.store.lock:
            user = self.store.users.get(snapshot.user_id)
        if not user or not user.get("is_active", True):
            raise AuthorizationError(f"User {snapshot.user_id} is no longer active")
        return self.build_session(user, stale=snapshot.stale)

    def is_stale(self, snapshot: SessionSnapshot) -> bool:
        with self.store.lock:
            return snapshot.config_version < self.store.config_version

    def check_session(self, snapshot: SessionSnapshot) -> SessionSnapshot:
        if not self.is_stale(snapshot):
            return snapshot

        message = (
            f"Permission snapshot for {snapshot.user_id} was resolved against "
            f"configuration v{snapshot.config_version}; refreshing"
        )
        warnings.warn(message, StaleCacheWarning, stacklevel=2)
        logger.info(message)
        return self.refresh(snapshot.model_copy(update={"stale": True}))

    def can(
        self,
        session: SessionSnapshot,
        required: Required,
        mode: Literal["any", "all"] = "any",
    ) -> bool:
        return can(session.permissions, required, mode)

    def require(
        self,
        session: SessionSnapshot,
        required: Required,
        mode: Literal["any", "all"] = "any",
    ) -> None:
        if not can(session.permissions, required, mode):
            raise AuthorizationError("Insufficient permissions")
