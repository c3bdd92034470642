from __future__ import annotations

from datetime import datetime, timezone
from threading import RLock
from typing import Any

from accessflow.models.workflow import ApprovalInstance


class DataStore:
    """Simple in-memory repository for roles, users and approval state.

    Every read-modify-write of an approval instance happens while holding
    ``lock``; that is the single mutation path the engine relies on.
    """

    def __init__(self) -> None:
        self.lock = RLock()
        self.users: dict[str, dict[str, Any]] = {}
        self.departments: dict[str, dict[str, Any]] = {}
        self.roles: dict[str, dict[str, Any]] = {}
        self.role_permissions: dict[str, set[str]] = {}
        self.workflows: dict[str, dict[str, Any]] = {}
        self.instances: dict[str, ApprovalInstance] = {}
        self.config_version = 1

    def bump_config_version(self) -> int:
        with self.lock:
            self.config_version += 1
            return self.config_version


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
