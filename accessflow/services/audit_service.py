from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Optional

from accessflow.core.config import settings

logger = logging.getLogger(__name__)


class EventLogger:
    """Append-only JSON-lines audit trail of approval and security actions."""

    def __init__(self, event_path: Path | None = None) -> None:
        self.event_path = event_path or settings.event_log_path
        self.event_path.parent.mkdir(parents=True, exist_ok=True)
        self.lock = RLock()

    def log_event(
        self,
        event_type: str,
        actor_id: str,
        actor_role: str,
        details: dict[str, Any],
    ) -> None:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "actor_id": actor_id,
            "actor_role": actor_role,
            "details": details,
        }
        line = json.dumps(payload, default=str)
        with self.lock:
            with self.event_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")

    def read_events(self) -> list[dict[str, Any]]:
        if not self.event_path.exists():
            return []

        with self.lock:
            lines = self.event_path.read_text(encoding="utf-8").splitlines()

        events: list[dict[str, Any]] = []
        for raw in lines:
            if not raw.strip():
                continue
            try:
                events.append(json.loads(raw))
            except json.JSONDecodeError:
                logger.warning("Skipping unreadable audit line in %s", self.event_path)
                continue
        return events

    def recent_events(self, limit: int = 100, event_type: Optional[str] = None) -> list[dict[str, Any]]:
        events = self.read_events()
        if event_type:
            events = [e for e in events if e.get("event_type") == event_type]
        return events[-limit:]

    def events_for(self, key: str, value: str) -> list[dict[str, Any]]:
        return [e for e in self.read_events() if e.get("details", {}).get(key) == value]
