"""Operational utilities for BehaviorBank."""

from __future__ import annotations

import json
from pathlib import Path
from threading import Lock
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .models import utcnow


class HealthMonitor:
    """Aggregate runtime health information for the status endpoint."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def database_online(self) -> bool:
        try:
            with self._engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def status(self) -> dict:
        online = self.database_online()
        return {
            "status": "ok" if online else "error",
            "db": "connected" if online else "down",
        }


class StructuredLogger:
    """Write JSON lines log entries for admin inspection."""

    def __init__(self, *, path: Path | None = None, keep: int = 1000) -> None:
        self.path = path
        self._keep = keep
        self._entries: list[dict] = []
        self._lock = Lock()

    def log(self, event_type: str, **fields: object) -> dict:
        entry = {"timestamp": utcnow().isoformat(), "event": event_type, **fields}
        with self._lock:
            self._entries.append(entry)
            del self._entries[: -self._keep]
            if self.path:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def tail(self, limit: int = 50, *, event: Optional[str] = None) -> tuple[dict, ...]:
        entries = self._entries
        if event is not None:
            entries = [entry for entry in entries if entry["event"] == event]
        return tuple(entries[-limit:])


__all__ = ["HealthMonitor", "StructuredLogger"]
