"""In-process telemetry for storage routing decisions."""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from threading import RLock
from typing import Any, Callable, Dict, List

from .errors import StorageError

logger = logging.getLogger("lumi.telemetry")

STORAGE_SESSION_STARTED = "storage_session_started"
STORAGE_FALLBACK = "storage_fallback"
MIGRATION_COMPLETED = "migration_completed"

_REDACTED_FIELDS = frozenset({"credential", "password", "access_token", "token"})


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]


_listeners: List[Callable[[TelemetryEvent], None]] = []
_counts: Counter[str] = Counter()
_lock = RLock()


def register_listener(listener: Callable[[TelemetryEvent], None]) -> None:
    with _lock:
        _listeners.append(listener)


def clear_listeners() -> None:
    """Drop listeners and reset the per-event counters."""
    with _lock:
        _listeners.clear()
        _counts.clear()


def event_counts() -> Dict[str, int]:
    with _lock:
        return dict(_counts)


def emit_event(name: str, **fields: Any) -> None:
    payload = _sanitize(fields)
    event = TelemetryEvent(name=name, payload=payload)

    with _lock:
        _counts[name] += 1
        listeners = list(_listeners)

    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    logger.info("TELEMETRY %s", json.dumps({"event": name, **payload}, default=str, ensure_ascii=False))


def record_session_started(username: str, backend: str, used_fallback: bool) -> None:
    emit_event(STORAGE_SESSION_STARTED, username=username, backend=backend, used_fallback=used_fallback)


def record_fallback(operation: str, username: str, error: StorageError) -> None:
    emit_event(STORAGE_FALLBACK, operation=operation, username=username, error_kind=error.kind)


def record_migration(username: str, migrated_count: int, failed_count: int) -> None:
    emit_event(MIGRATION_COMPLETED, username=username, migrated_count=migrated_count, failed_count=failed_count)


def _sanitize(fields: Dict[str, Any]) -> Dict[str, Any]:
    # Credentials never leave the process, not even in debug logs.
    sanitized: Dict[str, Any] = {}
    for key, value in fields.items():
        if key in _REDACTED_FIELDS:
            continue
        sanitized[key] = value.isoformat() if isinstance(value, datetime) else value
    return sanitized


__all__ = [
    "MIGRATION_COMPLETED",
    "STORAGE_FALLBACK",
    "STORAGE_SESSION_STARTED",
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "event_counts",
    "record_fallback",
    "record_migration",
    "record_session_started",
    "register_listener",
]
