"""Device-local persistence: a JSON user map plus a session-scoped marker."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

from pydantic import ValidationError

from .errors import PersistenceError, RecordValidationError
from .models import (
    DEFAULT_BADGE_EMOJI,
    Badge,
    UserRecord,
    normalize_username,
    resolve_badge_emoji,
    validate_badge_name,
)

logger = logging.getLogger(__name__)

USERS_KEY = "lumi_users"
CURRENT_USER_KEY = "lumi_current_user"
USER_ID_KEY = "lumi_user_id"
LOCAL_ONLY_KEY = "lumi_use_local_only"


class KeyValueStore(Protocol):
    """Minimal string key-value contract shared by persistent and session storage."""

    def get_item(self, key: str) -> Optional[str]:  # pragma: no cover - protocol definition
        ...

    def set_item(self, key: str, value: str) -> None:  # pragma: no cover - protocol definition
        ...

    def remove_item(self, key: str) -> None:  # pragma: no cover - protocol definition
        ...


class MemoryKeyValueStore:
    """Session-scoped storage; its contents disappear with the process."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()


class FileKeyValueStore:
    """Persistent per-device storage keeping one JSON document per key."""

    def __init__(self, directory: Path, quota_bytes: Optional[int] = None) -> None:
        self._directory = Path(directory)
        self._quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        return self._directory / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read local key %s: %s", key, exc)
            return None

    def set_item(self, key: str, value: str) -> None:
        encoded = value.encode("utf-8")
        if self._quota_bytes is not None and len(encoded) > self._quota_bytes:
            raise PersistenceError(
                f"Local storage quota exceeded for {key} ({len(encoded)} > {self._quota_bytes} bytes)."
            )
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(encoded)
            tmp_path.replace(path)
        except OSError as exc:
            raise PersistenceError(f"Failed to write local key {key}: {exc}") from exc

    def remove_item(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Failed to remove local key {key}: {exc}") from exc


class LocalStore:
    """Username -> UserRecord map persisted as a single JSON blob.

    Entries that no longer validate are kept verbatim and written back on every
    save; this layer never deletes a user.
    """

    def __init__(self, persistent: KeyValueStore, session: Optional[KeyValueStore] = None) -> None:
        self._persistent = persistent
        self._session = session or MemoryKeyValueStore()
        self._lock = threading.RLock()

    def _read_unlocked(self) -> Tuple[Dict[str, UserRecord], Dict[str, Any]]:
        raw_blob = self._persistent.get_item(USERS_KEY)
        if not raw_blob:
            return {}, {}
        try:
            raw = json.loads(raw_blob)
        except ValueError:
            logger.error("Local user data is not valid JSON; treating it as empty")
            return {}, {}
        if not isinstance(raw, dict):
            logger.error("Local user data is not a mapping; treating it as empty")
            return {}, {}
        users: Dict[str, UserRecord] = {}
        unreadable: Dict[str, Any] = {}
        for username, payload in raw.items():
            if not isinstance(payload, dict):
                logger.warning("Skipping malformed local record for %s", username)
                unreadable[username] = payload
                continue
            try:
                users[username] = UserRecord.model_validate({**payload, "username": username})
            except ValidationError:
                logger.exception("Failed to parse local record for %s", username)
                unreadable[username] = payload
        return users, unreadable

    def _load_unlocked(self) -> Dict[str, UserRecord]:
        return self._read_unlocked()[0]

    def _write_unlocked(self, users: Dict[str, UserRecord], unreadable: Optional[Dict[str, Any]] = None) -> None:
        if unreadable is None:
            unreadable = self._read_unlocked()[1]
        payload: Dict[str, Any] = {username: entry for username, entry in unreadable.items() if username not in users}
        payload.update((username, record.to_storage()) for username, record in users.items())
        self._persistent.set_item(USERS_KEY, json.dumps(payload, ensure_ascii=False))

    def _save_unlocked(self, users: Dict[str, UserRecord], unreadable: Optional[Dict[str, Any]] = None) -> bool:
        try:
            self._write_unlocked(users, unreadable)
        except PersistenceError as exc:
            logger.error("Failed to save local user data: %s", exc)
            return False
        return True

    def get_all(self) -> Dict[str, UserRecord]:
        with self._lock:
            return self._load_unlocked()

    def save_all(self, users: Dict[str, UserRecord]) -> bool:
        with self._lock:
            return self._save_unlocked(users)

    def exists(self, username: str) -> bool:
        key = _lookup_key(username)
        if key is None:
            return False
        with self._lock:
            users, unreadable = self._read_unlocked()
        return key in users or key in unreadable

    def create(self, username: str) -> bool:
        key = normalize_username(username)
        with self._lock:
            users, unreadable = self._read_unlocked()
            if key in users or key in unreadable:
                return True
            users[key] = UserRecord(username=key)
            return self._save_unlocked(users, unreadable)

    def get_record(self, username: str) -> Optional[UserRecord]:
        key = _lookup_key(username)
        if key is None:
            return None
        return self.get_all().get(key)

    def append_badge(
        self,
        username: str,
        name: str,
        emoji: str = DEFAULT_BADGE_EMOJI,
        earned_at: Optional[datetime] = None,
    ) -> bool:
        key = normalize_username(username)
        badge = Badge(
            name=validate_badge_name(name),
            emoji=resolve_badge_emoji(emoji),
            earned_at=earned_at or datetime.now(timezone.utc),
        )
        with self._lock:
            users, unreadable = self._read_unlocked()
            if key in unreadable:
                return self._append_to_unreadable(key, badge, users, unreadable)
            record = users.get(key)
            if record is None:
                record = UserRecord(username=key)
            users[key] = record.model_copy(update={"badges": [*record.badges, badge]})
            return self._save_unlocked(users, unreadable)

    def _append_to_unreadable(
        self,
        key: str,
        badge: Badge,
        users: Dict[str, UserRecord],
        unreadable: Dict[str, Any],
    ) -> bool:
        payload = unreadable[key]
        badges = payload.get("badges") if isinstance(payload, dict) else None
        if not isinstance(payload, dict) or not isinstance(badges or [], list):
            logger.error("Local record for %s is unreadable; not appending %s", key, badge.name)
            return False
        unreadable[key] = {**payload, "badges": [*(badges or []), badge.to_storage()]}
        return self._save_unlocked(users, unreadable)

    def get_badges(self, username: str) -> List[Badge]:
        record = self.get_record(username)
        return list(record.badges) if record else []

    def set_active_user(self, username: str, *, user_id: Optional[str] = None, local_only: bool = False) -> None:
        self._session.set_item(CURRENT_USER_KEY, normalize_username(username))
        if user_id:
            self._session.set_item(USER_ID_KEY, user_id)
        else:
            self._session.remove_item(USER_ID_KEY)
        if local_only:
            self._session.set_item(LOCAL_ONLY_KEY, "true")
        else:
            self._session.remove_item(LOCAL_ONLY_KEY)

    def get_active_user(self) -> Optional[str]:
        return self._session.get_item(CURRENT_USER_KEY)

    def get_session_user_id(self) -> Optional[str]:
        return self._session.get_item(USER_ID_KEY)

    def is_local_only(self) -> bool:
        return self._session.get_item(LOCAL_ONLY_KEY) == "true"

    def clear_active_user(self) -> None:
        for key in (CURRENT_USER_KEY, USER_ID_KEY, LOCAL_ONLY_KEY):
            self._session.remove_item(key)


def _lookup_key(username: str) -> Optional[str]:
    try:
        return normalize_username(username)
    except RecordValidationError:
        return None


__all__ = [
    "FileKeyValueStore",
    "KeyValueStore",
    "LocalStore",
    "MemoryKeyValueStore",
    "USERS_KEY",
]
