"""Time-bounded in-memory cache for remote user ids and badge lists."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models import Badge

USER_ID = "user_id"
BADGES = "badges"

DEFAULT_TTL_SECONDS = 300.0


@dataclass
class _CacheEntry:
    value: Any
    written_at: float


class BadgeCache:
    """Process-local read-through cache keyed by username.

    Entries older than ``ttl_seconds`` are treated as absent. The cache never
    needs to be populated for correctness; a miss always falls through to the
    remote store.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[Tuple[str, str], _CacheEntry] = {}
        self._epoch = 0
        self._generations: Dict[str, int] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def generation(self, username: str) -> Tuple[int, int]:
        """Token that changes whenever ``username``'s entries are invalidated or the cache is cleared.

        A read that captured a token before awaiting the remote store passes it back
        to ``put`` so a result fetched before an invalidation is never stored.
        """
        return (self._epoch, self._generations.get(username, 0))

    def get(self, kind: str, username: str) -> Optional[Any]:
        key = (kind, username)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.written_at >= self._ttl:
            self._entries.pop(key, None)
            return None
        return _copy(entry.value)

    def put(
        self,
        kind: str,
        username: str,
        value: Any,
        *,
        generation: Optional[Tuple[int, int]] = None,
    ) -> bool:
        if generation is not None and generation != self.generation(username):
            return False
        self._entries[(kind, username)] = _CacheEntry(value=_copy(value), written_at=self._clock())
        return True

    def invalidate(self, username: str, kind: Optional[str] = None) -> None:
        kinds = (kind,) if kind is not None else (USER_ID, BADGES)
        for entry_kind in kinds:
            self._entries.pop((entry_kind, username), None)
        self._generations[username] = self._generations.get(username, 0) + 1

    def clear(self) -> None:
        self._entries.clear()
        self._generations.clear()
        self._epoch += 1

    def get_user_id(self, username: str) -> Optional[str]:
        return self.get(USER_ID, username)

    def put_user_id(self, username: str, user_id: str) -> None:
        self.put(USER_ID, username, user_id)

    def get_badges(self, username: str) -> Optional[List[Badge]]:
        return self.get(BADGES, username)

    def put_badges(
        self,
        username: str,
        badges: List[Badge],
        *,
        generation: Optional[Tuple[int, int]] = None,
    ) -> bool:
        return self.put(BADGES, username, badges, generation=generation)

    def invalidate_badges(self, username: str) -> None:
        self.invalidate(username, BADGES)

    def __len__(self) -> int:
        return len(self._entries)


def _copy(value: Any) -> Any:
    # Badges are frozen, so a shallow list copy is enough to isolate callers.
    if isinstance(value, list):
        return list(value)
    return value


__all__ = ["BADGES", "BadgeCache", "DEFAULT_TTL_SECONDS", "USER_ID"]
