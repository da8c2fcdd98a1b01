"""Shared fixtures for the storage tests."""

from __future__ import annotations

import asyncio
import itertools
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import pytest

from lumi.cache import BadgeCache
from lumi.config import Settings
from lumi.errors import AuthError, TransportError
from lumi.facade import StorageFacade
from lumi.local_store import FileKeyValueStore, LocalStore, MemoryKeyValueStore
from lumi.models import Badge, normalize_username
from lumi.telemetry import TelemetryEvent, clear_listeners, register_listener


def make_settings(tmp_path: Path, **fields: Any) -> Settings:
    """Build Settings from field names, ignoring any LUMI_* variables in the environment."""
    values: Dict[str, Any] = {
        "remote_enabled": True,
        "remote_backend": "supabase",
        "supabase_url": "https://example.supabase.co",
        "supabase_anon_key": "anon-key",
        "fallback_to_local_storage": True,
        "cache_ttl_seconds": 300.0,
        "remote_timeout_seconds": 1.0,
        "local_store_dir": tmp_path / "local",
    }
    values.update(fields)
    return Settings(**{Settings.model_fields[name].alias: value for name, value in values.items()})


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRemoteStore:
    """In-memory RemoteStore that counts invocations and can be told to fail."""

    def __init__(self) -> None:
        self.users: Dict[str, str] = {}
        self.badges: Dict[str, List[Badge]] = {}
        self.credentials: Dict[str, str] = {}
        self.calls: Counter[str] = Counter()
        self.fail: Set[str] = set()
        self.reject_badge_names: Set[str] = set()
        self.delay = 0.0
        self.signed_in: Optional[str] = None
        self._ids = itertools.count(1)

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if operation in self.fail:
            raise TransportError(f"{operation} unavailable")

    async def resolve_or_create_user(self, username: str) -> str:
        await self._enter("resolve_or_create_user")
        normalized = normalize_username(username)
        if normalized not in self.users:
            self.users[normalized] = f"user-{next(self._ids)}"
        return self.users[normalized]

    async def sign_in_or_register(self, username: str, credential: str) -> str:
        await self._enter("sign_in_or_register")
        stored = self.credentials.get(username)
        if stored is not None and stored != credential:
            raise AuthError("User already registered with a different credential.")
        self.credentials[username] = credential
        self.signed_in = username
        if username not in self.users:
            self.users[username] = f"user-{next(self._ids)}"
        return self.users[username]

    async def sign_out(self) -> None:
        await self._enter("sign_out")
        self.signed_in = None

    async def insert_badge(
        self,
        user_id: str,
        name: str,
        emoji: str,
        earned_at: Optional[datetime] = None,
    ) -> None:
        await self._enter("insert_badge")
        if name in self.reject_badge_names:
            raise TransportError(f"insert rejected for {name}")
        badge = Badge(name=name, emoji=emoji, earned_at=earned_at or datetime.now(timezone.utc))
        self.badges.setdefault(user_id, []).append(badge)

    async def list_badges(self, user_id: str) -> List[Badge]:
        await self._enter("list_badges")
        return sorted(self.badges.get(user_id, []), key=lambda badge: badge.earned_at)

    async def find_user_id(self, username: str) -> Optional[str]:
        await self._enter("find_user_id")
        return self.users.get(username)

    async def aclose(self) -> None:
        self.calls["aclose"] += 1

    def badges_for(self, username: str) -> List[Badge]:
        user_id = self.users.get(username)
        return list(self.badges.get(user_id, [])) if user_id else []


@pytest.fixture(autouse=True)
def _reset_telemetry():
    clear_listeners()
    yield
    clear_listeners()


@pytest.fixture()
def telemetry_events() -> List[TelemetryEvent]:
    events: List[TelemetryEvent] = []
    register_listener(events.append)
    return events


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache(clock: FakeClock) -> BadgeCache:
    return BadgeCache(ttl_seconds=300.0, clock=clock)


@pytest.fixture()
def session_storage() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture()
def local_store(tmp_path: Path, session_storage: MemoryKeyValueStore) -> LocalStore:
    return LocalStore(FileKeyValueStore(tmp_path / "local"), session_storage)


@pytest.fixture()
def fake_remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture()
def settings_factory(tmp_path: Path):
    def _factory(**fields: Any) -> Settings:
        return make_settings(tmp_path, **fields)

    return _factory


@pytest.fixture()
def remote_settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture()
def facade(
    remote_settings: Settings,
    local_store: LocalStore,
    fake_remote: FakeRemoteStore,
    cache: BadgeCache,
) -> StorageFacade:
    return StorageFacade(remote_settings, local_store, fake_remote, cache)


@pytest.fixture()
def local_facade(tmp_path: Path, local_store: LocalStore, cache: BadgeCache) -> StorageFacade:
    settings = make_settings(tmp_path, remote_enabled=False)
    return StorageFacade(settings, local_store, None, cache)
