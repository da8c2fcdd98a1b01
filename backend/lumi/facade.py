"""Single entry point that routes user and badge operations to the remote or local store."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, List, Optional, Set, TypeVar

from .cache import BadgeCache
from .config import Settings, get_settings
from .db.session import build_engine, build_session_factory
from .errors import RecordValidationError, StorageError, TransportError
from .local_store import FileKeyValueStore, LocalStore, MemoryKeyValueStore
from .models import (
    Badge,
    SetUserResult,
    normalize_username,
    resolve_badge_emoji,
    validate_badge_name,
)
from .remote import DatabaseRemoteStore, RemoteStore, SupabaseRemoteStore
from .telemetry import record_fallback, record_session_started

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCAL_ONLY_MESSAGE = "Saved on this device only"


class Backend(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"


@dataclass
class Session:
    """The logged-in user. Once ``using_fallback`` is set it stays set until logout."""

    username: str
    user_id: Optional[str] = None
    using_fallback: bool = False
    authenticated: bool = False


class StorageFacade:
    def __init__(
        self,
        settings: Settings,
        local_store: LocalStore,
        remote_store: Optional[RemoteStore] = None,
        cache: Optional[BadgeCache] = None,
    ) -> None:
        self._settings = settings
        self._local = local_store
        self._remote = remote_store
        self._cache = cache if cache is not None else BadgeCache(ttl_seconds=settings.cache_ttl_seconds)
        if remote_store is not None and settings.is_enabled():
            self._backend = Backend.REMOTE
        else:
            self._backend = Backend.LOCAL
        # Usernames whose writes went to the local store after a remote failure.
        self._local_only_users: Set[str] = set()
        self._session = self._restore_session()

    @property
    def backend(self) -> Backend:
        return self._backend

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def cache(self) -> BadgeCache:
        return self._cache

    @property
    def local_store(self) -> LocalStore:
        return self._local

    @property
    def fallback_permitted(self) -> bool:
        return self._settings.fallback_to_local_storage

    def is_local_only(self) -> bool:
        """True when the current session's badges are being kept on this device only."""
        return self._session is not None and self._session.using_fallback

    def get_current_username(self) -> Optional[str]:
        return self._session.username if self._session else None

    async def set_current_user(self, username: str, credential: Optional[str] = None) -> SetUserResult:
        try:
            normalized = normalize_username(username)
        except RecordValidationError as exc:
            logger.warning("Rejected login: %s", exc)
            return SetUserResult(success=False, message=str(exc))

        if self._backend is Backend.REMOTE:
            assert self._remote is not None
            authenticated = bool(credential and credential.strip())
            try:
                if authenticated:
                    user_id = await self._bounded(
                        "sign_in_or_register",
                        self._remote.sign_in_or_register(normalized, credential or ""),
                    )
                else:
                    user_id = await self._bounded(
                        "resolve_or_create_user",
                        self._remote.resolve_or_create_user(normalized),
                    )
            except StorageError as exc:
                if not self.fallback_permitted:
                    self._log_remote_failure("set_current_user", normalized, exc)
                    return SetUserResult(success=False, message="Could not reach the remote store")
                self._engage_fallback("set_current_user", normalized, exc)
            else:
                self._cache.put_user_id(normalized, user_id)
                self._start_session(Session(username=normalized, user_id=user_id, authenticated=authenticated))
                return SetUserResult(success=True)

        return self._start_local_session(normalized)

    async def logout(self) -> None:
        session = self._session
        self._session = None
        self._local_only_users.clear()
        self._local.clear_active_user()
        self._cache.clear()
        if session is None or not session.authenticated or self._remote is None:
            return
        try:
            await self._bounded("sign_out", self._remote.sign_out())
        except StorageError as exc:
            logger.warning("Remote sign-out failed for username=%s (%s): %s", session.username, exc.kind, exc)

    async def add_badge(self, username: str, name: str, emoji: Optional[str] = None) -> bool:
        try:
            normalized = normalize_username(username)
            badge_name = validate_badge_name(name)
            badge_emoji = resolve_badge_emoji(emoji)
        except RecordValidationError as exc:
            logger.warning("Rejected badge for username=%r: %s", username, exc)
            return False

        if self._routes_remote(normalized):
            assert self._remote is not None
            try:
                user_id = await self._remote_user_id(normalized, create=True)
                assert user_id is not None
                await self._bounded("insert_badge", self._remote.insert_badge(user_id, badge_name, badge_emoji))
            except StorageError as exc:
                if not self.fallback_permitted:
                    self._log_remote_failure("add_badge", normalized, exc)
                    return False
                self._engage_fallback("add_badge", normalized, exc)
            else:
                self._cache.invalidate_badges(normalized)
                return True

        saved = self._local.append_badge(normalized, badge_name, badge_emoji)
        if saved:
            self._cache.invalidate_badges(normalized)
        return saved

    async def get_badges(self, username: str) -> List[Badge]:
        try:
            normalized = normalize_username(username)
        except RecordValidationError as exc:
            logger.warning("Rejected badge lookup: %s", exc)
            return []

        if self._routes_remote(normalized):
            try:
                return await self._read_remote_badges(normalized, use_cache=True)
            except StorageError as exc:
                if not self.fallback_permitted:
                    self._log_remote_failure("get_badges", normalized, exc)
                    return []
                self._engage_fallback("get_badges", normalized, exc)

        return self._local.get_badges(normalized)

    async def get_badge_count(self, username: str) -> int:
        return len(await self.get_badges(username))

    async def ensure_remote_user(self, username: str) -> str:
        """Resolve or create ``username`` remotely. Never falls back; raises ``StorageError``."""
        self._require_remote()
        normalized = normalize_username(username)
        user_id = await self._remote_user_id(normalized, create=True)
        assert user_id is not None
        return user_id

    async def add_remote_badge(self, username: str, badge: Badge) -> bool:
        """Copy ``badge`` (keeping its earn time) to the remote store without any local fallback."""
        self._require_remote()
        assert self._remote is not None
        normalized = normalize_username(username)
        try:
            user_id = await self._remote_user_id(normalized, create=True)
            assert user_id is not None
            await self._bounded(
                "insert_badge",
                self._remote.insert_badge(
                    user_id,
                    validate_badge_name(badge.name),
                    resolve_badge_emoji(badge.emoji),
                    badge.earned_at,
                ),
            )
        except StorageError as exc:
            self._log_remote_failure("add_remote_badge", normalized, exc)
            return False
        self._cache.invalidate_badges(normalized)
        return True

    async def read_remote_badges(self, username: str, *, use_cache: bool = True) -> List[Badge]:
        """Read badges from the remote store only. With ``use_cache=False`` the cache is neither read nor written."""
        self._require_remote()
        return await self._read_remote_badges(normalize_username(username), use_cache=use_cache)

    async def aclose(self) -> None:
        if self._remote is not None:
            await self._remote.aclose()

    def _restore_session(self) -> Optional[Session]:
        username = self._local.get_active_user()
        if not username:
            return None
        return Session(
            username=username,
            user_id=self._local.get_session_user_id(),
            using_fallback=self._local.is_local_only() or self._backend is Backend.LOCAL,
        )

    def _start_session(self, session: Session) -> None:
        self._session = session
        self._local.set_active_user(session.username, user_id=session.user_id, local_only=session.using_fallback)
        record_session_started(session.username, self._backend.value, session.using_fallback)

    def _start_local_session(self, username: str) -> SetUserResult:
        if not self._local.create(username):
            logger.error("Could not create local record for username=%s", username)
            return SetUserResult(success=False, used_fallback=True, message="Could not save on this device")
        self._start_session(Session(username=username, using_fallback=True))
        return SetUserResult(success=True, used_fallback=True, message=LOCAL_ONLY_MESSAGE)

    def _routes_remote(self, username: str) -> bool:
        if self._backend is not Backend.REMOTE:
            return False
        if username in self._local_only_users:
            return False
        session = self._session
        if session is not None and session.username == username and session.using_fallback:
            return False
        return True

    def _require_remote(self) -> None:
        if self._backend is not Backend.REMOTE or self._remote is None:
            raise TransportError("Remote backend is not enabled.")

    async def _read_remote_badges(self, username: str, *, use_cache: bool) -> List[Badge]:
        assert self._remote is not None
        if use_cache:
            cached = self._cache.get_badges(username)
            if cached is not None:
                return cached
        generation = self._cache.generation(username)
        user_id = await self._remote_user_id(username, create=False, use_cache=use_cache)
        if user_id is None:
            return []
        badges = await self._bounded("list_badges", self._remote.list_badges(user_id))
        if use_cache:
            self._cache.put_badges(username, badges, generation=generation)
        return badges

    async def _remote_user_id(self, username: str, *, create: bool, use_cache: bool = True) -> Optional[str]:
        assert self._remote is not None
        session = self._session
        if session is not None and session.username == username and session.user_id:
            return session.user_id
        if use_cache:
            cached = self._cache.get_user_id(username)
            if cached:
                return cached
        if create:
            user_id: Optional[str] = await self._bounded(
                "resolve_or_create_user", self._remote.resolve_or_create_user(username)
            )
        else:
            user_id = await self._bounded("find_user_id", self._remote.find_user_id(username))
        if user_id and use_cache:
            self._cache.put_user_id(username, user_id)
        return user_id

    async def _bounded(self, operation: str, call: Awaitable[T]) -> T:
        timeout = self._settings.remote_timeout_seconds
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(f"{operation} timed out after {timeout:g}s") from exc

    def _engage_fallback(self, operation: str, username: str, exc: StorageError) -> None:
        logger.warning(
            "Remote %s failed for username=%s (%s): %s; using the local store",
            operation,
            username,
            exc.kind,
            exc,
        )
        self._local_only_users.add(username)
        session = self._session
        if session is not None and session.username == username and not session.using_fallback:
            session.using_fallback = True
            self._local.set_active_user(username, user_id=session.user_id, local_only=True)
        record_fallback(operation, username, exc)

    @staticmethod
    def _log_remote_failure(operation: str, username: str, exc: StorageError) -> None:
        logger.error("Remote %s failed for username=%s (%s): %s", operation, username, exc.kind, exc)


def build_remote_store(settings: Settings) -> RemoteStore:
    if settings.remote_backend == "database":
        assert settings.database_url
        engine = build_engine(settings.database_url, settings)
        return DatabaseRemoteStore(build_session_factory(engine))
    assert settings.supabase_url and settings.supabase_anon_key
    return SupabaseRemoteStore(
        settings.supabase_url,
        settings.supabase_anon_key,
        email_domain=settings.auth_email_domain,
        timeout_seconds=settings.remote_timeout_seconds,
    )


def create_storage_facade(settings: Optional[Settings] = None) -> StorageFacade:
    settings = settings or get_settings()
    local_store = LocalStore(
        FileKeyValueStore(settings.local_store_dir, quota_bytes=settings.local_store_quota_bytes),
        MemoryKeyValueStore(),
    )
    remote_store = build_remote_store(settings) if settings.is_enabled() else None
    if remote_store is None:
        logger.info("Remote storage is not configured; badges are kept on this device")
    return StorageFacade(settings, local_store, remote_store)


__all__ = [
    "Backend",
    "LOCAL_ONLY_MESSAGE",
    "Session",
    "StorageFacade",
    "build_remote_store",
    "create_storage_facade",
]
