"""Remote store backed directly by a SQLAlchemy database."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, TypeVar

import bcrypt
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..db.session import get_session_factory, session_scope
from ..errors import AuthError, InvalidCredentialsError, RecordValidationError, StorageError, TransportError
from ..models import Badge, normalize_username
from ..repositories.badges import BadgeRepository, badge_repository
from .base import INVALID_CREDENTIALS_MESSAGE

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DatabaseRemoteStore:
    """Runs repository calls in worker threads so the event loop never blocks on I/O."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker[Session]] = None,
        repository: Optional[BadgeRepository] = None,
    ) -> None:
        self._session_factory = session_factory
        self._repository = repository or badge_repository
        self._authenticated_user_id: Optional[str] = None

    @property
    def authenticated_user_id(self) -> Optional[str]:
        return self._authenticated_user_id

    async def resolve_or_create_user(self, username: str) -> str:
        normalized = normalize_username(username)
        return await self._run(
            "resolve_or_create_user",
            lambda session: self._repository.get_or_create_user(session, normalized),
        )

    async def sign_in_or_register(self, username: str, credential: str) -> str:
        normalized = normalize_username(username)
        if not credential or not credential.strip():
            raise RecordValidationError("Credential cannot be empty.")

        def _sign_in(session: Session) -> str:
            stored = self._repository.get_password_hash(session, normalized)
            if stored and _check_password(credential, stored):
                return self._repository.get_or_create_user(session, normalized)
            raise InvalidCredentialsError(INVALID_CREDENTIALS_MESSAGE)

        def _register(session: Session) -> str:
            if self._repository.get_password_hash(session, normalized):
                raise AuthError("User already registered with a different credential.")
            hashed = bcrypt.hashpw(credential.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
            return self._repository.set_password_hash(session, normalized, hashed)

        try:
            user_id = await self._run("sign_in", _sign_in)
        except InvalidCredentialsError:
            logger.info("No matching account for %s; registering", normalized)
            user_id = await self._run("register", _register)
        self._authenticated_user_id = user_id
        return user_id

    async def sign_out(self) -> None:
        self._authenticated_user_id = None

    async def insert_badge(
        self,
        user_id: str,
        name: str,
        emoji: str,
        earned_at: Optional[datetime] = None,
    ) -> None:
        await self._run(
            "insert_badge",
            lambda session: self._repository.insert_badge(session, user_id, name, emoji, earned_at),
        )

    async def list_badges(self, user_id: str) -> List[Badge]:
        return await self._run(
            "list_badges",
            lambda session: self._repository.list_badges(session, user_id),
            commit=False,
        )

    async def find_user_id(self, username: str) -> Optional[str]:
        normalized = normalize_username(username)
        return await self._run(
            "find_user_id",
            lambda session: self._repository.find_user_id(session, normalized),
            commit=False,
        )

    async def aclose(self) -> None:
        self._authenticated_user_id = None

    async def _run(self, operation: str, func: Callable[[Session], T], *, commit: bool = True) -> T:
        try:
            return await asyncio.to_thread(self._in_session, func, commit)
        except StorageError:
            raise
        except IntegrityError as exc:
            raise RecordValidationError(f"{operation} rejected by the database: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            raise TransportError(f"{operation} failed: {exc}") from exc

    def _in_session(self, func: Callable[[Session], T], commit: bool) -> T:
        factory = self._session_factory or get_session_factory()
        with session_scope(commit=commit, factory=factory) as session:
            return func(session)


def _check_password(plaintext: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(plaintext.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


__all__ = ["DatabaseRemoteStore"]
