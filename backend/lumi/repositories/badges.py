"""Database-backed user and badge repository."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.models import BadgeModel, UserModel
from ..errors import RecordValidationError
from ..models import Badge, normalize_username, resolve_badge_emoji, validate_badge_name


class BadgeRepository:
    """Session-scoped helpers; callers own the transaction."""

    def get_or_create_user(self, session: Session, username: str) -> str:
        normalized = normalize_username(username)
        now = datetime.now(timezone.utc)
        self._insert_if_absent(session, normalized, now)
        model = self._require_user(session, normalized)
        model.last_login_at = now
        session.flush()
        return model.id

    def find_user_id(self, session: Session, username: str) -> Optional[str]:
        normalized = normalize_username(username)
        stmt = select(UserModel.id).where(UserModel.username == normalized)
        return session.execute(stmt).scalar_one_or_none()

    def insert_badge(
        self,
        session: Session,
        user_id: str,
        name: str,
        emoji: Optional[str],
        earned_at: Optional[datetime] = None,
    ) -> None:
        if session.get(UserModel, user_id) is None:
            raise RecordValidationError(f"Unknown user id {user_id}.")
        session.add(
            BadgeModel(
                user_id=user_id,
                badge_name=validate_badge_name(name),
                badge_emoji=resolve_badge_emoji(emoji),
                earned_at=earned_at or datetime.now(timezone.utc),
            )
        )
        session.flush()

    def list_badges(self, session: Session, user_id: str) -> List[Badge]:
        stmt = (
            select(BadgeModel)
            .where(BadgeModel.user_id == user_id)
            .order_by(BadgeModel.earned_at.asc(), BadgeModel.id.asc())
        )
        return [
            Badge(name=row.badge_name, emoji=row.badge_emoji, earned_at=row.earned_at)
            for row in session.execute(stmt).scalars()
        ]

    def get_password_hash(self, session: Session, username: str) -> Optional[str]:
        normalized = normalize_username(username)
        stmt = select(UserModel.password_hash).where(UserModel.username == normalized)
        return session.execute(stmt).scalar_one_or_none()

    def set_password_hash(self, session: Session, username: str, password_hash: str) -> str:
        user_id = self.get_or_create_user(session, username)
        model = self._require_user(session, normalize_username(username))
        model.password_hash = password_hash
        session.flush()
        return user_id

    def _insert_if_absent(self, session: Session, username: str, now: datetime) -> None:
        values = {
            "id": str(uuid.uuid4()),
            "username": username,
            "created_at": now,
            "updated_at": now,
            "last_login_at": now,
        }
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql_insert(UserModel).values(**values).on_conflict_do_nothing(index_elements=["username"])
        elif dialect == "sqlite":
            stmt = sqlite_insert(UserModel).values(**values).on_conflict_do_nothing(index_elements=["username"])
        else:
            try:
                with session.begin_nested():
                    session.add(UserModel(**values))
            except IntegrityError:
                # Another writer created the row first.
                pass
            return
        session.execute(stmt)

    @staticmethod
    def _require_user(session: Session, username: str) -> UserModel:
        stmt = select(UserModel).where(UserModel.username == username)
        return session.execute(stmt).scalar_one()


badge_repository = BadgeRepository()

__all__ = ["BadgeRepository", "badge_repository"]
