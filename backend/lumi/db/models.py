"""ORM models backing the remote user and badge tables."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..models import DEFAULT_BADGE_EMOJI, MAX_BADGE_EMOJI_LENGTH, MAX_BADGE_NAME_LENGTH, MAX_USERNAME_LENGTH
from .base import Base, TimestampMixin


class UserModel(TimestampMixin, Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            f"length(username) >= 1 AND length(username) <= {MAX_USERNAME_LENGTH}",
            name="username_length",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username: Mapped[str] = mapped_column(String(MAX_USERNAME_LENGTH), nullable=False, unique=True, index=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    badges: Mapped[list["BadgeModel"]] = relationship(back_populates="user", cascade="all, delete-orphan")


class BadgeModel(Base):
    __tablename__ = "badges"
    __table_args__ = (
        CheckConstraint(
            f"length(badge_name) >= 1 AND length(badge_name) <= {MAX_BADGE_NAME_LENGTH}",
            name="badge_name_length",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    badge_name: Mapped[str] = mapped_column(String(MAX_BADGE_NAME_LENGTH), nullable=False)
    badge_emoji: Mapped[str] = mapped_column(
        String(MAX_BADGE_EMOJI_LENGTH), nullable=False, default=DEFAULT_BADGE_EMOJI
    )
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True
    )

    user: Mapped[UserModel] = relationship(back_populates="badges")


__all__ = ["BadgeModel", "UserModel"]
