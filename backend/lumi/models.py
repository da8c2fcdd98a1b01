"""User and badge records plus the input rules every backend shares."""

from __future__ import annotations

import unicodedata
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import RecordValidationError

DEFAULT_BADGE_EMOJI = "⭐"
MAX_USERNAME_LENGTH = 50
MAX_BADGE_NAME_LENGTH = 200
MAX_BADGE_EMOJI_LENGTH = 10


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_username(username: Any) -> str:
    if not isinstance(username, str):
        raise RecordValidationError("Username must be a string.")
    normalized = username.strip()
    if not normalized:
        raise RecordValidationError("Username cannot be empty.")
    if len(normalized) > MAX_USERNAME_LENGTH:
        raise RecordValidationError(f"Username too long (max {MAX_USERNAME_LENGTH} characters).")
    if any(unicodedata.category(char) == "Cc" for char in normalized):
        raise RecordValidationError("Username cannot contain control characters.")
    return normalized


def validate_badge_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise RecordValidationError("Badge name cannot be empty.")
    trimmed = name.strip()
    if len(trimmed) > MAX_BADGE_NAME_LENGTH:
        raise RecordValidationError(f"Badge name too long (max {MAX_BADGE_NAME_LENGTH} characters).")
    return trimmed


def resolve_badge_emoji(emoji: Optional[str]) -> str:
    """Return the emoji to store, substituting the default for missing or blank values."""
    if emoji is None or not emoji.strip():
        return DEFAULT_BADGE_EMOJI
    trimmed = emoji.strip()
    if len(trimmed) > MAX_BADGE_EMOJI_LENGTH:
        raise RecordValidationError(f"Badge emoji too long (max {MAX_BADGE_EMOJI_LENGTH} characters).")
    return trimmed


class Badge(BaseModel):
    """Achievement earned by a user. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, max_length=MAX_BADGE_NAME_LENGTH)
    emoji: str = Field(default=DEFAULT_BADGE_EMOJI, max_length=MAX_BADGE_EMOJI_LENGTH)
    earned_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_shapes(cls, values: Any) -> Any:
        # Older device-local blobs stored badges as bare names or with camelCase keys.
        if isinstance(values, str):
            return {"name": values, "earned_at": None}
        if isinstance(values, dict) and "earnedAt" in values and "earned_at" not in values:
            values = dict(values)
            values["earned_at"] = values.pop("earnedAt") or None
        return values

    @field_validator("emoji", mode="before")
    @classmethod
    def _default_blank_emoji(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_BADGE_EMOJI
        return value

    @field_validator("earned_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_storage(self) -> dict[str, str]:
        return {
            "name": self.name,
            "emoji": self.emoji,
            "earnedAt": self.earned_at.isoformat() if self.earned_at else "",
        }


class UserRecord(BaseModel):
    username: str
    created_at: datetime = Field(default_factory=_now)
    badges: List[Badge] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_camel_case(cls, values: Any) -> Any:
        if isinstance(values, dict) and "createdAt" in values and "created_at" not in values:
            values = dict(values)
            created = values.pop("createdAt")
            if created:
                values["created_at"] = created
        if isinstance(values, dict) and values.get("badges") is None:
            values = dict(values)
            values["badges"] = []
        return values

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_storage(self) -> dict[str, Any]:
        return {
            "badges": [badge.to_storage() for badge in self.badges],
            "createdAt": self.created_at.isoformat(),
        }


class SetUserResult(BaseModel):
    success: bool
    used_fallback: bool = False
    message: str = ""


class MigrationResult(BaseModel):
    username: str
    success: bool
    migrated_count: int = 0
    failed_count: int = 0
    message: str = ""
    error: Optional[str] = None


class VerificationResult(BaseModel):
    username: str
    success: bool
    local_count: int = 0
    remote_count: int = 0
    message: str = ""
    error: Optional[str] = None

    @property
    def supabase_count(self) -> int:
        return self.remote_count


__all__ = [
    "Badge",
    "DEFAULT_BADGE_EMOJI",
    "MAX_BADGE_EMOJI_LENGTH",
    "MAX_BADGE_NAME_LENGTH",
    "MAX_USERNAME_LENGTH",
    "MigrationResult",
    "SetUserResult",
    "UserRecord",
    "VerificationResult",
    "normalize_username",
    "resolve_badge_emoji",
    "validate_badge_name",
]
