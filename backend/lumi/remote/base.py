"""Contract shared by the remote record stores."""

from __future__ import annotations

import re
from datetime import datetime
from typing import List, Optional, Protocol

from ..models import Badge

INVALID_CREDENTIALS_MESSAGE = "Invalid login credentials"


class RemoteStore(Protocol):
    """Asynchronous multi-device record store.

    ``find_user_id`` returns ``None`` for an unknown user; every other failure is
    raised as a ``StorageError`` subclass.
    """

    async def resolve_or_create_user(self, username: str) -> str:  # pragma: no cover - protocol definition
        ...

    async def sign_in_or_register(self, username: str, credential: str) -> str:  # pragma: no cover
        ...

    async def sign_out(self) -> None:  # pragma: no cover - protocol definition
        ...

    async def insert_badge(
        self,
        user_id: str,
        name: str,
        emoji: str,
        earned_at: Optional[datetime] = None,
    ) -> None:  # pragma: no cover - protocol definition
        ...

    async def list_badges(self, user_id: str) -> List[Badge]:  # pragma: no cover - protocol definition
        ...

    async def find_user_id(self, username: str) -> Optional[str]:  # pragma: no cover - protocol definition
        ...

    async def aclose(self) -> None:  # pragma: no cover - protocol definition
        ...


def credential_email(username: str, domain: str) -> str:
    """Map a username onto the synthetic e-mail address used for password sign-in."""
    local_part = re.sub(r"\s+", "_", username.strip().lower())
    return f"{local_part}@{domain}"


__all__ = ["INVALID_CREDENTIALS_MESSAGE", "RemoteStore", "credential_email"]
