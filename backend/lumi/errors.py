"""Error taxonomy shared by the local and remote stores."""

from __future__ import annotations


class StorageError(Exception):
    """Base class for failures raised by the persistence layer."""

    kind = "storage"


class RecordValidationError(StorageError, ValueError):
    """Input rejected before (or by) a backend, e.g. an empty username."""

    kind = "validation"


class TransportError(StorageError):
    """The remote backend was unreachable, timed out, or rejected the request."""

    kind = "transport"


class PersistenceError(StorageError):
    """The device-local store could not be written (I/O error, quota exceeded)."""

    kind = "persistence"


class AuthError(StorageError):
    """A credential was rejected for a reason other than first-time registration."""

    kind = "auth"


class InvalidCredentialsError(AuthError):
    """Sign-in failed because no matching account exists yet (or the password differs)."""


__all__ = [
    "AuthError",
    "InvalidCredentialsError",
    "PersistenceError",
    "RecordValidationError",
    "StorageError",
    "TransportError",
]
