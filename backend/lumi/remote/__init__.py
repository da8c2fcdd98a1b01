"""Remote record stores."""

from .base import RemoteStore, credential_email
from .database import DatabaseRemoteStore
from .supabase import SupabaseRemoteStore

__all__ = ["DatabaseRemoteStore", "RemoteStore", "SupabaseRemoteStore", "credential_email"]
