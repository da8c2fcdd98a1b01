import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

DATA_DIR = Path(__file__).resolve().parent / "data"


class Settings(BaseSettings):
    remote_enabled: bool = Field(False, alias="LUMI_REMOTE_ENABLED")
    remote_backend: Literal["supabase", "database"] = Field("supabase", alias="LUMI_REMOTE_BACKEND")
    supabase_url: Optional[str] = Field(None, alias="LUMI_SUPABASE_URL")
    supabase_anon_key: Optional[str] = Field(None, alias="LUMI_SUPABASE_ANON_KEY")
    auth_email_domain: str = Field("lumi.local", alias="LUMI_AUTH_EMAIL_DOMAIN")
    database_url: Optional[str] = Field(None, alias="LUMI_DATABASE_URL")
    database_pool_size: int = Field(5, alias="LUMI_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(5, alias="LUMI_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="LUMI_DATABASE_ECHO")
    fallback_to_local_storage: bool = Field(True, alias="LUMI_FALLBACK_TO_LOCAL")
    cache_ttl_seconds: float = Field(300.0, ge=0.0, alias="LUMI_CACHE_TTL_SECONDS")
    remote_timeout_seconds: float = Field(10.0, gt=0.0, alias="LUMI_REMOTE_TIMEOUT_SECONDS")
    local_store_dir: Path = Field(DATA_DIR, alias="LUMI_LOCAL_STORE_DIR")
    local_store_quota_bytes: Optional[int] = Field(5 * 1024 * 1024, alias="LUMI_LOCAL_STORE_QUOTA_BYTES")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        populate_by_name = True

    def is_enabled(self) -> bool:
        """Return True when the remote backend is switched on and fully configured."""
        if not self.remote_enabled:
            return False
        if self.remote_backend == "supabase":
            return bool(self.supabase_url and self.supabase_anon_key)
        return bool(self.database_url)


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid storage configuration: {exc}") from exc
