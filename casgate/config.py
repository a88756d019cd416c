"""Runtime settings, read from ``CAS_*`` environment variables or ``.env``."""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.protocol import ProtocolVersion


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CAS_", env_file=".env", extra="ignore")

    # Base URL of the CAS server, including any mount path such as /cas
    server_url: str = "https://sso.example.com/cas"
    protocol_version: ProtocolVersion = ProtocolVersion.CAS3
    cookie_name: str = "_cas_session"
    cookie_secure: bool = False
    timeout: float = Field(10.0, gt=0)
    # Sessions older than this many seconds are dropped; None keeps them until logout
    session_ttl: Optional[int] = Field(None, gt=0)
    # Seconds between eviction sweeps; defaults to session_ttl
    eviction_interval: Optional[float] = Field(None, gt=0)
    # "memory" or an SQLAlchemy URL for the SQL-backed store
    session_store: str = "memory"
    redirect_after_validation: bool = True
    abort_on_validation_error: bool = False
    directory_url: Optional[str] = None

    @field_validator("server_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
