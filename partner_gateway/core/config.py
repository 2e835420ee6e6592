"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the scheduler and the CLI
share a consistent configuration surface. Each partner gets its own settings
model which is handed explicitly to the components that need it.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


TokenPlacement = Literal["bearer", "query"]


class ThirdPartySettings(BaseSettings):
    """Credentials and token policy for the ThirdParty (MyKalyan) API."""

    model_config = SettingsConfigDict(env_prefix="THIRDPARTY_", extra="ignore")

    base_url: str = Field("", description="Base URL shared by login and business calls.")
    login_path: str = Field("/thirdparty/api/Users/login")
    username: str = ""
    password: str = ""
    token_name: str = Field("mykalyan", description="Default token record name.")
    token_buffer_seconds: int = Field(
        300,
        description="Refresh when the token expires within this many seconds.",
    )
    lock_seconds: int = Field(30, description="Refresh lease wait and lease length.")
    http_timeout: float = Field(15.0, description="Login request timeout in seconds.")
    api_timeout: float = Field(30.0, description="Business call timeout in seconds.")
    token_placement: TokenPlacement = "bearer"
    token_query_param: str = "access_token"
    default_ttl_seconds: int = Field(
        1800,
        description="TTL used when the login response has no usable created/ttl.",
    )
    ttl_milliseconds_threshold: int = Field(
        1_209_600,
        description=(
            "A reported ttl above this value is read as milliseconds. "
            "Heuristic; the partner does not document the unit, so this value "
            "is a guess and should be confirmed against live login responses. "
            "The deployed integration used 100000000."
        ),
    )

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("login_path")
    @classmethod
    def _strip_login_path(cls, value: str) -> str:
        return value.strip().lstrip("/")


class DocmanSettings(BaseSettings):
    """Credentials and token policy for the Docman India API."""

    model_config = SettingsConfigDict(env_prefix="DOCUMAN_", extra="ignore")

    base_url: str = ""
    token_path: str = "token"
    username: str = ""
    password: str = ""
    default_token_name: str = "default"
    token_ttl_days: int = Field(
        1,
        description="Stored expiry is always now + this many days after login.",
    )
    refresh_buffer_minutes: int = 5
    lock_seconds: int = 30
    http_timeout: float = 15.0
    token_placement: TokenPlacement = "bearer"
    token_query_param: str = "access_token"

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("token_path")
    @classmethod
    def _strip_token_path(cls, value: str) -> str:
        return value.strip().lstrip("/")


class StorageSettings(BaseSettings):
    """Location of the SQLite database shared by every worker process."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_", extra="ignore")

    db_path: str = Field("data/partner_gateway.sqlite3")


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    token_encryption_secret: Optional[str] = Field(
        None,
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    admin_api_key: Optional[str] = Field(
        None,
        description="When set, admin routes require a matching X-Admin-Key header.",
    )


class SchedulerSettings(BaseSettings):
    """Proactive refresh loop configuration."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", extra="ignore")

    enabled: bool = False
    interval_seconds: float = 60.0


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    storage: StorageSettings = Field(default_factory=StorageSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    thirdparty: ThirdPartySettings = Field(default_factory=ThirdPartySettings)
    docman: DocmanSettings = Field(default_factory=DocmanSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()


__all__ = [
    "AppSettings",
    "DocmanSettings",
    "SchedulerSettings",
    "SecuritySettings",
    "StorageSettings",
    "ThirdPartySettings",
    "TokenPlacement",
    "get_settings",
]
