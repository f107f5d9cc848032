"""
Configuration Management for Ledger Sync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here, but components
receive their settings object through the constructor. get_settings()
is only the fallback used when nothing is passed in, so the sync flows
stay deterministic under test without patching globals.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RemoteSettings(BaseSettings):
    """Remote replica (HTTP key-value store) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_REMOTE_",
        extra="ignore"
    )

    base_url: str = Field(
        ...,
        description="Base URL of the remote transactions endpoint"
    )
    fetch_path: str = Field(
        default="/transactions/query",
        description="Path used to read records"
    )
    push_path: str = Field(
        default="/transactions/sync",
        description="Path used to write records"
    )

    # Timeouts are enforced by racing the request against a timer
    fetch_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for a filtered (single page) fetch"
    )
    full_fetch_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Timeout for a full unfiltered fetch"
    )
    push_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for a push batch"
    )

    # Pagination
    page_limit: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Records requested per page"
    )
    max_pages: int = Field(
        default=50,
        ge=1,
        description="Upper bound on followed cursors for one fetch"
    )

    mock_mode: str = Field(
        default="off",
        pattern="^(off|online|offline)$",
        description="Simulate the remote: off, online (canned data) or offline (network failure)"
    )

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Only http(s) endpoints are supported."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Remote base URL must be http(s): {v}")
        return v.rstrip("/")


class LocalStoreSettings(BaseSettings):
    """Embedded local replica configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_DB_",
        extra="ignore"
    )

    path: str = Field(
        default="data/ledger.db",
        description="SQLite database file (':memory:' for an ephemeral store)"
    )
    busy_timeout_ms: int = Field(
        default=5000,
        ge=0,
        description="How long a write waits on a locked database"
    )


class SyncSettings(BaseSettings):
    """Retry policy applied by the sync coordinator (never by the flows)."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_SYNC_",
        extra="ignore"
    )

    push_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for a push that fails with a retryable error"
    )
    retry_wait_min_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Minimum backoff between push attempts"
    )
    retry_wait_max_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Maximum backoff between push attempts"
    )
    audit_enabled: bool = Field(
        default=True,
        description="Persist audit events to the local store"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def remote(self) -> RemoteSettings:
        return RemoteSettings()

    @property
    def local_store(self) -> LocalStoreSettings:
        return LocalStoreSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with an extra
    "<name>_error" entry for each section that failed.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("remote", "local_store", "sync", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
