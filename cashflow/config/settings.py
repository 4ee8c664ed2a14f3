"""
Configuration Management for Cashflow

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here and loaded once at
startup. Settings objects are then passed into the components that need
them (object store, database, coordinator), so business logic never reads
the process environment directly.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """S3 object store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="S3_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    bucket_name: str = Field(
        ...,
        description="Bucket holding staged and permanent receipt images"
    )
    region: str = Field(
        default="us-east-1",
        description="AWS region of the bucket"
    )
    access_key_id: Optional[str] = Field(
        default=None,
        description="Access key; falls back to the default AWS credential chain"
    )
    secret_access_key: Optional[str] = Field(
        default=None,
        description="Secret key; falls back to the default AWS credential chain"
    )
    endpoint_url: Optional[str] = Field(
        default=None,
        description="Custom endpoint for S3-compatible stores (MinIO, LocalStack)"
    )
    url_expiration_seconds: int = Field(
        default=24 * 60 * 60,
        ge=60,
        le=7 * 24 * 60 * 60,
        description="Lifetime of presigned GET URLs served back to clients"
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per store call before giving up"
    )


class UploadSettings(BaseSettings):
    """Staged upload policy."""

    model_config = SettingsConfigDict(
        env_prefix="UPLOAD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    staging_prefix: str = Field(
        default="staging",
        description="Key prefix for not-yet-confirmed uploads"
    )
    permanent_prefix: str = Field(
        default="transactions",
        description="Key prefix for promoted receipt images"
    )
    credential_ttl_seconds: int = Field(
        default=15 * 60,
        ge=60,
        le=60 * 60,
        description="Lifetime of presigned PUT URLs"
    )
    max_file_size_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1,
        description="Largest declared upload size accepted"
    )
    allowed_content_types: str = Field(
        default="image/jpeg,image/jpg,image/png,image/webp",
        description="Comma-separated list of accepted content types"
    )
    orphan_max_age_hours: int = Field(
        default=24,
        ge=1,
        description="Age after which an unlinked pending upload is reclaimed"
    )

    @property
    def allowed_content_types_list(self) -> list[str]:
        """Get allowed content types as a list."""
        return [
            t.strip().lower()
            for t in self.allowed_content_types.split(",")
            if t.strip()
        ]


class DatabaseSettings(BaseSettings):
    """Relational database configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite:///./cashflow.db",
        description="SQLAlchemy database URL"
    )
    echo: bool = Field(
        default=False,
        description="Log every SQL statement"
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

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR)$",
        description="Minimum log level"
    )
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON (console renderer otherwise)"
    )

    # HTTP
    host: str = Field(
        default="127.0.0.1",
        description="Interface the API binds to"
    )
    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Port the API listens on"
    )
    cors_allowed_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins"
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [o.strip() for o in self.cors_allowed_origins.split(",") if o.strip()]


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

    # Sub-settings are loaded lazily so a missing bucket name does not
    # prevent, say, the database from being configured.

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def uploads(self) -> UploadSettings:
        return UploadSettings()

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with a
    "{setting_name}_error" entry for each group that failed to load.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("storage", "uploads", "database", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
