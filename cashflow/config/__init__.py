"""Configuration package."""

from cashflow.config.settings import (
    AppSettings,
    DatabaseSettings,
    Settings,
    StorageSettings,
    UploadSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "Settings",
    "StorageSettings",
    "UploadSettings",
    "get_settings",
    "validate_all_settings",
]
