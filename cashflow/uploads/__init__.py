"""Staged upload lifecycle."""

from cashflow.uploads.coordinator import (
    UploadCoordinator,
    build_staging_key,
    extension_for,
    to_permanent_key,
)

__all__ = [
    "UploadCoordinator",
    "build_staging_key",
    "extension_for",
    "to_permanent_key",
]
