"""Public HTTP API."""

from cashflow.api.app import create_app

__all__ = ["create_app"]
