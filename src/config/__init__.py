"""
Application configuration using Pydantic settings.

Configuration comes from environment variables with sensible defaults.
Backend credentials are derived from settings once at startup.
"""

from .credentials import (
    BackendCredentialSet,
    ImagesCredentials,
    ObjectStoreCredentials,
    StreamCredentials,
)
from .settings import Settings, get_settings

__all__ = [
    "BackendCredentialSet",
    "ImagesCredentials",
    "ObjectStoreCredentials",
    "Settings",
    "StreamCredentials",
    "get_settings",
]
