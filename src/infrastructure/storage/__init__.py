"""
Object storage integration for generic files and image fallback.

Supports Cloudflare R2 via the S3-compatible API.
Includes mock mode for local development without credentials.
"""

from .client import (
    MockStorageClient,
    ObjectStore,
    R2StorageClient,
    StoredObject,
    create_storage_client,
)

__all__ = [
    "MockStorageClient",
    "ObjectStore",
    "R2StorageClient",
    "StoredObject",
    "create_storage_client",
]
