"""
Cloudflare Stream integration.

Resumable (tus) video uploads with watchdogs and retries, plus the
playback/thumbnail URL scheme and deletion.
"""

from .client import (
    StreamUpload,
    StreamUploadClient,
    absolute_timeout_seconds,
    encode_tus_metadata,
)

__all__ = [
    "StreamUpload",
    "StreamUploadClient",
    "absolute_timeout_seconds",
    "encode_tus_metadata",
]
