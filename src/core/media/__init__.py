"""
Media ingestion domain: classification, routing, retries and migration.

Backend clients live in src.infrastructure; this package only depends on
the small surface each of them exposes.
"""

from .classifier import classify_by_name, classify_by_url, content_type_for
from .errors import (
    MediaError,
    NotConfiguredError,
    NotSupportedSourceError,
    ProtocolError,
    TransportError,
    UploadFailedError,
    UploadTimeoutError,
)
from .models import (
    ErrorKind,
    MediaKind,
    MediaOwner,
    UploadRequest,
    UploadResult,
)
from .retry import RetryExhaustedError, RetryPolicy

__all__ = [
    "ErrorKind",
    "MediaError",
    "MediaKind",
    "MediaOwner",
    "NotConfiguredError",
    "NotSupportedSourceError",
    "ProtocolError",
    "RetryExhaustedError",
    "RetryPolicy",
    "TransportError",
    "UploadFailedError",
    "UploadRequest",
    "UploadResult",
    "UploadTimeoutError",
    "classify_by_name",
    "classify_by_url",
    "content_type_for",
]
