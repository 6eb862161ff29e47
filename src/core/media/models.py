"""
Domain models for media ingestion.

These models describe what goes into the pipeline and what comes out of
it. They have no dependencies on HTTP clients or storage SDKs, so the
router and the tests can reason about uploads without a network.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional


class MediaKind(Enum):
    """Which backend family a piece of media belongs to."""
    VIDEO = "video"
    IMAGE = "image"
    FILE = "file"


class ErrorKind(Enum):
    """
    Why an upload or migration did not produce a URL.

    Callers branch on this, not on the message: NOT_SUPPORTED_SOURCE is
    skipped silently during migration, NOT_CONFIGURED is an operator
    problem, the rest are worth showing to the user.
    """
    NOT_CONFIGURED = "not_configured"
    NOT_SUPPORTED_SOURCE = "not_supported_source"
    TRANSPORT_ERROR = "transport_error"
    PROTOCOL_ERROR = "protocol_error"
    TIMEOUT = "timeout"
    UPLOAD_FAILED = "upload_failed"


# (percent, bytes_sent, bytes_total)
ProgressSink = Callable[[int, int, int], None]


@dataclass(frozen=True)
class MediaOwner:
    """The catalog record a piece of media is attached to."""
    user_id: str
    record_id: str


@dataclass(frozen=True)
class UploadRequest:
    """
    A local file to land in one of the backends.

    Frozen because a submitted request must not change while retries
    are still reading from it.
    """
    source_location: Path
    file_name: str
    owner: MediaOwner
    media_kind_hint: Optional[MediaKind] = None
    folder: Optional[str] = None
    progress_sink: Optional[ProgressSink] = None
    metadata: dict[str, str] = field(default_factory=dict)
    use_images_for_photos: bool = True

    def __post_init__(self) -> None:
        if not self.file_name.strip():
            raise ValueError("file_name cannot be empty")
        # accept plain strings for convenience
        if not isinstance(self.source_location, Path):
            object.__setattr__(self, "source_location", Path(self.source_location))


@dataclass
class UploadResult:
    """
    Normalized outcome of an upload, whatever the backend.

    Exactly one of primary_url and error_kind is set. Use the ok() and
    failure() constructors rather than building one by hand.
    """
    success: bool
    media_kind: MediaKind
    primary_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    backend_media_id: Optional[str] = None
    variant_urls: dict[str, str] = field(default_factory=dict)
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None

    def __post_init__(self) -> None:
        if bool(self.primary_url) == (self.error_kind is not None):
            raise ValueError("UploadResult needs exactly one of primary_url or error_kind")
        if self.success != bool(self.primary_url):
            raise ValueError("success must be True exactly when primary_url is set")

    @classmethod
    def ok(
        cls,
        media_kind: MediaKind,
        primary_url: str,
        *,
        thumbnail_url: Optional[str] = None,
        backend_media_id: Optional[str] = None,
        variant_urls: Optional[dict[str, str]] = None,
    ) -> "UploadResult":
        return cls(
            success=True,
            media_kind=media_kind,
            primary_url=primary_url,
            thumbnail_url=thumbnail_url,
            backend_media_id=backend_media_id,
            variant_urls=dict(variant_urls or {}),
        )

    @classmethod
    def failure(
        cls,
        media_kind: MediaKind,
        error_kind: ErrorKind,
        error_message: str,
    ) -> "UploadResult":
        return cls(
            success=False,
            media_kind=media_kind,
            error_kind=error_kind,
            error_message=error_message,
        )

    def to_dict(self) -> dict:
        """JSON-friendly representation used by the API and migration report."""
        return {
            "success": self.success,
            "media_kind": self.media_kind.value,
            "primary_url": self.primary_url,
            "thumbnail_url": self.thumbnail_url,
            "backend_media_id": self.backend_media_id,
            "variant_urls": dict(self.variant_urls),
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
        }


@dataclass
class RetryState:
    """Bookkeeping for one RetryPolicy.run call. Never persisted."""
    attempt: int = 0
    last_error: Optional[Exception] = None
    next_backoff_seconds: float = 0.0


@dataclass
class UploadSession:
    """
    One tus session, i.e. one attempt of a resumable video upload.

    last_progress_at is the only value shared between the transfer and
    the idle watchdog: the body generator writes it, the watchdog reads
    it. Both run on the same event loop.
    """
    upload_url: str
    total_bytes: int
    offset_sent: int = 0
    last_progress_at: float = 0.0
