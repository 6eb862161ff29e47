"""
Exceptions raised by the backend clients.

Each exception carries the ErrorKind it maps to, so the router can turn
any of them into a failed UploadResult without knowing which client
raised it.
"""

from .models import ErrorKind


class MediaError(Exception):
    """Base class for expected upload/delete failures."""
    kind = ErrorKind.UPLOAD_FAILED

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotConfiguredError(MediaError):
    """Required credentials are missing. Never retried."""
    kind = ErrorKind.NOT_CONFIGURED


class NotSupportedSourceError(MediaError):
    """A URL does not belong to any backend (or legacy source) we know."""
    kind = ErrorKind.NOT_SUPPORTED_SOURCE


class TransportError(MediaError):
    """Network or local I/O failure while moving bytes."""
    kind = ErrorKind.TRANSPORT_ERROR


class ProtocolError(MediaError):
    """The backend answered but left out a required field."""
    kind = ErrorKind.PROTOCOL_ERROR


class UploadTimeoutError(MediaError):
    """The idle or absolute watchdog fired."""
    kind = ErrorKind.TIMEOUT


class UploadFailedError(MediaError):
    """Terminal failure: backend rejected the upload or retries ran out."""
    kind = ErrorKind.UPLOAD_FAILED
