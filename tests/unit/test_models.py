"""
Unit tests for the media domain models.

These tests verify the value objects without touching external services
(no API calls, no file system).

Testing philosophy:
- Test behavior, not implementation
- Use descriptive names that explain what we're testing
- Prefer real objects over mocks where practical
"""

from pathlib import Path

import pytest

from src.core.media.errors import (
    MediaError,
    NotConfiguredError,
    NotSupportedSourceError,
    ProtocolError,
    TransportError,
    UploadFailedError,
    UploadTimeoutError,
)
from src.core.media.models import (
    ErrorKind,
    MediaKind,
    MediaOwner,
    UploadRequest,
    UploadResult,
    UploadSession,
)

OWNER = MediaOwner(user_id="u1", record_id="42")


# ---------------------------------------------------------------------------
# UploadRequest Tests
# ---------------------------------------------------------------------------

class TestUploadRequest:

    def test_string_source_becomes_path(self):
        request = UploadRequest(source_location="/tmp/a.mp4", file_name="a.mp4", owner=OWNER)
        assert request.source_location == Path("/tmp/a.mp4")

    def test_rejects_empty_file_name(self):
        with pytest.raises(ValueError, match="file_name"):
            UploadRequest(source_location="/tmp/a.mp4", file_name="  ", owner=OWNER)

    def test_defaults(self):
        request = UploadRequest(source_location="/tmp/a.mp4", file_name="a.mp4", owner=OWNER)
        assert request.media_kind_hint is None
        assert request.use_images_for_photos is True
        assert request.metadata == {}

    def test_is_immutable(self):
        request = UploadRequest(source_location="/tmp/a.mp4", file_name="a.mp4", owner=OWNER)
        with pytest.raises(AttributeError):
            request.file_name = "b.mp4"


# ---------------------------------------------------------------------------
# UploadResult Tests
# ---------------------------------------------------------------------------

class TestUploadResult:
    """A result has a URL or an error kind, never both, never neither."""

    def test_ok_result(self):
        result = UploadResult.ok(MediaKind.FILE, "https://media.example.com/a.pdf")
        assert result.success is True
        assert result.error_kind is None
        assert result.error_message is None

    def test_failure_result(self):
        result = UploadResult.failure(MediaKind.VIDEO, ErrorKind.TIMEOUT, "stalled")
        assert result.success is False
        assert result.primary_url is None
        assert result.error_kind is ErrorKind.TIMEOUT

    def test_rejects_url_and_error_together(self):
        with pytest.raises(ValueError):
            UploadResult(
                success=True,
                media_kind=MediaKind.FILE,
                primary_url="https://media.example.com/a.pdf",
                error_kind=ErrorKind.UPLOAD_FAILED,
            )

    def test_rejects_neither_url_nor_error(self):
        with pytest.raises(ValueError):
            UploadResult(success=False, media_kind=MediaKind.FILE)

    def test_rejects_inconsistent_success_flag(self):
        with pytest.raises(ValueError, match="success"):
            UploadResult(success=False, media_kind=MediaKind.FILE, primary_url="https://x/a.pdf")

    def test_to_dict_uses_enum_values(self):
        data = UploadResult.failure(MediaKind.IMAGE, ErrorKind.NOT_CONFIGURED, "no token").to_dict()
        assert data["media_kind"] == "image"
        assert data["error_kind"] == "not_configured"
        assert data["primary_url"] is None


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class TestMediaErrors:

    @pytest.mark.parametrize("error_class, kind", [
        (NotConfiguredError, ErrorKind.NOT_CONFIGURED),
        (NotSupportedSourceError, ErrorKind.NOT_SUPPORTED_SOURCE),
        (TransportError, ErrorKind.TRANSPORT_ERROR),
        (ProtocolError, ErrorKind.PROTOCOL_ERROR),
        (UploadTimeoutError, ErrorKind.TIMEOUT),
        (UploadFailedError, ErrorKind.UPLOAD_FAILED),
    ])
    def test_each_error_maps_to_its_kind(self, error_class, kind):
        error = error_class("details")
        assert isinstance(error, MediaError)
        assert error.kind is kind
        assert error.message == "details"


class TestUploadSession:

    def test_starts_at_offset_zero(self):
        session = UploadSession(upload_url="https://upload.example.com/tus/1", total_bytes=10)
        assert session.offset_sent == 0
