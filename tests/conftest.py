"""
Shared fixtures: credentials, small media files and a MediaRouter wired
to in-memory backends (see tests/fakes.py).
"""

from pathlib import Path

import httpx
import pytest

from src.config.credentials import (
    ImagesCredentials,
    ObjectStoreCredentials,
    StreamCredentials,
)
from src.core.media.router import MediaRouter
from src.infrastructure.storage.client import MockStorageClient
from tests.fakes import (
    ACCOUNT_HASH,
    PUBLIC_BASE_URL,
    STREAM_HOST,
    FakeImages,
    FakeStream,
    RecordingSleep,
)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

@pytest.fixture
def stream_credentials() -> StreamCredentials:
    return StreamCredentials(
        account_id="acc",
        api_token="stream-token",
        customer_subdomain=STREAM_HOST,
    )


@pytest.fixture
def images_credentials() -> ImagesCredentials:
    return ImagesCredentials(
        account_id="acc",
        api_token="images-token",
        account_hash=ACCOUNT_HASH,
    )


@pytest.fixture
def object_store_credentials() -> ObjectStoreCredentials:
    return ObjectStoreCredentials(
        access_key_id="key",
        secret_access_key="secret",
        bucket_name="trick-media",
        endpoint_url="https://acc.r2.cloudflarestorage.com",
        public_base_url=PUBLIC_BASE_URL,
    )


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

@pytest.fixture
def video_file(tmp_path: Path) -> Path:
    path = tmp_path / "trick_42_effect.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"v" * 1000)
    return path


@pytest.fixture
def image_file(tmp_path: Path) -> Path:
    path = tmp_path / "photo.jpg"
    path.write_bytes(b"\xff\xd8\xff\xe0" + b"i" * 200)
    return path


@pytest.fixture
def pdf_file(tmp_path: Path) -> Path:
    path = tmp_path / "notes.pdf"
    path.write_bytes(b"%PDF-1.4 notes")
    return path


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_stream() -> FakeStream:
    return FakeStream()


@pytest.fixture
def fake_images() -> FakeImages:
    return FakeImages()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def download_transport() -> httpx.MockTransport:
    """Serves any GET with a small body typed by the URL's extension."""

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("missing.mp4"):
            return httpx.Response(404)
        content_type = "video/mp4" if path.endswith(".mp4") else "application/pdf"
        return httpx.Response(200, content=b"remote-bytes", headers={"content-type": content_type})

    return httpx.MockTransport(handler)


@pytest.fixture
def mock_store(download_transport) -> MockStorageClient:
    return MockStorageClient(
        PUBLIC_BASE_URL,
        http_client=httpx.AsyncClient(transport=download_transport),
    )


@pytest.fixture
def media_router(fake_stream, fake_images, mock_store, download_transport) -> MediaRouter:
    return MediaRouter(
        fake_stream,
        fake_images,
        mock_store,
        http_client=httpx.AsyncClient(transport=download_transport),
    )
