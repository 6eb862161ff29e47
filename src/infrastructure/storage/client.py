"""
Object storage client for generic files and the image fallback.

Supports Cloudflare R2 (S3-compatible) with mock mode for local development.
Objects are public: the URL handed back to the catalog is
{public_base_url}/{key}, served by the bucket's custom domain or r2.dev.

Mock mode stores objects in memory, enabling API testing without
provisioning actual object storage.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol
from urllib.parse import urlparse

import httpx

from ...config.credentials import ObjectStoreCredentials
from ...core.media.classifier import content_type_for
from ...core.media.errors import NotConfiguredError, TransportError, UploadFailedError
from ...core.media.models import ProgressSink

logger = logging.getLogger(__name__)

R2_PUBLIC_DOMAIN = ".r2.dev"
NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
DOWNLOAD_TIMEOUT_SECONDS = 120.0


@dataclass(frozen=True)
class StoredObject:
    """An object written to the bucket."""
    key: str
    public_url: str
    size_bytes: int
    content_type: str


class ObjectStore(Protocol):
    """
    Protocol for object storage operations.

    Using a protocol means tests can provide mocks and we can
    swap storage backends without changing dependent code.
    """

    @property
    def is_configured(self) -> bool:
        ...

    async def upload_file(
        self,
        path: Path,
        key: str,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        progress: Optional[ProgressSink] = None,
    ) -> StoredObject:
        """Upload a local file under key."""
        ...

    async def delete_file(self, key: str) -> bool:
        """Delete by exact key. Missing objects count as deleted."""
        ...

    async def copy_from_url(
        self,
        source_url: str,
        key: str,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> StoredObject:
        """Download an external resource and store it under key."""
        ...

    def get_public_url(self, key: str) -> str:
        ...

    def owns_url(self, url: str) -> bool:
        ...

    def extract_key(self, url: str) -> Optional[str]:
        ...

    async def aclose(self) -> None:
        ...


class _ProgressTracker:
    """
    boto3 transfer callback adapter.

    boto3 reports byte increments from its transfer threads, possibly
    several at once for multipart uploads, so the running total is
    guarded by a lock.
    """

    def __init__(self, total_bytes: int, sink: Optional[ProgressSink]) -> None:
        self._total = total_bytes
        self._sink = sink
        self._sent = 0
        self._lock = threading.Lock()

    def __call__(self, bytes_amount: int) -> None:
        with self._lock:
            self._sent += bytes_amount
            sent = self._sent
        if self._sink is not None and self._total > 0:
            percent = min(round(sent / self._total * 100), 100)
            self._sink(percent, sent, self._total)


def _is_not_found(error: Exception) -> bool:
    response = getattr(error, "response", None) or {}
    code = str(response.get("Error", {}).get("Code", ""))
    status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in NOT_FOUND_CODES or status == 404


async def _download(http: httpx.AsyncClient, source_url: str) -> tuple[bytes, Optional[str]]:
    """Fetch a whole resource into memory. Returns (body, content type)."""
    try:
        response = await http.get(source_url, follow_redirects=True)
    except httpx.HTTPError as e:
        raise TransportError(f"Download failed: {e}") from e

    if not response.is_success:
        raise UploadFailedError(f"Download failed (status {response.status_code}): {source_url}")

    content_type = response.headers.get("content-type")
    return response.content, content_type.split(";")[0].strip() if content_type else None


def _key_from_url(url: str, public_base_url: str) -> Optional[str]:
    if public_base_url and url.startswith(public_base_url + "/"):
        key = url[len(public_base_url) + 1:]
    else:
        key = urlparse(url).path.lstrip("/")
    key = key.split("?", 1)[0]
    return key or None


class R2StorageClient:
    """
    Cloudflare R2 object storage client.

    Uses boto3 because R2 is S3-compatible. Uploads go through boto3's
    managed transfer, which streams from the file handle and switches to
    multipart for large files.

    All methods are async even though boto3 is synchronous; blocking
    calls run in a worker thread.
    """

    def __init__(
        self,
        credentials: ObjectStoreCredentials,
        *,
        s3_client: Any = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize R2 client with boto3.

        An s3_client can be injected for tests; otherwise one is built
        from the credentials.
        """
        self._credentials = credentials
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SECONDS)

        if s3_client is None and credentials.is_configured:
            try:
                import boto3
                from botocore.config import Config
            except ImportError:
                raise ImportError(
                    "boto3 is required for R2 storage. Install with: pip install boto3"
                )

            # R2 requires v4 signatures and has specific endpoint patterns
            boto_config = Config(
                signature_version='s3v4',
                s3={'addressing_style': 'path'},
            )

            s3_client = boto3.client(
                's3',
                endpoint_url=credentials.endpoint_url,
                aws_access_key_id=credentials.access_key_id,
                aws_secret_access_key=credentials.secret_access_key,
                region_name=credentials.region,
                config=boto_config,
            )

        self._s3_client = s3_client

        if self.is_configured:
            logger.info(
                "Initialized R2 storage client",
                extra={
                    "bucket": credentials.bucket_name,
                    "endpoint": credentials.endpoint_url,
                }
            )
        else:
            logger.warning("Cloudflare R2 credentials not configured")

    @property
    def is_configured(self) -> bool:
        return self._s3_client is not None and self._credentials.is_configured

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def upload_file(
        self,
        path: Path,
        key: str,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        progress: Optional[ProgressSink] = None,
    ) -> StoredObject:
        """
        Stream a local file into the bucket under key.

        Raises:
            NotConfiguredError: credentials missing
            TransportError: the local file cannot be read
            UploadFailedError: R2 rejected the upload
        """
        self._ensure_configured()

        try:
            size_bytes = path.stat().st_size
        except OSError as e:
            raise TransportError(f"File not readable: {e}") from e

        content_type = content_type or content_type_for(key)
        tracker = _ProgressTracker(size_bytes, progress)

        def _upload() -> None:
            with open(path, "rb") as fh:
                self._s3_client.upload_fileobj(
                    fh,
                    self._credentials.bucket_name,
                    key,
                    ExtraArgs={
                        "ContentType": content_type,
                        "Metadata": dict(metadata or {}),
                    },
                    Callback=tracker,
                )

        try:
            await asyncio.to_thread(_upload)
        except OSError as e:
            raise TransportError(f"File not readable: {e}") from e
        except Exception as e:
            logger.error(
                "Failed to upload file",
                extra={"key": key, "error": str(e)}
            )
            raise UploadFailedError(f"Upload failed: {e}") from e

        logger.info(
            "Uploaded file",
            extra={"key": key, "size_bytes": size_bytes, "content_type": content_type}
        )

        return StoredObject(
            key=key,
            public_url=self.get_public_url(key),
            size_bytes=size_bytes,
            content_type=content_type,
        )

    async def delete_file(self, key: str) -> bool:
        """Delete an object by key. A missing object counts as deleted."""
        if not self.is_configured:
            logger.warning("Cannot delete file, R2 not configured", extra={"key": key})
            return False

        try:
            await asyncio.to_thread(
                self._s3_client.delete_object,
                Bucket=self._credentials.bucket_name,
                Key=key,
            )
        except Exception as e:
            if _is_not_found(e):
                logger.info("File already absent from R2", extra={"key": key})
                return True
            logger.error(
                "Failed to delete file",
                extra={"key": key, "error": str(e)}
            )
            return False

        logger.info("Deleted file", extra={"key": key})
        return True

    async def copy_from_url(
        self,
        source_url: str,
        key: str,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> StoredObject:
        """
        Copy an external resource into the bucket.

        The body is held fully in memory, so this is meant for the
        one-off migration, not for live uploads.
        """
        self._ensure_configured()

        logger.info("Copying file from URL", extra={"source_url": source_url, "key": key})
        body, remote_type = await _download(self._http, source_url)
        content_type = content_type or remote_type or content_type_for(key)

        try:
            await asyncio.to_thread(
                self._s3_client.put_object,
                Bucket=self._credentials.bucket_name,
                Key=key,
                Body=body,
                ContentType=content_type,
                Metadata=dict(metadata or {}),
            )
        except Exception as e:
            logger.error(
                "Failed to copy file",
                extra={"source_url": source_url, "key": key, "error": str(e)}
            )
            raise UploadFailedError(f"Copy failed: {e}") from e

        return StoredObject(
            key=key,
            public_url=self.get_public_url(key),
            size_bytes=len(body),
            content_type=content_type,
        )

    async def get_file_metadata(self, key: str) -> dict[str, Any]:
        """Size, type and modification time without downloading the body."""
        try:
            response = await asyncio.to_thread(
                self._s3_client.head_object,
                Bucket=self._credentials.bucket_name,
                Key=key,
            )
        except Exception as e:
            if not _is_not_found(e):
                logger.error("Failed to read file metadata", extra={"key": key, "error": str(e)})
            return {"exists": False}

        return {
            "exists": True,
            "size": response.get("ContentLength"),
            "content_type": response.get("ContentType"),
            "last_modified": response.get("LastModified"),
        }

    def get_public_url(self, key: str) -> str:
        return f"{self._credentials.public_base_url}/{key}"

    def owns_url(self, url: str) -> bool:
        base = self._credentials.public_base_url
        if base and url.startswith(base + "/"):
            return True
        return (urlparse(url).hostname or "").endswith(R2_PUBLIC_DOMAIN)

    def extract_key(self, url: str) -> Optional[str]:
        if not self.owns_url(url):
            return None
        return _key_from_url(url, self._credentials.public_base_url)

    def _ensure_configured(self) -> None:
        if not self.is_configured:
            raise NotConfiguredError(
                "Cloudflare R2 is not configured. Check CLOUDFLARE_R2_ACCESS_KEY_ID, "
                "CLOUDFLARE_R2_SECRET_ACCESS_KEY, CLOUDFLARE_R2_BUCKET_NAME and "
                "CLOUDFLARE_R2_PUBLIC_URL"
            )


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

class MockStorageClient:
    """
    In-memory storage for local development.

    This mock enables testing the full API flow without provisioning
    real object storage. Objects are stored in a dictionary and "URLs"
    are mock URIs.

    Not suitable for production, but perfect for development and testing.
    """

    def __init__(
        self,
        public_base_url: str = "mock://storage",
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        # {key: (body, content_type, metadata)}
        self._objects: dict[str, tuple[bytes, str, dict[str, str]]] = {}
        self._public_base_url = public_base_url.rstrip("/")
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SECONDS)
        logger.info("Initialized mock storage client (in-memory)")

    @property
    def is_configured(self) -> bool:
        return True

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    def get_object(self, key: str) -> Optional[bytes]:
        stored = self._objects.get(key)
        return stored[0] if stored else None

    async def upload_file(
        self,
        path: Path,
        key: str,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        progress: Optional[ProgressSink] = None,
    ) -> StoredObject:
        """Store file contents in memory."""
        try:
            body = path.read_bytes()
        except OSError as e:
            raise TransportError(f"File not readable: {e}") from e

        return self._store(key, body, content_type or content_type_for(key), metadata, progress)

    async def copy_from_url(
        self,
        source_url: str,
        key: str,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> StoredObject:
        body, remote_type = await _download(self._http, source_url)
        return self._store(key, body, content_type or remote_type or content_type_for(key), metadata)

    def _store(
        self,
        key: str,
        body: bytes,
        content_type: str,
        metadata: Optional[dict[str, str]],
        progress: Optional[ProgressSink] = None,
    ) -> StoredObject:
        self._objects[key] = (body, content_type, dict(metadata or {}))
        if progress is not None and body:
            progress(100, len(body), len(body))

        logger.debug(
            "Stored object in mock storage",
            extra={"key": key, "size_bytes": len(body)}
        )

        return StoredObject(
            key=key,
            public_url=self.get_public_url(key),
            size_bytes=len(body),
            content_type=content_type,
        )

    async def delete_file(self, key: str) -> bool:
        self._objects.pop(key, None)
        return True

    def get_public_url(self, key: str) -> str:
        return f"{self._public_base_url}/{key}"

    def owns_url(self, url: str) -> bool:
        return url.startswith(self._public_base_url + "/")

    def extract_key(self, url: str) -> Optional[str]:
        if not self.owns_url(url):
            return None
        return _key_from_url(url, self._public_base_url)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_client(
    credentials: Optional[ObjectStoreCredentials] = None,
    mock_mode: bool = False,
) -> ObjectStore:
    """
    Create storage client based on configuration.

    Args:
        credentials: R2 credentials (required if not mock_mode)
        mock_mode: If True, return mock client for testing

    Returns:
        ObjectStore implementation (R2 or Mock)
    """
    if mock_mode:
        return MockStorageClient()

    if credentials is None:
        raise ValueError("credentials are required when not in mock mode")

    return R2StorageClient(credentials)
