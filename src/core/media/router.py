"""
Media router: one entry point for uploads and deletes.

    videos  -> Cloudflare Stream (resumable upload)
    images  -> Cloudflare Images, or R2 when Images is unavailable/disabled
    other   -> R2

The router is built once at startup with the three clients and holds no
state of its own between calls. Expected failures come back as failed
UploadResult values; deletes come back as booleans.
"""

import logging
import secrets
import string
import tempfile
import time
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import urlparse

import httpx

from .classifier import (
    build_url_rules,
    classify_by_name,
    classify_by_url,
    content_type_for,
    file_extension,
)
from .errors import MediaError, NotConfiguredError, TransportError, UploadFailedError
from .models import (
    ErrorKind,
    MediaKind,
    MediaOwner,
    ProgressSink,
    UploadRequest,
    UploadResult,
)

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_FOLDER = "images"
DEFAULT_FILE_FOLDER = "files"
# a stalled legacy host fails after the same idle limit as a Stream upload
DOWNLOAD_TIMEOUT = httpx.Timeout(30.0, read=60.0)
_TOKEN_ALPHABET = string.ascii_lowercase + string.digits


def generate_unique_key(folder: str, file_name: str, owner_id: Optional[str] = None) -> str:
    """
    Object key of the form {owner_id}/{folder}/{epoch_millis}_{token}.{ext}.

    The random token keeps keys distinct even when two uploads for the
    same owner land in the same millisecond.
    """
    timestamp = int(time.time() * 1000)
    token = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(10))
    extension = file_extension(file_name) or "bin"
    prefix = f"{owner_id}/" if owner_id else ""
    return f"{prefix}{folder}/{timestamp}_{token}.{extension}"


def _file_name_from_url(url: str) -> str:
    name = urlparse(url).path.rsplit("/", 1)[-1]
    return name or "download.bin"


# ---------------------------------------------------------------------------
# Client surfaces the router relies on
# ---------------------------------------------------------------------------

class VideoBackend(Protocol):
    is_configured: bool
    playback_host: str

    async def upload_video(self, path: Path, *, name: str, owner: MediaOwner,
                           progress: Optional[ProgressSink] = None): ...
    async def delete_video(self, media_id: str) -> bool: ...
    def extract_media_id(self, url: str) -> Optional[str]: ...
    async def aclose(self) -> None: ...


class ImageBackend(Protocol):
    is_configured: bool
    delivery_host: str

    async def upload_image(self, path: Path, *, file_name: Optional[str] = None,
                           image_id: Optional[str] = None,
                           metadata: Optional[dict[str, str]] = None,
                           require_signed_urls: Optional[bool] = None): ...
    async def upload_from_url(self, source_url: str, *, image_id: Optional[str] = None,
                              metadata: Optional[dict[str, str]] = None,
                              require_signed_urls: Optional[bool] = None): ...
    async def delete_image(self, image_id: str) -> bool: ...
    def owns_url(self, url: str) -> bool: ...
    def extract_image_id(self, url: str) -> Optional[str]: ...
    async def aclose(self) -> None: ...


class ObjectBackend(Protocol):
    is_configured: bool

    async def upload_file(self, path: Path, key: str, *, content_type: Optional[str] = None,
                          metadata: Optional[dict[str, str]] = None,
                          progress: Optional[ProgressSink] = None): ...
    async def copy_from_url(self, source_url: str, key: str, *,
                            content_type: Optional[str] = None,
                            metadata: Optional[dict[str, str]] = None): ...
    async def delete_file(self, key: str) -> bool: ...
    def extract_key(self, url: str) -> Optional[str]: ...
    async def aclose(self) -> None: ...


class MediaRouter:
    """Dispatches uploads and deletes to the right backend client."""

    def __init__(
        self,
        stream: VideoBackend,
        images: ImageBackend,
        object_store: ObjectBackend,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._stream = stream
        self._images = images
        self._object_store = object_store
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT)
        self._url_rules = build_url_rules(
            stream_hosts=[stream.playback_host],
            image_hosts=[images.delivery_host],
        )

    def configuration_status(self) -> dict[str, bool]:
        return {
            "stream": self._stream.is_configured,
            "images": self._images.is_configured,
            "r2": self._object_store.is_configured,
        }

    def classify_url(self, url: str) -> MediaKind:
        return classify_by_url(url, self._url_rules)

    async def aclose(self) -> None:
        await self._stream.aclose()
        await self._images.aclose()
        await self._object_store.aclose()
        if self._owns_http_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload(self, request: UploadRequest) -> UploadResult:
        """Classify, upload and normalize. Never raises for expected failures."""
        kind = request.media_kind_hint or classify_by_name(request.file_name)

        logger.info(
            "Routing upload",
            extra={
                "media_kind": kind.value,
                "upload_filename": request.file_name,
                "user_id": request.owner.user_id,
                "record_id": request.owner.record_id,
            }
        )

        try:
            if not request.source_location.is_file():
                raise TransportError(f"Source file not found: {request.source_location}")

            if kind is MediaKind.VIDEO:
                return await self._upload_video(request)
            if kind is MediaKind.IMAGE:
                return await self._upload_image(request)
            return await self._upload_to_object_store(
                request, kind, request.folder or DEFAULT_FILE_FOLDER
            )

        except MediaError as e:
            logger.error(
                "Upload failed",
                extra={
                    "media_kind": kind.value,
                    "error_kind": e.kind.value,
                    "error": e.message,
                    "upload_filename": request.file_name,
                }
            )
            return UploadResult.failure(kind, e.kind, e.message)

    async def _upload_video(self, request: UploadRequest) -> UploadResult:
        upload = await self._stream.upload_video(
            request.source_location,
            name=request.file_name,
            owner=request.owner,
            progress=request.progress_sink,
        )
        return UploadResult.ok(
            MediaKind.VIDEO,
            upload.hls_url,
            thumbnail_url=upload.thumbnail_url,
            backend_media_id=upload.media_id,
            variant_urls={
                "hls": upload.hls_url,
                "dash": upload.dash_url,
                "thumbnail": upload.thumbnail_url,
            },
        )

    async def _upload_image(self, request: UploadRequest) -> UploadResult:
        if request.use_images_for_photos and self._images.is_configured:
            upload = await self._images.upload_image(
                request.source_location,
                file_name=request.file_name,
                metadata=self._metadata(request.file_name, request.owner, request.metadata),
            )
            return self._image_result(upload)

        return await self._upload_to_object_store(
            request, MediaKind.IMAGE, request.folder or DEFAULT_IMAGE_FOLDER
        )

    async def _upload_to_object_store(
        self,
        request: UploadRequest,
        kind: MediaKind,
        folder: str,
    ) -> UploadResult:
        key = generate_unique_key(folder, request.file_name, request.owner.user_id)
        stored = await self._object_store.upload_file(
            request.source_location,
            key,
            content_type=content_type_for(request.file_name),
            metadata=self._metadata(request.file_name, request.owner, request.metadata),
            progress=request.progress_sink,
        )
        return UploadResult.ok(
            kind,
            stored.public_url,
            thumbnail_url=stored.public_url if kind is MediaKind.IMAGE else None,
            backend_media_id=stored.key,
        )

    def _image_result(self, upload) -> UploadResult:
        return UploadResult.ok(
            MediaKind.IMAGE,
            upload.url,
            thumbnail_url=upload.variants.get("thumbnail"),
            backend_media_id=upload.image_id,
            variant_urls=upload.variants,
        )

    @staticmethod
    def _metadata(
        file_name: str,
        owner: MediaOwner,
        extra: Optional[dict[str, str]] = None,
    ) -> dict[str, str]:
        return {
            "fileName": file_name,
            "userId": owner.user_id,
            "recordId": owner.record_id,
            **(extra or {}),
        }

    # ------------------------------------------------------------------
    # Migration ingestion
    # ------------------------------------------------------------------

    async def import_from_url(
        self,
        source_url: str,
        owner: MediaOwner,
        *,
        file_name: Optional[str] = None,
        media_kind_hint: Optional[MediaKind] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> UploadResult:
        """
        Land a remotely hosted file in the matching backend.

        Used by the migration, not by live uploads: images go through the
        Images URL ingestion, files are copied into R2, and videos are
        downloaded to a temporary file and sent through the Stream upload.
        """
        name = file_name or _file_name_from_url(source_url)
        kind = media_kind_hint or classify_by_name(name)

        try:
            if kind is MediaKind.VIDEO:
                return await self._import_video(source_url, name, owner)

            if kind is MediaKind.IMAGE and self._images.is_configured:
                upload = await self._images.upload_from_url(
                    source_url,
                    image_id=f"{owner.user_id}_{owner.record_id}_{secrets.token_hex(4)}",
                    metadata=self._metadata(name, owner, metadata),
                )
                return self._image_result(upload)

            folder = DEFAULT_IMAGE_FOLDER if kind is MediaKind.IMAGE else DEFAULT_FILE_FOLDER
            key = generate_unique_key(folder, name, owner.user_id)
            stored = await self._object_store.copy_from_url(
                source_url,
                key,
                metadata=self._metadata(name, owner, metadata),
            )
            return UploadResult.ok(
                kind,
                stored.public_url,
                thumbnail_url=stored.public_url if kind is MediaKind.IMAGE else None,
                backend_media_id=stored.key,
            )

        except MediaError as e:
            logger.error(
                "Import failed",
                extra={"source_url": source_url, "error_kind": e.kind.value, "error": e.message}
            )
            return UploadResult.failure(kind, e.kind, e.message)

    async def _import_video(self, source_url: str, name: str, owner: MediaOwner) -> UploadResult:
        if not self._stream.is_configured:
            raise NotConfiguredError("Cloudflare Stream is not configured")

        suffix = f".{file_extension(name) or 'mp4'}"
        with tempfile.TemporaryDirectory() as tmp_dir:
            local_path = Path(tmp_dir) / f"import{suffix}"
            await self._download_to(source_url, local_path)
            return await self._upload_video(
                UploadRequest(source_location=local_path, file_name=name, owner=owner)
            )

    async def _download_to(self, source_url: str, destination: Path) -> None:
        try:
            async with self._http.stream("GET", source_url, follow_redirects=True) as response:
                if not response.is_success:
                    raise UploadFailedError(
                        f"Download failed (status {response.status_code}): {source_url}"
                    )
                with open(destination, "wb") as fh:
                    async for chunk in response.aiter_bytes():
                        fh.write(chunk)
        except httpx.HTTPError as e:
            raise TransportError(f"Download failed: {e}") from e

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, url: str, media_kind_hint: Optional[MediaKind] = None) -> bool:
        """
        Delete whatever a previously returned URL points at.

        True when the backend deleted the object or reports it missing.
        False on backend errors and for URLs no backend owns.
        """
        kind = media_kind_hint or self.classify_url(url)

        if kind is MediaKind.VIDEO:
            media_id = self._stream.extract_media_id(url)
            if media_id:
                return await self._stream.delete_video(media_id)

        elif kind is MediaKind.IMAGE and self._images.owns_url(url):
            image_id = self._images.extract_image_id(url)
            if image_id:
                return await self._images.delete_image(image_id)

        else:
            key = self._object_store.extract_key(url)
            if key:
                return await self._object_store.delete_file(key)

        logger.warning(
            "Delete skipped, URL not owned by any backend",
            extra={
                "url": url,
                "media_kind": kind.value,
                "error_kind": ErrorKind.NOT_SUPPORTED_SOURCE.value,
            }
        )
        return False
