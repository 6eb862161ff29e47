"""
Cloudflare Stream client: resumable (tus) video uploads.

One upload is up to three attempts. Each attempt:
1. creates a tus session (POST with Upload-Length and Upload-Metadata),
2. streams the whole file to the session URL in one PATCH from offset 0,
3. reads the media id from the stream-media-id response header.

Two watchdogs supervise the PATCH. The idle watchdog aborts when no chunk
has been handed to the transport for 60 seconds; the absolute watchdog
caps the attempt at a size-proportional duration (2 to 10 minutes).

A retry always starts a new session from byte 0. The protocol could
resume from the last acknowledged offset, but restarting keeps the retry
contract simple: an attempt either lands the whole file or nothing.

Docs: https://developers.cloudflare.com/stream/uploading-videos/upload-video-file/
"""

import asyncio
import base64
import logging
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional
from urllib.parse import urlencode, urljoin, urlparse

import httpx

from ...config.credentials import StreamCredentials
from ...core.media.classifier import STREAM_PLAYBACK_DOMAIN
from ...core.media.errors import (
    MediaError,
    NotConfiguredError,
    ProtocolError,
    TransportError,
    UploadFailedError,
    UploadTimeoutError,
)
from ...core.media.models import MediaOwner, ProgressSink, UploadSession
from ...core.media.retry import RetryExhaustedError, RetryPolicy

logger = logging.getLogger(__name__)

TUS_VERSION = "1.0.0"
MEDIA_ID_HEADER = "stream-media-id"

CHUNK_SIZE = 1024 * 1024
IDLE_TIMEOUT_SECONDS = 60.0
WATCHDOG_INTERVAL_SECONDS = 5.0
SESSION_TIMEOUT_SECONDS = 30.0

MIN_ATTEMPT_SECONDS = 120
MAX_ATTEMPT_SECONDS = 600
SECONDS_PER_STEP = 30
STEP_BYTES = 10 * 1024 * 1024


def absolute_timeout_seconds(file_size_bytes: int) -> int:
    """
    Upper bound for one attempt: 30s per started 10 MiB, clamped to [120, 600].

    >>> absolute_timeout_seconds(5 * 1024 * 1024)
    120
    >>> absolute_timeout_seconds(50 * 1024 * 1024)
    150
    """
    steps = math.ceil(file_size_bytes / STEP_BYTES)
    return min(max(MIN_ATTEMPT_SECONDS, steps * SECONDS_PER_STEP), MAX_ATTEMPT_SECONDS)


def encode_tus_metadata(values: dict[str, Optional[str]]) -> str:
    """Upload-Metadata header: comma-separated "key base64(value)" pairs, empty values dropped."""
    parts = []
    for key, value in values.items():
        if not value:
            continue
        encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
        parts.append(f"{key} {encoded}")
    return ",".join(parts)


@dataclass(frozen=True)
class StreamUpload:
    """URLs derived from a Stream media id. No extra round-trip needed."""
    media_id: str
    hls_url: str
    dash_url: str
    thumbnail_url: str

    @property
    def playback_url(self) -> str:
        return self.hls_url


class StreamUploadClient:
    """
    Resumable upload client for Cloudflare Stream.

    Constructed once at startup and shared. The httpx client is created
    here unless one is injected (tests inject a MockTransport-backed one).
    """

    def __init__(
        self,
        credentials: StreamCredentials,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        idle_timeout: float = IDLE_TIMEOUT_SECONDS,
        watchdog_interval: float = WATCHDOG_INTERVAL_SECONDS,
        session_timeout: float = SESSION_TIMEOUT_SECONDS,
        chunk_size: int = CHUNK_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._credentials = credentials
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self._retry = retry_policy or RetryPolicy(
            max_attempts=3,
            retryable_exceptions=(MediaError,),
        )
        self._idle_timeout = idle_timeout
        self._watchdog_interval = watchdog_interval
        self._session_timeout = session_timeout
        self._chunk_size = chunk_size
        self._clock = clock

        if not credentials.is_configured:
            logger.warning("Cloudflare Stream credentials not configured")

    @property
    def is_configured(self) -> bool:
        return self._credentials.is_configured

    @property
    def playback_host(self) -> str:
        return self._credentials.customer_subdomain

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload_video(
        self,
        path: Path,
        *,
        name: str,
        owner: MediaOwner,
        progress: Optional[ProgressSink] = None,
    ) -> StreamUpload:
        """
        Upload a local video file.

        Raises:
            NotConfiguredError: credentials missing (no network call made)
            TransportError: the local file cannot be read
            UploadFailedError: every attempt failed; carries the last error
        """
        if not self._credentials.is_configured:
            raise NotConfiguredError(
                "Cloudflare Stream is not configured. Check CLOUDFLARE_ACCOUNT_ID, "
                "CLOUDFLARE_STREAM_API_TOKEN and CLOUDFLARE_STREAM_CUSTOMER_SUBDOMAIN"
            )

        try:
            total_bytes = path.stat().st_size
        except OSError as e:
            raise TransportError(f"Video file not readable: {e}") from e

        metadata = encode_tus_metadata({
            "name": name,
            "userId": owner.user_id,
            "recordId": owner.record_id,
        })

        logger.info(
            "Starting Stream upload",
            extra={
                "video_filename": name,
                "size_bytes": total_bytes,
                "user_id": owner.user_id,
                "record_id": owner.record_id,
                "absolute_timeout_s": absolute_timeout_seconds(total_bytes),
            }
        )

        try:
            media_id = await self._retry.run(
                lambda: self._attempt(path, total_bytes, metadata, progress),
                operation_name="stream_upload",
            )
        except RetryExhaustedError as e:
            raise UploadFailedError(str(e.last_error)) from e.last_error

        logger.info("Stream upload completed", extra={"media_id": media_id})
        return self.build_upload(media_id)

    async def _attempt(
        self,
        path: Path,
        total_bytes: int,
        metadata: str,
        progress: Optional[ProgressSink],
    ) -> str:
        session = await self._create_session(total_bytes, metadata)
        response = await self._supervise(
            self._transfer(session, path, progress),
            session,
            absolute_timeout_seconds(total_bytes),
        )
        return self._parse_completion(response)

    async def _create_session(self, total_bytes: int, metadata: str) -> UploadSession:
        headers = {
            **self._auth_headers(),
            "Tus-Resumable": TUS_VERSION,
            "Upload-Length": str(total_bytes),
            "Upload-Metadata": metadata,
        }
        try:
            response = await self._http.post(
                self._credentials.endpoint,
                params={"direct_user": "true"},
                headers=headers,
                timeout=self._session_timeout,
            )
        except httpx.TimeoutException as e:
            raise UploadTimeoutError(f"Timed out creating upload session: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Could not create upload session: {e}") from e

        if not response.is_success:
            raise UploadFailedError(
                f"Upload session rejected (status {response.status_code}): {response.text}"
            )

        location = response.headers.get("location")
        if not location:
            raise ProtocolError("Upload session response did not include a Location header")

        upload_url = urljoin(str(response.request.url), location)
        logger.debug("Created tus session", extra={"upload_url": upload_url})

        return UploadSession(
            upload_url=upload_url,
            total_bytes=total_bytes,
            last_progress_at=self._clock(),
        )

    async def _transfer(
        self,
        session: UploadSession,
        path: Path,
        progress: Optional[ProgressSink],
    ) -> httpx.Response:
        headers = {
            **self._auth_headers(),
            "Tus-Resumable": TUS_VERSION,
            "Upload-Offset": "0",
            "Content-Type": "application/offset+octet-stream",
            "Content-Length": str(session.total_bytes),
        }
        try:
            # watchdogs own the timing of this request
            return await self._http.patch(
                session.upload_url,
                content=self._read_chunks(session, path, progress),
                headers=headers,
                timeout=None,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Upload transfer failed: {e}") from e
        except OSError as e:
            raise TransportError(f"Video file not readable: {e}") from e

    async def _read_chunks(
        self,
        session: UploadSession,
        path: Path,
        progress: Optional[ProgressSink],
    ) -> AsyncIterator[bytes]:
        with open(path, "rb") as fh:
            while True:
                chunk = await asyncio.to_thread(fh.read, self._chunk_size)
                if not chunk:
                    break
                yield chunk
                # resumed by the transport once the chunk has been taken
                session.offset_sent += len(chunk)
                self._record_progress(session, progress)

    def _record_progress(self, session: UploadSession, progress: Optional[ProgressSink]) -> None:
        session.last_progress_at = self._clock()
        if progress is not None and session.total_bytes > 0:
            percent = min(round(session.offset_sent / session.total_bytes * 100), 100)
            progress(percent, session.offset_sent, session.total_bytes)

    async def _supervise(
        self,
        transfer: Awaitable[httpx.Response],
        session: UploadSession,
        absolute_timeout: float,
    ) -> httpx.Response:
        """Await the transfer while enforcing the idle and absolute watchdogs."""
        task = asyncio.ensure_future(transfer)
        started = self._clock()
        try:
            while True:
                remaining = absolute_timeout - (self._clock() - started)
                done, _ = await asyncio.wait(
                    {task},
                    timeout=max(0.0, min(self._watchdog_interval, remaining)),
                )
                if task in done:
                    return task.result()

                now = self._clock()
                if now - session.last_progress_at >= self._idle_timeout:
                    raise UploadTimeoutError(
                        f"No upload progress for {self._idle_timeout:g} seconds "
                        f"({session.offset_sent}/{session.total_bytes} bytes sent)"
                    )
                if now - started >= absolute_timeout:
                    raise UploadTimeoutError(
                        f"Upload exceeded the maximum attempt duration of {absolute_timeout:g}s"
                    )
        finally:
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

    def _parse_completion(self, response: httpx.Response) -> str:
        if response.status_code != 204:
            raise UploadFailedError(
                f"Upload rejected (status {response.status_code}): {response.text}"
            )
        media_id = response.headers.get(MEDIA_ID_HEADER)
        if not media_id:
            raise ProtocolError(f"Upload response did not include the {MEDIA_ID_HEADER} header")
        return media_id

    # ------------------------------------------------------------------
    # URL construction
    # ------------------------------------------------------------------

    def build_upload(self, media_id: str) -> StreamUpload:
        base = f"https://{self._credentials.customer_subdomain}/{media_id}"
        return StreamUpload(
            media_id=media_id,
            hls_url=f"{base}/manifest/video.m3u8",
            dash_url=f"{base}/manifest/video.mpd",
            thumbnail_url=f"{base}/thumbnails/thumbnail.jpg",
        )

    def get_thumbnail_url(
        self,
        media_id: str,
        *,
        time: Optional[str] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> str:
        """
        Thumbnail URL for a video.

        Args:
            time: position such as "1s", "50%" or "1m30s"
        """
        url = f"https://{self._credentials.customer_subdomain}/{media_id}/thumbnails/thumbnail.jpg"
        params = {}
        if time:
            params["time"] = time
        if width:
            params["width"] = str(width)
        if height:
            params["height"] = str(height)
        return f"{url}?{urlencode(params)}" if params else url

    def owns_url(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        if not host:
            return False
        subdomain = self._credentials.customer_subdomain.lower()
        return host.endswith(STREAM_PLAYBACK_DOMAIN) or (bool(subdomain) and host == subdomain)

    def extract_media_id(self, url: str) -> Optional[str]:
        """Media id is the first path segment of a playback URL."""
        if not self.owns_url(url):
            return None
        segments = [s for s in urlparse(url).path.split("/") if s]
        return segments[0] if segments else None

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    async def delete_video(self, media_id: str) -> bool:
        """Delete a video. A 404 counts as success: the video is gone either way."""
        if not self._credentials.is_configured:
            logger.warning("Cannot delete video, Stream not configured", extra={"media_id": media_id})
            return False

        try:
            response = await self._http.delete(
                f"{self._credentials.endpoint}/{media_id}",
                headers=self._auth_headers(),
            )
        except httpx.HTTPError as e:
            logger.error("Failed to delete video", extra={"media_id": media_id, "error": str(e)})
            return False

        if response.status_code == 404:
            logger.info("Video already absent from Stream", extra={"media_id": media_id})
            return True

        if not response.is_success:
            logger.error(
                "Failed to delete video",
                extra={"media_id": media_id, "status": response.status_code},
            )
            return False

        logger.info("Deleted video", extra={"media_id": media_id})
        return True

    async def get_video_details(self, media_id: str) -> Optional[dict]:
        """Processing status, duration and playback info, or None on failure."""
        try:
            response = await self._http.get(
                f"{self._credentials.endpoint}/{media_id}",
                headers=self._auth_headers(),
            )
            response.raise_for_status()
            return response.json().get("result")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to fetch video details", extra={"media_id": media_id, "error": str(e)})
            return None

    async def create_signed_token(self, media_id: str, expires_in: int = 3600) -> Optional[str]:
        """
        Signed playback token for videos that require signed URLs.

        Needs signing keys enabled on the Stream account.
        """
        try:
            response = await self._http.post(
                f"{self._credentials.endpoint}/{media_id}/token",
                headers=self._auth_headers(),
                json={"exp": int(time.time()) + expires_in},
            )
            response.raise_for_status()
            return response.json()["result"]["token"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.error("Failed to create signed token", extra={"media_id": media_id, "error": str(e)})
            return None

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._credentials.api_token}"}
