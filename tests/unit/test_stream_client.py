"""
Unit tests for the Cloudflare Stream tus client.

Stream is simulated with httpx.MockTransport. Retry delays go through an
injected sleep; watchdog tests use millisecond timeouts.
"""

import asyncio
import base64

import httpx
import pytest

from src.config.credentials import StreamCredentials
from src.core.media.errors import (
    MediaError,
    NotConfiguredError,
    ProtocolError,
    TransportError,
    UploadFailedError,
    UploadTimeoutError,
)
from src.core.media.models import MediaOwner, UploadSession
from src.core.media.retry import RetryPolicy
from src.infrastructure.stream.client import (
    StreamUploadClient,
    absolute_timeout_seconds,
    encode_tus_metadata,
)

OWNER = MediaOwner(user_id="u1", record_id="42")
UPLOAD_URL = "https://upload.cloudflarestream.com/tus/session-1"


class FakeStreamApi:
    """
    Minimal tus server.

    post_statuses lists the status for each session creation in order;
    the last one repeats.
    """

    def __init__(self, post_statuses=(201,), location=UPLOAD_URL, media_id="abc123",
                 patch_status=204, patch_delay=0.0):
        self.post_statuses = list(post_statuses)
        self.location = location
        self.media_id = media_id
        self.patch_status = patch_status
        self.patch_delay = patch_delay
        self.requests: list[httpx.Request] = []

    def requests_with(self, method):
        return [r for r in self.requests if r.method == method]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.method == "POST":
            index = len(self.requests_with("POST")) - 1
            status = self.post_statuses[min(index, len(self.post_statuses) - 1)]
            headers = {"Location": self.location} if status == 201 and self.location else {}
            return httpx.Response(status, headers=headers, text="" if status == 201 else "boom")

        if request.method == "PATCH":
            if self.patch_delay:
                await asyncio.sleep(self.patch_delay)
            headers = {"stream-media-id": self.media_id} if self.media_id else {}
            return httpx.Response(self.patch_status, headers=headers)

        if request.method == "DELETE":
            return httpx.Response(self.patch_status)

        return httpx.Response(405)


def make_client(credentials, api, sleep, **kwargs) -> StreamUploadClient:
    policy = RetryPolicy(
        max_attempts=kwargs.pop("max_attempts", 3),
        retryable_exceptions=(MediaError,),
        sleep=sleep,
    )
    return StreamUploadClient(
        credentials,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(api)),
        retry_policy=policy,
        **kwargs,
    )


def b64(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

class TestAbsoluteTimeout:
    """30 seconds per started 10 MiB, clamped to [120, 600]."""

    MIB = 1024 * 1024

    def test_small_files_get_the_minimum(self):
        assert absolute_timeout_seconds(0) == 120
        assert absolute_timeout_seconds(5 * self.MIB) == 120

    def test_scales_with_size(self):
        assert absolute_timeout_seconds(50 * self.MIB) == 150
        assert absolute_timeout_seconds(51 * self.MIB) == 180

    def test_large_files_are_capped(self):
        assert absolute_timeout_seconds(200 * self.MIB) == 600
        assert absolute_timeout_seconds(5 * 1024 * self.MIB) == 600


class TestEncodeTusMetadata:

    def test_encodes_pairs_and_drops_empty_values(self):
        assert encode_tus_metadata({"name": "a.mp4", "userId": "", "recordId": "7"}) == (
            "name YS5tcDQ=,recordId Nw=="
        )


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

class TestUploadVideo:

    @pytest.mark.asyncio
    async def test_successful_upload_returns_playback_urls(self, stream_credentials, video_file, recording_sleep):
        api = FakeStreamApi()
        client = make_client(stream_credentials, api, recording_sleep)

        upload = await client.upload_video(video_file, name="trick_42_effect.mp4", owner=OWNER)

        assert upload.media_id == "abc123"
        assert upload.hls_url == (
            "https://customer-test.cloudflarestream.com/abc123/manifest/video.m3u8"
        )
        assert upload.dash_url.endswith("/abc123/manifest/video.mpd")
        assert upload.thumbnail_url.endswith("/abc123/thumbnails/thumbnail.jpg")
        assert upload.playback_url == upload.hls_url
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_session_creation_headers(self, stream_credentials, video_file, recording_sleep):
        api = FakeStreamApi()
        client = make_client(stream_credentials, api, recording_sleep)

        await client.upload_video(video_file, name="trick_42_effect.mp4", owner=OWNER)

        post = api.requests_with("POST")[0]
        assert post.url.path == "/client/v4/accounts/acc/stream"
        assert post.url.params["direct_user"] == "true"
        assert post.headers["Authorization"] == "Bearer stream-token"
        assert post.headers["Tus-Resumable"] == "1.0.0"
        assert post.headers["Upload-Length"] == str(video_file.stat().st_size)
        assert post.headers["Upload-Metadata"] == (
            f"name {b64('trick_42_effect.mp4')},userId {b64('u1')},recordId {b64('42')}"
        )

    @pytest.mark.asyncio
    async def test_transfer_sends_whole_file_from_offset_zero(self, stream_credentials, video_file, recording_sleep):
        api = FakeStreamApi()
        client = make_client(stream_credentials, api, recording_sleep, chunk_size=256)

        await client.upload_video(video_file, name="trick_42_effect.mp4", owner=OWNER)

        patch = api.requests_with("PATCH")[0]
        assert str(patch.url) == UPLOAD_URL
        assert patch.headers["Upload-Offset"] == "0"
        assert patch.headers["Content-Type"] == "application/offset+octet-stream"
        assert patch.headers["Content-Length"] == str(video_file.stat().st_size)
        assert patch.content == video_file.read_bytes()

    @pytest.mark.asyncio
    async def test_relative_location_is_resolved_against_the_api(self, stream_credentials, video_file, recording_sleep):
        api = FakeStreamApi(location="/tus/relative-session")
        client = make_client(stream_credentials, api, recording_sleep)

        await client.upload_video(video_file, name="clip.mp4", owner=OWNER)

        patch = api.requests_with("PATCH")[0]
        assert str(patch.url) == "https://api.cloudflare.com/tus/relative-session"

    @pytest.mark.asyncio
    async def test_progress_reports_bytes_sent(self, stream_credentials, video_file, recording_sleep):
        api = FakeStreamApi()
        client = make_client(stream_credentials, api, recording_sleep, chunk_size=256)
        events = []

        await client.upload_video(
            video_file,
            name="clip.mp4",
            owner=OWNER,
            progress=lambda percent, sent, total: events.append((percent, sent, total)),
        )

        total = video_file.stat().st_size
        assert len(events) == -(-total // 256)
        assert [sent for _, sent, _ in events] == sorted(sent for _, sent, _ in events)
        assert events[-1] == (100, total, total)

    @pytest.mark.asyncio
    async def test_not_configured_makes_no_requests(self, video_file, recording_sleep):
        api = FakeStreamApi()
        client = make_client(StreamCredentials(), api, recording_sleep)

        with pytest.raises(NotConfiguredError):
            await client.upload_video(video_file, name="clip.mp4", owner=OWNER)

        assert api.requests == []

    @pytest.mark.asyncio
    async def test_missing_file_is_a_transport_error(self, stream_credentials, tmp_path, recording_sleep):
        api = FakeStreamApi()
        client = make_client(stream_credentials, api, recording_sleep)

        with pytest.raises(TransportError):
            await client.upload_video(tmp_path / "gone.mp4", name="gone.mp4", owner=OWNER)

        assert api.requests == []


class TestUploadRetries:

    @pytest.mark.asyncio
    async def test_always_failing_transport_makes_three_attempts(self, stream_credentials, video_file, recording_sleep):
        api = FakeStreamApi(post_statuses=[500])
        client = make_client(stream_credentials, api, recording_sleep)

        with pytest.raises(UploadFailedError) as exc_info:
            await client.upload_video(video_file, name="clip.mp4", owner=OWNER)

        assert len(api.requests_with("POST")) == 3
        assert recording_sleep.delays == [2.0, 4.0]
        assert "status 500" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_success_on_second_attempt_waits_once(self, stream_credentials, video_file, recording_sleep):
        api = FakeStreamApi(post_statuses=[503, 201])
        client = make_client(stream_credentials, api, recording_sleep)

        upload = await client.upload_video(video_file, name="clip.mp4", owner=OWNER)

        assert upload.media_id == "abc123"
        assert recording_sleep.delays == [2.0]
        assert len(api.requests_with("POST")) == 2
        assert len(api.requests_with("PATCH")) == 1

    @pytest.mark.asyncio
    async def test_each_retry_starts_a_new_session(self, stream_credentials, video_file, recording_sleep):
        api = FakeStreamApi(patch_status=500)
        client = make_client(stream_credentials, api, recording_sleep)

        with pytest.raises(UploadFailedError):
            await client.upload_video(video_file, name="clip.mp4", owner=OWNER)

        assert len(api.requests_with("POST")) == 3
        assert [r.headers["Upload-Offset"] for r in api.requests_with("PATCH")] == ["0", "0", "0"]

    @pytest.mark.asyncio
    async def test_missing_location_is_a_protocol_error(self, stream_credentials, video_file, recording_sleep):
        api = FakeStreamApi(location=None)
        client = make_client(stream_credentials, api, recording_sleep, max_attempts=1)

        with pytest.raises(UploadFailedError) as exc_info:
            await client.upload_video(video_file, name="clip.mp4", owner=OWNER)

        assert isinstance(exc_info.value.__cause__, ProtocolError)
        assert "Location" in exc_info.value.message
        assert api.requests_with("PATCH") == []

    @pytest.mark.asyncio
    async def test_missing_media_id_is_a_protocol_error(self, stream_credentials, video_file, recording_sleep):
        api = FakeStreamApi(media_id=None)
        client = make_client(stream_credentials, api, recording_sleep, max_attempts=1)

        with pytest.raises(UploadFailedError) as exc_info:
            await client.upload_video(video_file, name="clip.mp4", owner=OWNER)

        assert isinstance(exc_info.value.__cause__, ProtocolError)
        assert "stream-media-id" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_non_204_completion_fails(self, stream_credentials, video_file, recording_sleep):
        api = FakeStreamApi(patch_status=200)
        client = make_client(stream_credentials, api, recording_sleep, max_attempts=1)

        with pytest.raises(UploadFailedError) as exc_info:
            await client.upload_video(video_file, name="clip.mp4", owner=OWNER)

        assert "status 200" in exc_info.value.message


class TestWatchdogs:

    @pytest.mark.asyncio
    async def test_idle_stall_aborts_with_timeout(self, stream_credentials, video_file, recording_sleep):
        """The stalled transfer is cut long before the absolute limit (120s here)."""
        api = FakeStreamApi(patch_delay=30.0)
        client = make_client(
            stream_credentials,
            api,
            recording_sleep,
            max_attempts=1,
            idle_timeout=0.05,
            watchdog_interval=0.01,
        )

        with pytest.raises(UploadFailedError) as exc_info:
            await asyncio.wait_for(
                client.upload_video(video_file, name="clip.mp4", owner=OWNER),
                timeout=5,
            )

        assert isinstance(exc_info.value.__cause__, UploadTimeoutError)
        assert "No upload progress" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_stalled_attempts_are_retried(self, stream_credentials, video_file, recording_sleep):
        api = FakeStreamApi(patch_delay=30.0)
        client = make_client(
            stream_credentials,
            api,
            recording_sleep,
            idle_timeout=0.05,
            watchdog_interval=0.01,
        )

        with pytest.raises(UploadFailedError):
            await asyncio.wait_for(
                client.upload_video(video_file, name="clip.mp4", owner=OWNER),
                timeout=5,
            )

        assert len(api.requests_with("PATCH")) == 3
        assert recording_sleep.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_absolute_limit_aborts_a_transfer_that_keeps_progressing(self, stream_credentials):
        client = StreamUploadClient(stream_credentials, idle_timeout=60, watchdog_interval=0.01)
        session = UploadSession(upload_url=UPLOAD_URL, total_bytes=10)

        async def trickle():
            # progress keeps arriving, so only the absolute limit can stop it
            while True:
                session.last_progress_at = client._clock()
                await asyncio.sleep(0.005)

        session.last_progress_at = client._clock()
        with pytest.raises(UploadTimeoutError, match="maximum attempt duration"):
            await client._supervise(trickle(), session, absolute_timeout=0.05)

        await client.aclose()


# ---------------------------------------------------------------------------
# URLs and management
# ---------------------------------------------------------------------------

class TestUrlHelpers:

    def test_extract_media_id_from_playback_url(self, stream_credentials):
        client = StreamUploadClient(stream_credentials)
        url = "https://customer-test.cloudflarestream.com/abc123/manifest/video.m3u8"
        assert client.extract_media_id(url) == "abc123"

    def test_extract_media_id_ignores_foreign_hosts(self, stream_credentials):
        client = StreamUploadClient(stream_credentials)
        assert client.extract_media_id("https://media.example.com/abc123/video.mp4") is None

    def test_thumbnail_url_with_options(self, stream_credentials):
        client = StreamUploadClient(stream_credentials)
        url = client.get_thumbnail_url("abc123", time="2s", width=320)
        assert url == (
            "https://customer-test.cloudflarestream.com/abc123/thumbnails/thumbnail.jpg"
            "?time=2s&width=320"
        )


class TestDeleteVideo:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, expected", [(200, True), (404, True), (500, False)])
    async def test_delete_outcomes(self, stream_credentials, recording_sleep, status, expected):
        api = FakeStreamApi(patch_status=status)
        client = make_client(stream_credentials, api, recording_sleep)

        assert await client.delete_video("abc123") is expected

        delete = api.requests_with("DELETE")[0]
        assert delete.url.path == "/client/v4/accounts/acc/stream/abc123"

    @pytest.mark.asyncio
    async def test_delete_without_credentials_returns_false(self, recording_sleep):
        api = FakeStreamApi()
        client = make_client(StreamCredentials(), api, recording_sleep)

        assert await client.delete_video("abc123") is False
        assert api.requests == []


class TestVideoManagement:

    @pytest.mark.asyncio
    async def test_video_details(self, stream_credentials):
        def handler(request):
            assert request.url.path == "/client/v4/accounts/acc/stream/abc123"
            return httpx.Response(200, json={"success": True, "result": {"uid": "abc123", "readyToStream": True}})

        client = StreamUploadClient(
            stream_credentials,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        assert (await client.get_video_details("abc123"))["readyToStream"] is True

    @pytest.mark.asyncio
    async def test_video_details_failure_returns_none(self, stream_credentials):
        client = StreamUploadClient(
            stream_credentials,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500))),
        )

        assert await client.get_video_details("abc123") is None

    @pytest.mark.asyncio
    async def test_signed_token(self, stream_credentials):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"result": {"token": "signed.jwt"}})

        client = StreamUploadClient(
            stream_credentials,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        assert await client.create_signed_token("abc123", expires_in=60) == "signed.jwt"
        assert seen[0].method == "POST"
        assert seen[0].url.path.endswith("/stream/abc123/token")

    @pytest.mark.asyncio
    async def test_signed_token_malformed_response(self, stream_credentials):
        client = StreamUploadClient(
            stream_credentials,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))),
        )

        assert await client.create_signed_token("abc123") is None
