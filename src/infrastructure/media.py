"""
Wiring for the media pipeline.

Builds the three backend clients and the router from settings. Called
once per process (FastAPI lifespan, migration script); the result is
passed around explicitly rather than kept in module globals.
"""

import logging
from typing import Optional

from ..config.credentials import BackendCredentialSet
from ..config.settings import Settings
from ..core.media.errors import MediaError
from ..core.media.retry import RetryPolicy
from ..core.media.router import MediaRouter
from .images.client import ImagesClient
from .storage.client import create_storage_client
from .stream.client import StreamUploadClient

logger = logging.getLogger(__name__)


def create_media_router(
    settings: Settings,
    credentials: Optional[BackendCredentialSet] = None,
) -> MediaRouter:
    credentials = credentials or BackendCredentialSet.from_settings(settings)

    stream = StreamUploadClient(
        credentials.stream,
        retry_policy=RetryPolicy(
            max_attempts=settings.stream_max_attempts,
            retryable_exceptions=(MediaError,),
        ),
        idle_timeout=settings.stream_idle_timeout_seconds,
        session_timeout=settings.stream_session_timeout_seconds,
    )
    images = ImagesClient(credentials.images)
    object_store = create_storage_client(
        credentials=credentials.object_store,
        mock_mode=settings.cloudflare_r2_mock_mode,
    )

    router = MediaRouter(stream, images, object_store)

    logger.info(
        "Media router ready",
        extra={"backends": router.configuration_status()}
    )
    return router
