"""
Migration of legacy-hosted media into the Cloudflare backends.

The catalog used to keep videos and photos in its database provider's
bucket. This moves every such URL into Stream, Images or R2 and reports
old URL -> new URL replacements; rewriting the catalog rows is left to
whoever owns the catalog.

Items are processed one at a time, in batches with a pause between
batches, so the backends never see more than one upload from here.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional
from urllib.parse import urlparse

from .classifier import classify_by_name
from .errors import NotSupportedSourceError
from .models import ErrorKind, MediaKind, MediaOwner, UploadResult

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_BATCH_PAUSE_SECONDS = 2.0


@dataclass(frozen=True)
class MigrationItem:
    """One media URL referenced by a catalog record."""
    record_id: str
    owner_id: str
    field: str  # e.g. "effect_video_url", "photo:<id>"
    url: str
    media_kind: Optional[MediaKind] = None


@dataclass
class MigrationError:
    url: str
    error_kind: ErrorKind
    message: str


@dataclass
class MigrationSummary:
    """Counts plus the URL replacements to apply to the catalog."""
    total: int = 0
    migrated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[MigrationError] = field(default_factory=list)
    replacements: dict[str, str] = field(default_factory=dict)

    def record(self, item: MigrationItem, result: UploadResult) -> None:
        self.total += 1
        if result.success:
            self.migrated += 1
            self.replacements[item.url] = result.primary_url
        elif result.error_kind is ErrorKind.NOT_SUPPORTED_SOURCE:
            self.skipped += 1
        else:
            self.failed += 1
            self.errors.append(MigrationError(
                url=item.url,
                error_kind=result.error_kind,
                message=result.error_message or "",
            ))


class MediaMigrator:
    """
    Batch driver around MediaRouter.import_from_url.

    Args:
        router: anything with an import_from_url coroutine (MediaRouter)
        source_marker: substring identifying legacy URLs; others are skipped
        dry_run: report what would be migrated without touching backends
        sleep: injectable pause function
    """

    def __init__(
        self,
        router,
        *,
        source_marker: str = "supabase",
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_pause_seconds: float = DEFAULT_BATCH_PAUSE_SECONDS,
        dry_run: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self._router = router
        self._source_marker = source_marker
        self._batch_size = batch_size
        self._batch_pause_seconds = batch_pause_seconds
        self._dry_run = dry_run
        self._sleep = sleep

    def is_legacy_url(self, url: str) -> bool:
        return bool(url) and self._source_marker in url

    def check_source(self, url: str) -> None:
        """Raise NotSupportedSourceError for URLs outside the legacy host."""
        if not self.is_legacy_url(url):
            raise NotSupportedSourceError(f"Not a {self._source_marker} URL")

    async def migrate_item(self, item: MigrationItem) -> UploadResult:
        kind = item.media_kind or classify_by_name(urlparse(item.url).path)

        try:
            self.check_source(item.url)
        except NotSupportedSourceError as e:
            logger.info("Skipping item", extra={"url": item.url, "reason": e.message})
            return UploadResult.failure(kind, e.kind, e.message)

        if self._dry_run:
            logger.info("[dry run] would migrate", extra={"url": item.url, "record_id": item.record_id})
            return UploadResult.ok(kind, item.url)

        return await self._router.import_from_url(
            item.url,
            MediaOwner(user_id=item.owner_id, record_id=item.record_id),
            media_kind_hint=item.media_kind,
            metadata={"migratedFrom": self._source_marker},
        )

    async def run(self, items: Iterable[MigrationItem]) -> MigrationSummary:
        items = list(items)
        summary = MigrationSummary()
        batches = [items[i:i + self._batch_size] for i in range(0, len(items), self._batch_size)]

        logger.info(
            "Starting migration",
            extra={"items": len(items), "batches": len(batches), "dry_run": self._dry_run}
        )

        for index, batch in enumerate(batches, start=1):
            logger.info(f"Processing batch {index}/{len(batches)}", extra={"size": len(batch)})

            for item in batch:
                result = await self.migrate_item(item)
                summary.record(item, result)

            if index < len(batches):
                await self._sleep(self._batch_pause_seconds)

        logger.info(
            "Migration finished",
            extra={
                "total": summary.total,
                "migrated": summary.migrated,
                "skipped": summary.skipped,
                "failed": summary.failed,
            }
        )
        return summary
