#!/usr/bin/env python3
"""
Migrate legacy-hosted media into Cloudflare Stream, Images and R2.

Reads a JSON manifest of media references, uploads every legacy URL to
the matching backend and writes an old URL -> new URL replacement map.
Applying the replacements to the catalog is a separate step.

Manifest format (list of objects):
    [
      {"record_id": "42", "owner_id": "u1", "field": "effect_video_url",
       "url": "https://xyz.supabase.co/storage/v1/object/public/videos/a.mp4",
       "media_kind": "video"}
    ]

"media_kind" is optional; without it the kind is inferred from the URL.

Usage:
    python scripts/migrate_media.py manifest.json --output replacements.json
    python scripts/migrate_media.py manifest.json --dry-run

Requires:
    - .env file with Cloudflare credentials
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path

# Add src to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from src.config.settings import get_settings  # noqa: E402
from src.core.media.migration import MediaMigrator, MigrationItem, MigrationSummary  # noqa: E402
from src.core.media.models import MediaKind  # noqa: E402
from src.infrastructure.media import create_media_router  # noqa: E402


def load_manifest(filepath: str) -> list[MigrationItem]:
    """
    Parse the manifest file into migration items.

    Entries missing record_id, owner_id or url are skipped with a warning.
    """
    with open(filepath, 'r', encoding='utf-8') as f:
        entries = json.load(f)

    items = []
    for index, entry in enumerate(entries):
        if not all(entry.get(k) for k in ('record_id', 'owner_id', 'url')):
            print(f"  WARNING: skipping manifest entry {index}: missing record_id, owner_id or url")
            continue

        kind = entry.get('media_kind')
        items.append(MigrationItem(
            record_id=str(entry['record_id']),
            owner_id=str(entry['owner_id']),
            field=entry.get('field', ''),
            url=entry['url'],
            media_kind=MediaKind(kind) if kind else None,
        ))

    return items


def print_summary(summary: MigrationSummary) -> None:
    print("\nMigration summary:")
    print(f"  Total:    {summary.total}")
    print(f"  Migrated: {summary.migrated}")
    print(f"  Skipped:  {summary.skipped}")
    print(f"  Failed:   {summary.failed}")

    if summary.errors:
        print("\nErrors:")
        for error in summary.errors:
            print(f"  [{error.error_kind.value}] {error.url}: {error.message}")


async def run_migration(items: list[MigrationItem], dry_run: bool) -> MigrationSummary:
    settings = get_settings()
    router = create_media_router(settings)

    migrator = MediaMigrator(
        router,
        source_marker=settings.migration_source_marker,
        batch_size=settings.migration_batch_size,
        batch_pause_seconds=settings.migration_batch_pause_seconds,
        dry_run=dry_run,
    )

    try:
        return await migrator.run(items)
    finally:
        await router.aclose()


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Migrate legacy media to Cloudflare')
    parser.add_argument('manifest', help='JSON manifest of media references')
    parser.add_argument('--dry-run', action='store_true', help='Report only, don\'t upload')
    parser.add_argument('--output', default='replacements.json', help='Where to write the URL replacement map')
    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=get_settings().log_level.upper(),
    )

    if not os.path.exists(args.manifest):
        print(f"ERROR: Cannot find {args.manifest}")
        sys.exit(1)

    print(f"Reading manifest: {args.manifest}")
    items = load_manifest(args.manifest)
    print(f"Found {len(items)} media references")

    if not items:
        print("Nothing to migrate")
        sys.exit(0)

    summary = asyncio.run(run_migration(items, dry_run=args.dry_run))
    print_summary(summary)

    if not args.dry_run:
        with open(args.output, 'w', encoding='utf-8') as f:
            json.dump(summary.replacements, f, indent=2)
        print(f"\nWrote {len(summary.replacements)} replacements to {args.output}")

    sys.exit(0 if summary.failed == 0 else 1)


if __name__ == '__main__':
    main()
