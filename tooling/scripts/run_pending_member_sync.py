#!/usr/bin/env python3
"""Import new Airtable membership applications as pending members.

Intended usage: schedule via cron when the in-process scheduler is disabled.

Example:
    python tooling/scripts/run_pending_member_sync.py

Use `--dry-run` to fetch and deduplicate against an empty in-memory store
instead of writing to the record store.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync Airtable applications into pending members")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use the in-memory record store instead of the configured REST store.",
    )
    return parser.parse_args()


async def _run(dry_run: bool) -> dict:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from rewards_api.jobs.pending_members import run_pending_member_sync  # type: ignore import-position
    from rewards_api.services.store import InMemoryRecordStore, RestRecordStore  # type: ignore import-position
    from rewards_api.core.settings import settings  # type: ignore import-position

    store = InMemoryRecordStore() if dry_run else RestRecordStore.from_settings(settings)
    try:
        return await run_pending_member_sync(store_factory=lambda: store)
    finally:
        await store.aclose()


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.dry_run))
    logger.success(
        "Pending member sync completed",
        created=summary["created"],
        skipped=summary["skipped"],
        failed=summary["failed"],
        dry_run=args.dry_run,
    )
    print(json.dumps(summary, indent=2))
    return 1 if summary["failed"] else 0


if __name__ == "__main__":
    sys.exit(main())
