#!/usr/bin/env python3
"""
Delete activity log rows older than a retention window.

Usage:
    python scripts/archive_activities.py --days 365
    python scripts/archive_activities.py --days 90 --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from sqlalchemy import func, select  # noqa: E402

from app.core.logging import configure_logging  # noqa: E402
from app.db.session import AsyncSessionLocal  # noqa: E402
from app.models.activity import Activity  # noqa: E402
from app.services.activity import archive_old_activities  # noqa: E402

logger = logging.getLogger("scripts.archive_activities")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--days", type=int, default=365, help="Keep activity newer than this many days")
    parser.add_argument("--dry-run", action="store_true", help="Only count the rows that would be removed")
    args = parser.parse_args(argv)
    if args.days < 1:
        parser.error("--days must be at least 1")
    return args


async def run(days: int, dry_run: bool) -> int:
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    async with AsyncSessionLocal() as session:
        if dry_run:
            stmt = select(func.count()).select_from(Activity).where(Activity.created_at < cutoff)
            count = int((await session.execute(stmt)).scalar_one() or 0)
            logger.info("Dry run: %s activity rows older than %s", count, cutoff.isoformat())
            return count
        return await archive_old_activities(session, cutoff)


def main(argv: list[str] | None = None) -> None:
    configure_logging()
    args = parse_args(argv)
    removed = asyncio.run(run(args.days, args.dry_run))
    logger.info("Done rows=%s", removed)


if __name__ == "__main__":
    main()
