"""Re-import newsletters for past days.

Each day is fetched as a historical window (the whole UTC day, no rolling
filter) and stored under that day's bucket. Already stored messages are
skipped unless --force is given.

Usage:
    python scripts/backfill.py 2026-02-22
    python scripts/backfill.py 2026-02-22 2026-02-23 --force
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from ingest import ingest_newsletters
from src.article_extractor import WebArticleExtractor
from src.database import Repository
from src.email_fetcher import GmailMailSource

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger("backfill")


async def backfill(days: list[date], force: bool = False) -> int:
    """Ingest each day in order. Returns the number of failed days."""
    repository = Repository()
    extractor = WebArticleExtractor()
    failed = 0

    for day in days:
        logger.info("=== Backfilling %s ===", day.isoformat())
        summary, events = await ingest_newsletters(
            GmailMailSource, extractor, repository, target_date=day, force=force
        )
        if summary is None:
            failed += 1
            logger.error("Backfill failed for %s", day.isoformat())
            continue
        logger.info("%s: %s", day.isoformat(), summary.to_dict())

    return failed


def main():
    parser = argparse.ArgumentParser(description="Re-import newsletters for past days.")
    parser.add_argument("dates", nargs="+", type=date.fromisoformat, help="Days to import (YYYY-MM-DD)")
    parser.add_argument("--force", action="store_true", help="Delete and re-insert existing items")
    args = parser.parse_args()

    failed = asyncio.run(backfill(sorted(set(args.dates)), force=args.force))
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
