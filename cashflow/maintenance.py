"""
Orphan reclamation job.

Uploads whose credential was issued but which were never linked to a
transaction are expired here, and their staging objects deleted. Meant to
be run periodically (cron, a scheduled container):

    cashflow-reclaim --max-age-hours 24

The bucket's lifecycle rule on the staging prefix remains the backstop for
objects this job fails to delete.
"""

import argparse
import asyncio
import sys
from datetime import timedelta
from typing import Optional

import structlog

from cashflow.errors import PersistenceError
from cashflow.orchestrator import create_app_components


logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cashflow-reclaim",
        description="Expire staged uploads that were never linked to a transaction.",
    )
    parser.add_argument(
        "--max-age-hours",
        type=int,
        default=None,
        help="Only reclaim uploads older than this (default: UPLOAD_ORPHAN_MAX_AGE_HOURS)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.max_age_hours is not None and args.max_age_hours < 1:
        print("--max-age-hours must be at least 1", file=sys.stderr)
        return 2

    components = create_app_components()
    max_age = timedelta(hours=args.max_age_hours) if args.max_age_hours else None

    try:
        count = asyncio.run(components.coordinator.reclaim_orphans(max_age))
    except PersistenceError as e:
        logger.error("orphan_reclaim_failed", error=e.message)
        return 1
    finally:
        components.engine.dispose()

    logger.info("orphan_reclaim_finished", count=count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
