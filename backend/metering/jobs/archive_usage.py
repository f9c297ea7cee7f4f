from __future__ import annotations

import argparse
import logging

from metering.core.db import SessionLocal
from metering.core.logging import configure_logging
from metering.usage.reporting import archive_all


logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Archive monthly usage snapshots.")
    parser.add_argument("--tenant-id", type=int, default=None, help="Run for a single tenant.")
    parser.add_argument(
        "--previous-month",
        action="store_true",
        help="Archive the previous calendar month instead of the month to date.",
    )
    parser.add_argument(
        "--purge-events",
        action="store_true",
        default=None,
        help="Delete archived counter events after the snapshot is written.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> dict[str, int]:
    configure_logging()
    args = _parse_args(argv)
    with SessionLocal() as db:
        summary = archive_all(
            db,
            previous_month=args.previous_month,
            purge_events=args.purge_events,
            tenant_ids=[args.tenant_id] if args.tenant_id else None,
        )
    logger.info("jobs.archive_usage.completed", extra=summary)
    return summary


if __name__ == "__main__":
    main()
