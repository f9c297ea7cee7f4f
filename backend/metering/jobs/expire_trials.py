from __future__ import annotations

import argparse
import logging

from metering.billing.lifecycle import expire_trials
from metering.core.db import SessionLocal
from metering.core.logging import configure_logging


logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Move expired trials to active.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    _parse_args(argv)
    with SessionLocal() as db:
        expired = expire_trials(db)
    logger.info("jobs.expire_trials.completed", extra={"expired": expired})
    return expired


if __name__ == "__main__":
    main()
