from __future__ import annotations

import argparse
import logging

from metering.billing.catalog import seed_plans
from metering.core.db import SessionLocal
from metering.core.logging import configure_logging


logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the built-in plan tiers that are missing.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> list[int]:
    configure_logging()
    _parse_args(argv)
    with SessionLocal() as db:
        plan_ids = [plan.id for plan in seed_plans(db)]
    logger.info("jobs.seed_plans.completed", extra={"plans": len(plan_ids)})
    return plan_ids


if __name__ == "__main__":
    main()
