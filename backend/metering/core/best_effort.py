"""
Fail-soft execution for telemetry-grade work.

Usage recording, threshold warnings, notification listeners and per-tenant
archival must never abort the business operation that triggered them. They
run through ``run_best_effort``, which hands back an ``Outcome`` instead of
raising so the policy lives in one place rather than in scattered
try/except blocks.

Two session modes:

* ``savepoint=session`` for work done inside a transaction the caller owns.
  The work runs in a SAVEPOINT; a failure rolls back that savepoint only,
  so rows the caller staged earlier are still there for its commit.
* ``db=session`` for sessions the best-effort loop owns itself (jobs). The
  whole session is rolled back after a failure so the loop can continue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from sqlalchemy.orm import Session


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Outcome(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[Exception] = None


def run_best_effort(
    operation: str,
    func: Callable[..., T],
    *args: Any,
    db: Session | None = None,
    savepoint: Session | None = None,
    log_extra: dict[str, Any] | None = None,
    **kwargs: Any,
) -> Outcome[T]:
    """Call ``func`` and log-and-discard any exception it raises."""
    try:
        if savepoint is not None:
            with savepoint.begin_nested():
                value = func(*args, **kwargs)
        else:
            value = func(*args, **kwargs)
        return Outcome(ok=True, value=value)
    except Exception as exc:
        if db is not None:
            try:
                db.rollback()
            except Exception:
                logger.warning("best_effort.rollback_failed", extra={"operation": operation})
        extra = {"operation": operation, "error": str(exc)}
        if log_extra:
            extra.update(log_extra)
        logger.exception("best_effort.failed", extra=extra)
        return Outcome(ok=False, error=exc)
