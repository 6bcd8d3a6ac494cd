# backend/credit_packages/services/unit_of_work.py
"""
Transaction runner for ledger mutations.

The operation is a callable that does its reads/writes on the session and
returns a value; the runner commits it. A lost optimistic-lock race
(StaleDataError from a versioned row) rolls back and re-runs the whole
operation, so the re-run re-reads fresh counters. Domain errors roll back
and propagate unchanged.
"""

import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import settings
from .errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_in_transaction(
    db: Session,
    operation: Callable[[], T],
    retries: Optional[int] = None,
    label: str = "ledger operation",
    retry_on: tuple = (StaleDataError,),
) -> T:
    attempts = 1 + (settings.conflict_retries if retries is None else retries)

    for attempt in range(1, attempts + 1):
        try:
            result = operation()
            db.commit()
            return result
        except retry_on as e:
            db.rollback()
            logger.warning(
                f"{label}: concurrent update detected "
                f"(attempt {attempt}/{attempts}): {type(e).__name__}"
            )
        except Exception:
            db.rollback()
            raise

    raise ConcurrencyConflict(
        f"{label} lost {attempts} concurrent update races, retry later",
        attempts=attempts,
    )
