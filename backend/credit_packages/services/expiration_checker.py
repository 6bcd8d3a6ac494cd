"""
Package expiration checker.

Periodically moves ACTIVE packages whose expires_at has passed to EXPIRED,
tenant by tenant. The usage path checks expiry on its own, so a missed or
late sweep never lets a stale package be debited.

Runs as an asyncio task in backend lifespan.
Uses synchronous DB (via asyncio.to_thread).
"""

import asyncio
import logging

from ..config import settings
from ..database import SessionLocal
from ..models import ClientPackages, PackageStatus
from .clock import Clock, system_clock
from .lifecycle import expire_overdue

logger = logging.getLogger(__name__)


async def expiration_checker_loop() -> None:
    logger.info("expiration_checker_loop started")

    try:
        while True:
            try:
                await asyncio.to_thread(run_expiration_sweep)
            except asyncio.CancelledError:
                logger.info("expiration_checker_loop cancelled")
                raise
            except Exception:
                logger.exception("expiration_checker_loop error")

            await asyncio.sleep(settings.expiration_sweep_interval)
    except asyncio.CancelledError:
        pass


def run_expiration_sweep(clock: Clock = system_clock) -> int:
    """One pass over every tenant that has active packages (synchronous)."""
    db = SessionLocal()
    total = 0
    try:
        company_ids = [
            row.company_id
            for row in (
                db.query(ClientPackages.company_id)
                .filter(ClientPackages.status == PackageStatus.ACTIVE)
                .distinct()
                .all()
            )
        ]

        for company_id in company_ids:
            try:
                total += expire_overdue(db, company_id, clock=clock)
            except Exception:
                db.rollback()
                logger.exception(f"Error expiring packages for company {company_id}")
    finally:
        db.close()

    if total:
        logger.info(f"Expiration sweep: {total} packages expired")
    return total
