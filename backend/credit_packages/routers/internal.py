# backend/credit_packages/routers/internal.py
"""
Internal API endpoints for trusted consumers.

These endpoints are NOT exposed through the Gateway proxy.
They are called directly by trusted services (schedulers, maintenance jobs).

Access: localhost only (validated by Gateway not proxying /internal/*)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..context import get_clock
from ..schemas.client_packages import ExpireOverdueResponse
from ..services.clock import Clock
from ..services.lifecycle import expire_overdue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", tags=["internal"])


@router.post("/packages/expire-overdue", response_model=ExpireOverdueResponse)
def expire_overdue_packages(
    company_id: Optional[int] = Query(None, description="Omit to sweep every company"),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Idempotent: a second call right after the first expires nothing."""
    expired = expire_overdue(db, company_id, clock=clock)
    logger.info(f"expire-overdue (company={company_id}): {expired} packages")
    return {"expired": expired}
