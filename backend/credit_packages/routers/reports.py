# backend/credit_packages/routers/reports.py

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..context import RequestContext, get_clock, get_context
from ..database import get_db
from ..schemas.reports import ClientBalanceRead, PackagesSummaryRead
from ..services import balance
from ..services.clock import Clock, to_naive_utc

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/clients/{client_id}/balance", response_model=ClientBalanceRead)
def get_client_balance(
    client_id: int,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    return balance.client_balance(db, ctx.company_id, client_id)


@router.get("/summary", response_model=PackagesSummaryRead)
def get_packages_summary(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return balance.packages_summary(
        db,
        ctx.company_id,
        start=to_naive_utc(start_date),
        end=to_naive_utc(end_date),
        clock=clock,
    )
