# backend/credit_packages/routers/package_usages.py
# Usages are never edited or deleted, only cancelled.

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..context import RequestContext, get_clock, get_context, require_actor
from ..database import get_db
from ..models import UsageStatus
from ..schemas.package_usages import (
    CancelUsageRequest,
    RegisterUsageRequest,
    UsageList,
    UsageRead,
)
from ..services import balance, credit_ledger
from ..services.clock import Clock

router = APIRouter(prefix="/package_usages", tags=["package_usages"])


@router.post("/", response_model=UsageRead, status_code=status.HTTP_201_CREATED)
def register_package_usage(
    data: RegisterUsageRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    usage = credit_ledger.register_usage(
        db,
        ctx.company_id,
        ctx.actor_id,
        data.client_package_id,
        data.service_id,
        quantity=data.quantity,
        appointment_id=data.appointment_id,
        provider_id=data.provider_id,
        notes=data.notes,
        clock=clock,
    )
    return balance.usage_view(credit_ledger.get_usage(db, ctx.company_id, usage.id))


@router.get("/", response_model=UsageList)
def list_package_usages(
    client_package_id: Optional[int] = Query(None),
    client_id: Optional[int] = Query(None),
    service_id: Optional[int] = Query(None),
    status_: Optional[UsageStatus] = Query(None, alias="status"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    rows, total = credit_ledger.list_usages(
        db,
        ctx.company_id,
        client_package_id=client_package_id,
        client_id=client_id,
        service_id=service_id,
        status=status_,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return {"usages": [balance.usage_view(u) for u in rows], "total": total}


@router.post("/{id}/cancel", response_model=UsageRead)
def cancel_package_usage(
    id: int,
    data: CancelUsageRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    credit_ledger.cancel_usage(db, ctx.company_id, ctx.actor_id, id, data.reason, clock=clock)
    return balance.usage_view(credit_ledger.get_usage(db, ctx.company_id, id))
