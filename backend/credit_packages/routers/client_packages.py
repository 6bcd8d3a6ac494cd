# backend/credit_packages/routers/client_packages.py
# Status is never PATCHed: it moves through sell / payments / usages /
# cancel / transfer / expiration only. DELETE = 405.

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..context import RequestContext, get_clock, get_context, require_actor
from ..database import get_db
from ..models import PackageStatus
from ..schemas.client_packages import (
    CancelPackageRequest,
    ClientPackageList,
    ClientPackageOperationResponse,
    ClientPackageRead,
    ClientPackageUpdate,
    InstallmentScheduleRead,
    PackagePaymentRead,
    RegisterPaymentRequest,
    SellPackageRequest,
    TransferPackageRequest,
)
from ..services import balance, lifecycle, package_sale, payment_tracker
from ..services.clock import Clock
from ..services.income_sink import IncomeSink, get_income_sink
from ..services.package_pricing import amount_due

router = APIRouter(prefix="/client_packages", tags=["client_packages"])


def _operation_response(result, clock: Clock, db: Session, company_id: int) -> dict:
    package = balance.get_package(db, company_id, result.value.id)
    return {
        "package": balance.package_view(package, clock.now()),
        "warnings": [w.to_dict() for w in result.warnings],
    }


def _read(db: Session, company_id: int, package_id: int, clock: Clock) -> dict:
    return balance.package_view(balance.get_package(db, company_id, package_id), clock.now())


@router.post(
    "/sell",
    response_model=ClientPackageOperationResponse,
    status_code=status.HTTP_201_CREATED,
)
def sell_package(
    data: SellPackageRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    sink: IncomeSink = Depends(get_income_sink),
    clock: Clock = Depends(get_clock),
):
    result = package_sale.sell(db, ctx.company_id, ctx.actor_id, data, sink=sink, clock=clock)
    return _operation_response(result, clock, db, ctx.company_id)


@router.get("/", response_model=ClientPackageList)
def list_client_packages(
    client_id: Optional[int] = Query(None),
    status_: Optional[PackageStatus] = Query(None, alias="status"),
    expiring_soon: bool = Query(False),
    has_balance: Optional[bool] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    rows, total = balance.list_packages(
        db,
        ctx.company_id,
        client_id=client_id,
        status=status_,
        expiring_soon=expiring_soon,
        has_balance=has_balance,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
        clock=clock,
    )
    now = clock.now()
    return {"packages": [balance.package_view(p, now) for p in rows], "total": total}


@router.get("/expiring", response_model=ClientPackageList)
def list_expiring_packages(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    rows, total = balance.list_packages(
        db, ctx.company_id, expiring_soon=True, limit=limit, offset=offset, clock=clock
    )
    now = clock.now()
    return {"packages": [balance.package_view(p, now) for p in rows], "total": total}


@router.get("/with-balance", response_model=ClientPackageList)
def list_packages_with_balance(
    client_id: Optional[int] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    rows, total = balance.list_packages(
        db,
        ctx.company_id,
        client_id=client_id,
        status=PackageStatus.ACTIVE,
        has_balance=True,
        limit=limit,
        offset=offset,
        clock=clock,
    )
    now = clock.now()
    return {"packages": [balance.package_view(p, now) for p in rows], "total": total}


@router.get("/{id}", response_model=ClientPackageRead)
def get_client_package(
    id: int,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return _read(db, ctx.company_id, id, clock)


@router.patch("/{id}", response_model=ClientPackageRead)
def update_client_package(
    id: int,
    data: ClientPackageUpdate,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    lifecycle.update_package(db, ctx.company_id, id, data)
    return _read(db, ctx.company_id, id, clock)


@router.post("/{id}/cancel", response_model=ClientPackageRead)
def cancel_client_package(
    id: int,
    data: CancelPackageRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    lifecycle.cancel_package(db, ctx.company_id, ctx.actor_id, id, data.reason, clock=clock)
    return _read(db, ctx.company_id, id, clock)


@router.post("/{id}/transfer", response_model=ClientPackageRead)
def transfer_client_package(
    id: int,
    data: TransferPackageRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    lifecycle.transfer_package(
        db, ctx.company_id, ctx.actor_id, id, data.to_client_id, data.notes, clock=clock
    )
    return _read(db, ctx.company_id, id, clock)


@router.post("/{id}/payments", response_model=ClientPackageOperationResponse)
def register_package_payment(
    id: int,
    data: RegisterPaymentRequest,
    ctx: RequestContext = Depends(require_actor),
    db: Session = Depends(get_db),
    sink: IncomeSink = Depends(get_income_sink),
    clock: Clock = Depends(get_clock),
):
    result = payment_tracker.register_payment(
        db,
        ctx.company_id,
        ctx.actor_id,
        id,
        data.amount,
        payment_method=data.payment_method,
        notes=data.notes,
        sink=sink,
        clock=clock,
    )
    return _operation_response(result, clock, db, ctx.company_id)


@router.get("/{id}/payments", response_model=list[PackagePaymentRead])
def list_package_payments(
    id: int,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    return payment_tracker.payment_history(db, ctx.company_id, id)


@router.get("/{id}/installments", response_model=InstallmentScheduleRead)
def get_installment_schedule(
    id: int,
    ctx: RequestContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    package = balance.get_package(db, ctx.company_id, id)
    parts = payment_tracker.installment_schedule(package)
    return {
        "client_package_id": package.id,
        "amount_due": amount_due(package.sale_price, package.discount_amount),
        "installments": [
            {"number": n, "amount": amount} for n, amount in enumerate(parts, start=1)
        ],
    }


@router.delete("/{id}")
def delete_not_allowed():
    raise HTTPException(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        detail="Method not allowed",
    )
