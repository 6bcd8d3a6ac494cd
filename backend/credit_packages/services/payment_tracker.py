# backend/credit_packages/services/payment_tracker.py
"""
Payment tracking for client packages.

paid_amount is only ever moved by an atomic SQL increment; the status
decision (pending_payment → active) is taken on a fresh re-read of the row
inside the same transaction. Every payment leaves a PackagePayment row.

Posting the income to the financial ledger happens after the commit and is
best effort: a sink failure is reported as a DependencyDegraded warning on
the result, the payment itself stays recorded.
"""

import logging
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import settings
from ..models import (
    ClientPackages as DBClientPackage,
    PackagePayments as DBPackagePayment,
    PackageStatus,
)
from .clock import Clock, system_clock
from .errors import DependencyDegraded, InvalidAmount, NotActive, OperationResult
from .events import emit_event
from .income_sink import IncomeRequest, IncomeSink, IncomeSinkError
from .lifecycle import package_event
from .package_pricing import CENT, amount_due, is_fully_paid, to_money
from .packages import load_package
from .unit_of_work import run_in_transaction

logger = logging.getLogger(__name__)


def post_income(sink: Optional[IncomeSink], request: IncomeRequest) -> list[DependencyDegraded]:
    """Hand a payment to the financial ledger; failures become warnings."""
    if sink is None:
        return []
    try:
        sink.record_income(request)
    except IncomeSinkError as e:
        logger.warning(
            f"Financial ledger unavailable, income for package "
            f"{request.client_package_id} not posted: {e}"
        )
        return [
            DependencyDegraded(
                dependency="financial_ledger",
                message="Payment recorded but the income could not be posted to the financial ledger",
                context={
                    "client_package_id": request.client_package_id,
                    "amount": str(request.amount),
                    "error": str(e),
                },
            )
        ]
    return []


def register_payment(
    db: Session,
    company_id: int,
    actor_id: Optional[int],
    package_id: int,
    amount,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
    sink: Optional[IncomeSink] = None,
    clock: Clock = system_clock,
) -> OperationResult[DBClientPackage]:
    amount = to_money(amount)
    if amount <= 0:
        raise InvalidAmount(
            "Payment amount must be greater than zero",
            package_id=package_id,
            amount=str(amount),
        )

    def operation():
        package = load_package(db, company_id, package_id, lock=True)
        if package.status == PackageStatus.CANCELLED:
            raise NotActive(
                f"Package {package_id} is cancelled",
                package_id=package_id,
                status=package.status.value,
            )

        db.execute(
            update(DBClientPackage)
            .where(DBClientPackage.id == package.id)
            .values(paid_amount=DBClientPackage.paid_amount + amount)
            .execution_options(synchronize_session=False)
        )
        package = load_package(db, company_id, package_id, lock=True)

        now = clock.now()
        activated = False
        if package.status == PackageStatus.PENDING_PAYMENT and is_fully_paid(
            package.paid_amount, package.sale_price, package.discount_amount
        ):
            package.status = PackageStatus.ACTIVE
            activated = True

        if payment_method:
            package.payment_method = payment_method

        db.add(DBPackagePayment(
            client_package_id=package.id,
            amount=amount,
            method=payment_method,
            notes=notes,
            paid_at=now,
            recorded_by=actor_id,
        ))
        return package, activated, now

    package, activated, paid_at = run_in_transaction(
        db, operation, label=f"payment on package {package_id}"
    )
    logger.info(f"Payment {amount} registered on package {package_id} (paid={package.paid_amount})")

    emit_event("package_payment_registered", package_event(package, amount=str(amount)))
    if activated:
        emit_event("package_activated", package_event(package))

    warnings = post_income(sink, IncomeRequest(
        company_id=company_id,
        client_id=package.client_id,
        client_package_id=package.id,
        amount=amount,
        payment_method=payment_method,
        paid_at=paid_at,
        recorded_by=actor_id,
        description=f"Payment for package {package.code}",
    ))
    return OperationResult(package, warnings)


def installment_schedule(
    package: DBClientPackage,
    discount_before: Optional[bool] = None,
) -> list[Decimal]:
    """
    Split the package price into `installments` cent-exact parts.

    Parts are rounded down to the cent and the remainder goes to the last
    installment, so the parts always add up to the amount due. With
    discount_before=False the sale price is split first and the discount is
    deducted from the earliest installments.
    """
    if discount_before is None:
        discount_before = settings.discount_before_installments

    count = max(package.installments or 1, 1)
    discount = to_money(package.discount_amount)
    base = amount_due(package.sale_price, discount) if discount_before else to_money(package.sale_price)

    part = (base / count).quantize(CENT, rounding=ROUND_DOWN)
    parts = [part] * count
    parts[-1] = to_money(base - part * (count - 1))

    if not discount_before:
        remaining = discount
        for i, value in enumerate(parts):
            if remaining <= 0:
                break
            taken = min(value, remaining)
            parts[i] = to_money(value - taken)
            remaining -= taken

    return parts


def payment_history(db: Session, company_id: int, package_id: int) -> list[DBPackagePayment]:
    package = load_package(db, company_id, package_id)
    return (
        db.query(DBPackagePayment)
        .filter(DBPackagePayment.client_package_id == package.id)
        .order_by(DBPackagePayment.paid_at.asc(), DBPackagePayment.id.asc())
        .all()
    )
