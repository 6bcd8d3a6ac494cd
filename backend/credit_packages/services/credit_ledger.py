# backend/credit_packages/services/credit_ledger.py
"""
Credit ledger: debits and releases of package credits.

For every PackageItem, used_quantity + cancelled_quantity stays within
[0, quantity]. The check and the write happen in one transaction that holds
the package and item rows locked (SELECT ... FOR UPDATE). Stores without
row locks still see a lost race through the item's version column, and the
unit of work re-runs the operation on fresh counters.

Cancelling a usage releases its credit entirely: used_quantity goes back
down and the usage row is kept, marked cancelled, as the audit record.
cancelled_quantity is never written here.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ..models import (
    ClientPackageItems as DBPackageItem,
    ClientPackages as DBClientPackage,
    ClientPackageUsages as DBUsage,
    PackageStatus,
    UsageStatus,
)
from .clock import Clock, system_clock, to_naive_utc
from .errors import (
    AlreadyCancelled,
    Expired,
    InsufficientCredits,
    InvalidRequest,
    NotActive,
    NotFound,
    ServiceNotInPackage,
)
from .events import emit_event
from .lifecycle import (
    activate_on_first_use,
    check_completion,
    is_past_expiry,
    package_event,
    reopen_if_completed,
)
from .packages import load_package
from .unit_of_work import run_in_transaction

logger = logging.getLogger(__name__)


def _lock_item(db: Session, package_id: int, service_id: int) -> Optional[DBPackageItem]:
    return (
        db.query(DBPackageItem)
        .filter(
            DBPackageItem.client_package_id == package_id,
            DBPackageItem.service_id == service_id,
        )
        .with_for_update()
        .populate_existing()
        .first()
    )


def register_usage(
    db: Session,
    company_id: int,
    actor_id: Optional[int],
    package_id: int,
    service_id: int,
    quantity: int = 1,
    appointment_id: Optional[int] = None,
    provider_id: Optional[int] = None,
    notes: Optional[str] = None,
    clock: Clock = system_clock,
) -> DBUsage:
    """
    Debit `quantity` credits of a service from a package.

    A package found past its expiry date is moved to EXPIRED (committed)
    before Expired is raised.
    """
    if quantity < 1:
        raise InvalidRequest("Usage quantity must be at least 1", quantity=quantity)

    def operation():
        now = clock.now()
        package = load_package(db, company_id, package_id, lock=True)

        if package.status != PackageStatus.ACTIVE:
            raise NotActive(
                f"Package {package_id} is {package.status.value}",
                package_id=package_id,
                status=package.status.value,
            )

        if is_past_expiry(package, now):
            package.status = PackageStatus.EXPIRED
            return None, package, []

        item = _lock_item(db, package.id, service_id)
        if item is None:
            raise ServiceNotInPackage(
                f"Service {service_id} is not part of package {package_id}",
                package_id=package_id,
                service_id=service_id,
            )

        available = item.available_quantity
        if available < quantity:
            raise InsufficientCredits(
                f"Only {available} credit(s) left for this service",
                package_id=package_id,
                item_id=item.id,
                available=available,
                requested=quantity,
            )

        usage = DBUsage(
            client_package_id=package.id,
            item_id=item.id,
            quantity=quantity,
            used_at=now,
            used_by=actor_id,
            appointment_id=appointment_id,
            provider_id=provider_id,
            notes=notes,
            status=UsageStatus.USED,
        )
        db.add(usage)
        item.used_quantity += quantity

        events = []
        if activate_on_first_use(package, now):
            events.append("package_activated")
        db.flush()

        if check_completion(package, now):
            events.append("package_completed")
        return usage, package, events

    usage, package, events = run_in_transaction(
        db, operation, label=f"usage on package {package_id}"
    )

    if usage is None:
        logger.info(f"Package {package_id} found past expiry on usage, marked expired")
        emit_event("package_expired", package_event(package))
        raise Expired(
            f"Package {package_id} expired on {package.expires_at:%Y-%m-%d}",
            package_id=package_id,
            expires_at=package.expires_at.isoformat(),
        )

    logger.info(
        f"Usage {usage.id}: {quantity}× service {service_id} from package {package_id}"
    )
    emit_event("usage_registered", package_event(
        package, usage_id=usage.id, service_id=service_id, quantity=quantity,
    ))
    for event_type in events:
        emit_event(event_type, package_event(package))
    return usage


def cancel_usage(
    db: Session,
    company_id: int,
    actor_id: Optional[int],
    usage_id: int,
    reason: str,
    clock: Clock = system_clock,
) -> DBUsage:
    def operation():
        found = (
            db.query(DBUsage)
            .join(DBClientPackage, DBUsage.client_package_id == DBClientPackage.id)
            .filter(DBUsage.id == usage_id, DBClientPackage.company_id == company_id)
            .first()
        )
        if not found:
            raise NotFound(f"Usage {usage_id} not found", usage_id=usage_id)

        # Lock order: package, then usage, then item (same as register_usage)
        package = load_package(db, company_id, found.client_package_id, lock=True)
        usage = (
            db.query(DBUsage)
            .filter(DBUsage.id == usage_id)
            .with_for_update()
            .populate_existing()
            .one()
        )
        if usage.status == UsageStatus.CANCELLED:
            raise AlreadyCancelled(
                f"Usage {usage_id} is already cancelled",
                usage_id=usage_id,
                package_id=package.id,
            )

        item = (
            db.query(DBPackageItem)
            .filter(DBPackageItem.id == usage.item_id)
            .with_for_update()
            .populate_existing()
            .one()
        )

        usage.status = UsageStatus.CANCELLED
        usage.cancelled_at = clock.now()
        usage.cancelled_by = actor_id
        usage.cancellation_reason = reason
        item.used_quantity = item.used_quantity - usage.quantity
        db.flush()

        reopened = reopen_if_completed(package)
        return usage, package, reopened

    usage, package, reopened = run_in_transaction(
        db, operation, label=f"cancel usage {usage_id}"
    )
    logger.info(f"Usage {usage_id} cancelled by {actor_id}, {usage.quantity} credit(s) released")

    emit_event("usage_cancelled", package_event(package, usage_id=usage.id, reason=reason))
    if reopened:
        emit_event("package_reopened", package_event(package))
    return usage


def get_usage(db: Session, company_id: int, usage_id: int) -> DBUsage:
    usage = (
        _usage_query(db, company_id)
        .filter(DBUsage.id == usage_id)
        .first()
    )
    if not usage:
        raise NotFound(f"Usage {usage_id} not found", usage_id=usage_id)
    return usage


def _usage_query(db: Session, company_id: int):
    return (
        db.query(DBUsage)
        .join(DBClientPackage, DBUsage.client_package_id == DBClientPackage.id)
        .options(
            joinedload(DBUsage.client_package).joinedload(DBClientPackage.client),
            joinedload(DBUsage.item).joinedload(DBPackageItem.service),
        )
        .filter(DBClientPackage.company_id == company_id)
    )


def list_usages(
    db: Session,
    company_id: int,
    client_package_id: Optional[int] = None,
    client_id: Optional[int] = None,
    service_id: Optional[int] = None,
    status: Optional[UsageStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[DBUsage], int]:
    query = _usage_query(db, company_id)

    if client_package_id is not None:
        query = query.filter(DBUsage.client_package_id == client_package_id)
    if client_id is not None:
        query = query.filter(DBClientPackage.client_id == client_id)
    if service_id is not None:
        query = query.filter(DBUsage.item.has(DBPackageItem.service_id == service_id))
    if status is not None:
        query = query.filter(DBUsage.status == status)
    if start_date is not None:
        query = query.filter(DBUsage.used_at >= to_naive_utc(start_date))
    if end_date is not None:
        query = query.filter(DBUsage.used_at <= to_naive_utc(end_date))

    total = query.count()
    rows = (
        query.order_by(DBUsage.used_at.desc(), DBUsage.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total
