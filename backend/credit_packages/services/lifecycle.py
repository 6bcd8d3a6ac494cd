# backend/credit_packages/services/lifecycle.py
"""
Package status state machine.

    pending_payment ─► active ─► completed / expired / cancelled
    completed ─► active            (a cancelled usage frees capacity)
    pending_payment | active ─► cancelled   (admin action)

The transition helpers below only touch the ORM object; the caller owns the
transaction and emits the returned event after commit. The public operations
(cancel, transfer, update, expire_overdue) run their own transaction.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import settings
from ..models import (
    ClientPackages as DBClientPackage,
    PackageStatus,
    ValidityType,
)
from ..schemas.client_packages import ClientPackageUpdate
from .clock import Clock, system_clock, to_naive_utc
from .directory import get_client
from .errors import AlreadyCancelled, InvalidRequest, NotTransferable
from .events import emit_event
from .packages import append_note, load_package
from .unit_of_work import run_in_transaction

logger = logging.getLogger(__name__)


def expiry_from(anchor: datetime, validity_days: int) -> datetime:
    return anchor + timedelta(days=validity_days)


def package_event(package: DBClientPackage, **extra) -> dict:
    return {
        "company_id": package.company_id,
        "client_package_id": package.id,
        "client_id": package.client_id,
        "status": package.status.value,
        **extra,
    }


# ──────────────────────────────────────────────────────────────────────────────
# Transition helpers (no commit)
# ──────────────────────────────────────────────────────────────────────────────

def is_exhausted(package: DBClientPackage) -> bool:
    return all(
        item.used_quantity + item.cancelled_quantity >= item.quantity
        for item in package.items
    )


def check_completion(package: DBClientPackage, now: datetime) -> bool:
    """Move to COMPLETED when no item has credits left. True if it moved."""
    if package.status not in (PackageStatus.PENDING_PAYMENT, PackageStatus.ACTIVE):
        return False
    if not package.items or not is_exhausted(package):
        return False

    package.status = PackageStatus.COMPLETED
    package.completed_at = now
    return True


def reopen_if_completed(package: DBClientPackage) -> bool:
    if package.status != PackageStatus.COMPLETED or is_exhausted(package):
        return False
    package.status = PackageStatus.ACTIVE
    package.completed_at = None
    return True


def activate_on_first_use(package: DBClientPackage, now: datetime) -> bool:
    """Start the validity window of an activation-anchored package."""
    if package.validity_type != ValidityType.DAYS_FROM_ACTIVATION:
        return False
    if package.activation_date is not None:
        return False

    package.activation_date = now
    if package.expires_at is None:
        package.expires_at = expiry_from(now, package.validity_days)
    return True


def is_past_expiry(package: DBClientPackage, now: datetime) -> bool:
    return package.expires_at is not None and package.expires_at < now


# ──────────────────────────────────────────────────────────────────────────────
# Operations
# ──────────────────────────────────────────────────────────────────────────────

def expire_overdue(
    db: Session,
    company_id: Optional[int] = None,
    clock: Clock = system_clock,
    batch_size: Optional[int] = None,
) -> int:
    """
    Bulk ACTIVE → EXPIRED for packages past their expiry date.

    Candidates are selected in id order and updated batch by batch, each batch
    in its own short transaction. The UPDATE repeats the status/expiry
    condition, so a package that changed in between is left alone and a
    second run affects nothing. company_id=None sweeps every tenant.
    """
    now = clock.now()
    batch_size = batch_size or settings.expiration_batch_size
    expired = 0
    last_id = 0

    while True:
        query = db.query(DBClientPackage.id).filter(
            DBClientPackage.status == PackageStatus.ACTIVE,
            DBClientPackage.expires_at.is_not(None),
            DBClientPackage.expires_at < now,
            DBClientPackage.id > last_id,
        )
        if company_id is not None:
            query = query.filter(DBClientPackage.company_id == company_id)

        batch = query.order_by(DBClientPackage.id.asc()).limit(batch_size).all()
        if not batch:
            break

        ids = [row.id for row in batch]
        last_id = ids[-1]

        # only rows the UPDATE actually moved come back
        updated = db.execute(
            update(DBClientPackage)
            .where(
                DBClientPackage.id.in_(ids),
                DBClientPackage.status == PackageStatus.ACTIVE,
                DBClientPackage.expires_at < now,
            )
            .values(status=PackageStatus.EXPIRED)
            .returning(DBClientPackage.id, DBClientPackage.company_id, DBClientPackage.client_id)
            .execution_options(synchronize_session=False)
        ).all()
        db.commit()
        expired += len(updated)

        for row in sorted(updated, key=lambda r: r.id):
            emit_event("package_expired", {
                "company_id": row.company_id,
                "client_package_id": row.id,
                "client_id": row.client_id,
                "status": PackageStatus.EXPIRED.value,
            })

    # Rows were updated behind the session's back
    db.expire_all()

    if expired:
        scope = f"company={company_id}" if company_id is not None else "all companies"
        logger.info(f"Expired {expired} overdue packages ({scope})")
    return expired


def cancel_package(
    db: Session,
    company_id: int,
    actor_id: Optional[int],
    package_id: int,
    reason: Optional[str] = None,
    clock: Clock = system_clock,
) -> DBClientPackage:
    def operation():
        package = load_package(db, company_id, package_id, lock=True)

        if package.status == PackageStatus.CANCELLED:
            raise AlreadyCancelled(
                f"Package {package_id} is already cancelled",
                package_id=package_id,
            )
        if package.status in (PackageStatus.COMPLETED, PackageStatus.EXPIRED):
            raise InvalidRequest(
                f"Cannot cancel a {package.status.value} package",
                package_id=package_id,
                status=package.status.value,
            )

        now = clock.now()
        package.status = PackageStatus.CANCELLED
        package.cancelled_at = now
        line = f"[{now:%Y-%m-%d %H:%M}] Cancelled by {actor_id}"
        if reason:
            line += f": {reason}"
        package.internal_notes = append_note(package.internal_notes, line)
        return package

    package = run_in_transaction(db, operation, label=f"cancel package {package_id}")
    logger.info(f"Package {package_id} cancelled by {actor_id}")
    emit_event("package_cancelled", package_event(package, reason=reason))
    return package


def transfer_package(
    db: Session,
    company_id: int,
    actor_id: Optional[int],
    package_id: int,
    to_client_id: int,
    notes: Optional[str] = None,
    clock: Clock = system_clock,
) -> DBClientPackage:
    """
    Reassign a package to another client of the same tenant.

    Credits, payments, expiry and usage history stay on the same package id.
    Policy comes from the originating template; custom packages never move.
    """
    def operation():
        package = load_package(db, company_id, package_id, lock=True)

        if package.template is None or not package.template.transferable:
            raise NotTransferable(
                f"Package {package_id} is not transferable",
                package_id=package_id,
                template_id=package.template_id,
            )

        target = get_client(db, company_id, to_client_id)
        if target.id == package.client_id:
            raise InvalidRequest(
                "Package already belongs to this client",
                package_id=package_id,
                client_id=to_client_id,
            )

        from_client_id = package.client_id
        now = clock.now()
        line = f"[{now:%Y-%m-%d %H:%M}] Transferred from client {from_client_id} to {target.id} by {actor_id}"
        if notes:
            line += f": {notes}"
        package.internal_notes = append_note(package.internal_notes, line)
        package.client_id = target.id
        return package, from_client_id

    package, from_client_id = run_in_transaction(
        db, operation, label=f"transfer package {package_id}"
    )
    logger.info(f"Package {package_id} transferred: client {from_client_id} → {to_client_id}")
    emit_event("package_transferred", package_event(
        package, from_client_id=from_client_id, to_client_id=to_client_id,
    ))
    return package


def update_package(
    db: Session,
    company_id: int,
    package_id: int,
    data: ClientPackageUpdate,
) -> DBClientPackage:
    """Edit notes and the expiry date. Status is never set from outside."""
    changes = data.model_dump(exclude_unset=True)
    if "expires_at" in changes:
        changes["expires_at"] = to_naive_utc(changes["expires_at"])

    def operation():
        package = load_package(db, company_id, package_id, lock=True)
        for field, value in changes.items():
            setattr(package, field, value)
        return package

    return run_in_transaction(db, operation, label=f"update package {package_id}")
