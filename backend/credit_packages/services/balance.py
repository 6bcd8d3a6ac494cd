# backend/credit_packages/services/balance.py
"""
Read models for client packages.

Everything here is derived on demand from the ledger tables and never
written back: package views with usage stats, client balances, package
listings and the tenant summary. Cross-package reads are plain snapshots,
not transactional with concurrent writes.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from ..config import settings
from ..models import (
    ClientPackageItems as DBPackageItem,
    ClientPackages as DBClientPackage,
    ClientPackageUsages as DBUsage,
    PackageStatus,
    PackageTemplates as DBTemplate,
    Services as DBService,
    UsageStatus,
)
from .clock import Clock, system_clock, to_naive_utc
from .directory import get_client
from .package_pricing import amount_due, to_money
from .packages import load_package

logger = logging.getLogger(__name__)

TOP_LIMIT = 5


# ──────────────────────────────────────────────────────────────────────────────
# Projections
# ──────────────────────────────────────────────────────────────────────────────

def item_view(item: DBPackageItem) -> dict:
    unit_price = to_money(item.unit_price)
    return {
        "id": item.id,
        "service_id": item.service_id,
        "service_name": item.service.name,
        "quantity": item.quantity,
        "used_quantity": item.used_quantity,
        "cancelled_quantity": item.cancelled_quantity,
        "available_quantity": item.available_quantity,
        "unit_price": unit_price,
        "total_value": to_money(unit_price * item.quantity),
        "used_value": to_money(unit_price * item.used_quantity),
    }


def usage_stats(items: list[dict]) -> dict:
    total_items = sum(i["quantity"] for i in items)
    used_items = sum(i["used_quantity"] for i in items)
    available_items = sum(i["available_quantity"] for i in items)
    total_value = to_money(sum((i["total_value"] for i in items), Decimal("0")))
    used_value = to_money(sum((i["used_value"] for i in items), Decimal("0")))
    available_value = to_money(
        sum((i["unit_price"] * i["available_quantity"] for i in items), Decimal("0"))
    )
    usage_percent = (
        to_money(Decimal(used_items) / Decimal(total_items) * 100)
        if total_items
        else Decimal("0.00")
    )
    return {
        "total_items": total_items,
        "used_items": used_items,
        "available_items": available_items,
        "usage_percent": usage_percent,
        "total_value": total_value,
        "used_value": used_value,
        "available_value": available_value,
    }


def package_view(package: DBClientPackage, now: datetime) -> dict:
    """Project a package row into the ClientPackageRead shape."""
    items = [item_view(item) for item in package.items]

    days_until_expiry = None
    if package.expires_at is not None:
        days_until_expiry = (package.expires_at.date() - now.date()).days

    due = amount_due(package.sale_price, package.discount_amount)
    remaining = max(to_money(due - to_money(package.paid_amount)), Decimal("0.00"))

    return {
        "id": package.id,
        "company_id": package.company_id,
        "client_id": package.client_id,
        "client_name": package.client.full_name,
        "template_id": package.template_id,
        "template_version": package.template_version,
        "name": package.name,
        "description": package.description,
        "code": package.code,
        "status": package.status,
        "purchase_date": package.purchase_date,
        "activation_date": package.activation_date,
        "expires_at": package.expires_at,
        "days_until_expiry": days_until_expiry,
        "completed_at": package.completed_at,
        "cancelled_at": package.cancelled_at,
        "original_price": to_money(package.original_price),
        "sale_price": to_money(package.sale_price),
        "discount_amount": to_money(package.discount_amount),
        "paid_amount": to_money(package.paid_amount),
        "remaining_amount": remaining,
        "payment_method": package.payment_method,
        "installments": package.installments,
        "transferable": bool(package.template and package.template.transferable),
        "notes": package.notes,
        "items": items,
        "usage_stats": usage_stats(items),
        "created_at": package.created_at,
    }


def usage_view(usage: DBUsage) -> dict:
    package = usage.client_package
    return {
        "id": usage.id,
        "client_package_id": usage.client_package_id,
        "package_name": package.name,
        "package_status": package.status,
        "client_id": package.client_id,
        "client_name": package.client.full_name,
        "service_id": usage.item.service_id,
        "service_name": usage.item.service.name,
        "quantity": usage.quantity,
        "used_at": usage.used_at,
        "used_by": usage.used_by,
        "provider_id": usage.provider_id,
        "appointment_id": usage.appointment_id,
        "status": usage.status,
        "notes": usage.notes,
        "cancelled_at": usage.cancelled_at,
        "cancelled_by": usage.cancelled_by,
        "cancellation_reason": usage.cancellation_reason,
    }


# ──────────────────────────────────────────────────────────────────────────────
# Queries
# ──────────────────────────────────────────────────────────────────────────────

def _package_query(db: Session, company_id: int):
    return (
        db.query(DBClientPackage)
        .options(
            selectinload(DBClientPackage.items).selectinload(DBPackageItem.service),
            selectinload(DBClientPackage.client),
            selectinload(DBClientPackage.template),
        )
        .filter(DBClientPackage.company_id == company_id)
    )


def get_package(db: Session, company_id: int, package_id: int) -> DBClientPackage:
    load_package(db, company_id, package_id)
    return _package_query(db, company_id).filter(DBClientPackage.id == package_id).one()


def _has_balance():
    return DBClientPackage.items.any(
        DBPackageItem.quantity - DBPackageItem.used_quantity - DBPackageItem.cancelled_quantity > 0
    )


def list_packages(
    db: Session,
    company_id: int,
    client_id: Optional[int] = None,
    status: Optional[PackageStatus] = None,
    expiring_soon: bool = False,
    has_balance: Optional[bool] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = 20,
    offset: int = 0,
    clock: Clock = system_clock,
) -> tuple[list[DBClientPackage], int]:
    query = _package_query(db, company_id)

    if client_id is not None:
        query = query.filter(DBClientPackage.client_id == client_id)
    if status is not None:
        query = query.filter(DBClientPackage.status == status)
    if expiring_soon:
        now = clock.now()
        query = query.filter(
            DBClientPackage.status == PackageStatus.ACTIVE,
            DBClientPackage.expires_at.is_not(None),
            DBClientPackage.expires_at >= now,
            DBClientPackage.expires_at <= now + timedelta(days=settings.expiring_soon_days),
        )
    if has_balance is True:
        query = query.filter(_has_balance())
    elif has_balance is False:
        query = query.filter(~_has_balance())
    if start_date is not None:
        query = query.filter(DBClientPackage.purchase_date >= to_naive_utc(start_date))
    if end_date is not None:
        query = query.filter(DBClientPackage.purchase_date <= to_naive_utc(end_date))

    total = query.count()
    order = (
        (DBClientPackage.expires_at.asc(), DBClientPackage.id.asc())
        if expiring_soon
        else (DBClientPackage.purchase_date.desc(), DBClientPackage.id.desc())
    )
    rows = query.order_by(*order).offset(offset).limit(limit).all()
    return rows, total


def client_balance(
    db: Session,
    company_id: int,
    client_id: int,
) -> dict:
    """
    What a client holds across their ACTIVE packages.

    available_services folds every item of every active package per service:
    credits add up, and expires_at is the soonest among the packages that
    still have credits of that service.
    """
    client = get_client(db, company_id, client_id)
    packages = (
        _package_query(db, company_id)
        .filter(
            DBClientPackage.client_id == client.id,
            DBClientPackage.status == PackageStatus.ACTIVE,
        )
        .order_by(DBClientPackage.id.asc())
        .all()
    )

    total_purchased = Decimal("0.00")
    total_paid = Decimal("0.00")
    services: dict[int, dict] = {}

    for package in packages:
        total_purchased += amount_due(package.sale_price, package.discount_amount)
        total_paid += to_money(package.paid_amount)

        for item in package.items:
            available = item.available_quantity
            if available <= 0:
                continue
            entry = services.setdefault(item.service_id, {
                "service_id": item.service_id,
                "service_name": item.service.name,
                "available": 0,
                "expires_at": None,
            })
            entry["available"] += available
            if package.expires_at is not None and (
                entry["expires_at"] is None or package.expires_at < entry["expires_at"]
            ):
                entry["expires_at"] = package.expires_at

    return {
        "client_id": client.id,
        "client_name": client.name,
        "active_packages": len(packages),
        "total_purchased": to_money(total_purchased),
        "total_paid": to_money(total_paid),
        "total_pending": max(to_money(total_purchased - total_paid), Decimal("0.00")),
        "available_services": sorted(services.values(), key=lambda s: s["service_name"]),
    }


def packages_summary(
    db: Session,
    company_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    clock: Clock = system_clock,
) -> dict:
    """Tenant dashboard for a period (default: the current month so far)."""
    now = clock.now()
    start = to_naive_utc(start) or now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    end = to_naive_utc(end) or now

    # Sales by purchase date
    sales_count, sales_value = (
        db.query(
            func.count(DBClientPackage.id),
            func.coalesce(func.sum(DBClientPackage.sale_price - DBClientPackage.discount_amount), 0),
        )
        .filter(
            DBClientPackage.company_id == company_id,
            DBClientPackage.purchase_date >= start,
            DBClientPackage.purchase_date <= end,
        )
        .one()
    )
    sales_value = to_money(sales_value)
    average = to_money(sales_value / sales_count) if sales_count else Decimal("0.00")

    # Usages by usage date, USED only
    usage_count, usage_value = (
        db.query(
            func.count(DBUsage.id),
            func.coalesce(func.sum(DBUsage.quantity * DBPackageItem.unit_price), 0),
        )
        .join(DBPackageItem, DBUsage.item_id == DBPackageItem.id)
        .join(DBClientPackage, DBUsage.client_package_id == DBClientPackage.id)
        .filter(
            DBClientPackage.company_id == company_id,
            DBUsage.status == UsageStatus.USED,
            DBUsage.used_at >= start,
            DBUsage.used_at <= end,
        )
        .one()
    )

    active = (
        _package_query(db, company_id)
        .filter(DBClientPackage.status == PackageStatus.ACTIVE)
        .all()
    )
    horizon = now + timedelta(days=settings.expiring_soon_days)
    expiring_count = 0
    expiring_value = Decimal("0.00")
    active_total = Decimal("0.00")
    active_available = Decimal("0.00")
    for package in active:
        available_value = sum(
            (to_money(i.unit_price) * i.available_quantity for i in package.items),
            Decimal("0.00"),
        )
        active_total += amount_due(package.sale_price, package.discount_amount)
        active_available += available_value
        if package.expires_at is not None and now <= package.expires_at <= horizon:
            expiring_count += 1
            expiring_value += available_value

    top_templates = (
        db.query(
            DBClientPackage.template_id,
            DBTemplate.name,
            func.count(DBClientPackage.id).label("count"),
            func.coalesce(func.sum(DBClientPackage.sale_price - DBClientPackage.discount_amount), 0),
        )
        .outerjoin(DBTemplate, DBClientPackage.template_id == DBTemplate.id)
        .filter(
            DBClientPackage.company_id == company_id,
            DBClientPackage.purchase_date >= start,
            DBClientPackage.purchase_date <= end,
        )
        .group_by(DBClientPackage.template_id, DBTemplate.name)
        .order_by(func.count(DBClientPackage.id).desc(), DBClientPackage.template_id.asc())
        .limit(TOP_LIMIT)
        .all()
    )

    top_services = (
        db.query(
            DBService.id,
            DBService.name,
            func.sum(DBUsage.quantity).label("usages"),
        )
        .join(DBPackageItem, DBPackageItem.service_id == DBService.id)
        .join(DBUsage, DBUsage.item_id == DBPackageItem.id)
        .join(DBClientPackage, DBUsage.client_package_id == DBClientPackage.id)
        .filter(
            DBClientPackage.company_id == company_id,
            DBUsage.status == UsageStatus.USED,
            DBUsage.used_at >= start,
            DBUsage.used_at <= end,
        )
        .group_by(DBService.id, DBService.name)
        .order_by(func.sum(DBUsage.quantity).desc(), DBService.id.asc())
        .limit(TOP_LIMIT)
        .all()
    )

    return {
        "period": {"start": start, "end": end},
        "sales": {
            "count": sales_count,
            "total_value": sales_value,
            "average_value": average,
        },
        "usages": {"count": usage_count, "total_value": to_money(usage_value)},
        "expiring_packages": {"count": expiring_count, "value": to_money(expiring_value)},
        "active_packages": {
            "count": len(active),
            "total_value": to_money(active_total),
            "available_value": to_money(active_available),
        },
        "top_packages": [
            {
                "template_id": template_id,
                "template_name": name if template_id is not None else "custom",
                "count": count,
                "revenue": to_money(revenue),
            }
            for template_id, name, count, revenue in top_templates
        ],
        "top_services": [
            {"service_id": service_id, "service_name": name, "usages": int(usages)}
            for service_id, name, usages in top_services
        ],
    }
