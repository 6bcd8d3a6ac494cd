# backend/credit_packages/services/package_sale.py
"""
Sale engine: turns a template (or an ad-hoc item list) into a client package.

The package, its items and the down-payment row are written in one
transaction. Nothing is debited at sale time: every item starts with all of
its credits available. The down payment is handed to the financial ledger
after the commit (see payment_tracker.post_income).
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import settings
from ..models import (
    ClientPackageItems as DBPackageItem,
    ClientPackages as DBClientPackage,
    PackagePayments as DBPackagePayment,
    PackageStatus,
    ValidityType,
)
from ..schemas.client_packages import SellPackageRequest
from .clock import Clock, system_clock, to_naive_utc
from .directory import get_client, get_services
from .errors import InvalidRequest, NotFound, OperationResult
from .events import emit_event
from .income_sink import IncomeRequest, IncomeSink
from .lifecycle import expiry_from, package_event
from .package_pricing import calc_package_price, is_fully_paid, resolve_item_prices, to_money
from .packages import load_package, next_package_code
from .payment_tracker import post_income
from .template_catalog import get_template
from .unit_of_work import run_in_transaction

logger = logging.getLogger(__name__)


def _resolve_bundle(db: Session, company_id: int, data: SellPackageRequest) -> dict:
    """Items, prices and validity policy for the sale, before any write."""
    if data.template_id is not None:
        template = get_template(db, company_id, data.template_id)
        if not template.is_active:
            raise NotFound(
                f"Package template {data.template_id} not found or inactive",
                template_id=data.template_id,
            )
        if data.installments > template.max_installments:
            raise InvalidRequest(
                f"Template allows at most {template.max_installments} installments",
                template_id=template.id,
                installments=data.installments,
                max_installments=template.max_installments,
            )

        raw = [
            {"service_id": i.service_id, "quantity": i.quantity, "unit_price": i.unit_price}
            for i in template.items
        ]
        services = get_services(db, company_id, [i["service_id"] for i in raw])
        return {
            "template_id": template.id,
            "template_version": template.version,
            "name": data.name or template.name,
            "description": data.description or template.description,
            "items": resolve_item_prices(raw, services),
            "original_price": to_money(template.original_price),
            "default_sale_price": to_money(template.sale_price),
            "validity_days": template.validity_days,
            "validity_type": template.validity_type,
            "allow_partial_use": template.allow_partial_use,
        }

    if not data.name:
        raise InvalidRequest("Custom packages require a name")
    if not data.items:
        raise InvalidRequest("Custom packages require at least one item")

    raw = [item.model_dump() for item in data.items]
    service_ids = [i["service_id"] for i in raw]
    if len(set(service_ids)) != len(service_ids):
        raise InvalidRequest("A service can appear only once per package", service_ids=service_ids)

    services = get_services(db, company_id, service_ids)
    items = resolve_item_prices(raw, services)
    original_price = calc_package_price(items)
    return {
        "template_id": None,
        "template_version": None,
        "name": data.name,
        "description": data.description,
        "items": items,
        "original_price": original_price,
        "default_sale_price": original_price,
        "validity_days": settings.default_validity_days,
        "validity_type": ValidityType.DAYS_FROM_PURCHASE,
        "allow_partial_use": True,
    }


def sell(
    db: Session,
    company_id: int,
    actor_id: Optional[int],
    data: SellPackageRequest,
    sink: Optional[IncomeSink] = None,
    clock: Clock = system_clock,
) -> OperationResult[DBClientPackage]:
    client = get_client(db, company_id, data.client_id)
    bundle = _resolve_bundle(db, company_id, data)

    sale_price = to_money(data.sale_price) if data.sale_price is not None else bundle["default_sale_price"]
    discount = to_money(data.discount_amount)
    paid = to_money(data.paid_amount)
    if discount > sale_price:
        raise InvalidRequest(
            "Discount cannot exceed the sale price",
            sale_price=str(sale_price),
            discount_amount=str(discount),
        )

    now = clock.now()
    activation_date = to_naive_utc(data.activation_date)
    expires_at = to_naive_utc(data.expires_at)
    if expires_at is None:
        if bundle["validity_type"] == ValidityType.DAYS_FROM_PURCHASE:
            expires_at = expiry_from(now, bundle["validity_days"])
        elif activation_date is not None:
            expires_at = expiry_from(activation_date, bundle["validity_days"])
        # else: starts counting at first use

    status = (
        PackageStatus.ACTIVE
        if is_fully_paid(paid, sale_price, discount)
        else PackageStatus.PENDING_PAYMENT
    )

    def operation():
        package = DBClientPackage(
            company_id=company_id,
            client_id=client.id,
            template_id=bundle["template_id"],
            template_version=bundle["template_version"],
            name=bundle["name"],
            description=bundle["description"],
            code=next_package_code(db, company_id, now),
            validity_days=bundle["validity_days"],
            validity_type=bundle["validity_type"],
            allow_partial_use=bundle["allow_partial_use"],
            status=status,
            purchase_date=now,
            activation_date=activation_date,
            expires_at=expires_at,
            original_price=bundle["original_price"],
            sale_price=sale_price,
            discount_amount=discount,
            paid_amount=paid,
            payment_method=data.payment_method,
            installments=data.installments,
            notes=data.notes,
            internal_notes=data.internal_notes,
            sold_by=actor_id,
            created_at=now,
            items=[
                DBPackageItem(
                    service_id=item["service_id"],
                    quantity=item["quantity"],
                    used_quantity=0,
                    cancelled_quantity=0,
                    unit_price=item["unit_price"],
                )
                for item in bundle["items"]
            ],
        )
        db.add(package)
        if paid > 0:
            package.payments.append(DBPackagePayment(
                amount=paid,
                method=data.payment_method,
                notes="Down payment at sale",
                paid_at=now,
                recorded_by=actor_id,
            ))
        db.flush()
        return package.id

    # A concurrent sale may take the same code: re-run with the next number
    package_id = run_in_transaction(
        db,
        operation,
        label=f"sale to client {client.id}",
        retry_on=(IntegrityError, StaleDataError),
    )
    package = load_package(db, company_id, package_id)
    logger.info(
        f"Package {package.code} sold to client {client.id} "
        f"(company={company_id}, status={package.status.value})"
    )
    emit_event("package_sold", package_event(
        package,
        code=package.code,
        template_id=package.template_id,
        sale_price=str(package.sale_price),
    ))

    warnings = []
    if paid > 0:
        warnings = post_income(sink, IncomeRequest(
            company_id=company_id,
            client_id=client.id,
            client_package_id=package.id,
            amount=paid,
            payment_method=data.payment_method,
            paid_at=now,
            recorded_by=actor_id,
            description=f"Down payment for package {package.code}",
        ))
    return OperationResult(package, warnings)
