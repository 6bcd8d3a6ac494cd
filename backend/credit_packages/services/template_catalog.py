# backend/credit_packages/services/template_catalog.py
"""
Template catalog: sellable package blueprints.

A template is read-mostly. Once a package has been sold from it, its items,
prices and validity can only change through a versioned edit: the caller
must send the version it read (expected_version). Sold packages keep their
own snapshot, so an edit never rewrites history.
"""

import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from ..models import (
    ClientPackages as DBClientPackage,
    PackageTemplateItems as DBTemplateItem,
    PackageTemplates as DBTemplate,
)
from ..schemas.package_templates import PackageTemplateCreate, PackageTemplateUpdate
from .clock import Clock, system_clock
from .directory import get_services
from .errors import ConcurrencyConflict, InvalidRequest, NotFound
from .package_pricing import calc_package_price, discount_percent, resolve_item_prices, to_money
from .unit_of_work import run_in_transaction

logger = logging.getLogger(__name__)

# Fields frozen by a sale; editing them requires expected_version
POLICY_FIELDS = frozenset({
    "validity_days",
    "validity_type",
    "original_price",
    "sale_price",
    "items",
})

NULLABLE_FIELDS = frozenset({"description", "code"})


def _template_query(db: Session, company_id: int):
    return (
        db.query(DBTemplate)
        .options(selectinload(DBTemplate.items).selectinload(DBTemplateItem.service))
        .filter(DBTemplate.company_id == company_id, DBTemplate.deleted_at.is_(None))
    )


def get_template(db: Session, company_id: int, template_id: int) -> DBTemplate:
    template = _template_query(db, company_id).filter(DBTemplate.id == template_id).first()
    if not template:
        raise NotFound(f"Package template {template_id} not found", template_id=template_id)
    return template


def list_templates(
    db: Session,
    company_id: int,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    service_id: Optional[int] = None,
) -> list[DBTemplate]:
    query = _template_query(db, company_id)

    if is_active is not None:
        query = query.filter(DBTemplate.is_active.is_(is_active))

    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                DBTemplate.name.ilike(pattern),
                DBTemplate.description.ilike(pattern),
                DBTemplate.code.ilike(pattern),
            )
        )

    if service_id is not None:
        query = query.filter(DBTemplate.items.any(DBTemplateItem.service_id == service_id))

    return query.order_by(DBTemplate.name.asc()).all()


def _build_items(db: Session, company_id: int, items: list) -> tuple[list[DBTemplateItem], list[dict]]:
    raw = [item.model_dump() for item in items]
    service_ids = [i["service_id"] for i in raw]
    if len(set(service_ids)) != len(service_ids):
        raise InvalidRequest("A service can appear only once per package", service_ids=service_ids)
    services = get_services(db, company_id, service_ids)
    priced = resolve_item_prices(raw, services)
    rows = [
        DBTemplateItem(
            service_id=i["service_id"],
            quantity=i["quantity"],
            unit_price=None if i["unit_price"] is None else to_money(i["unit_price"]),
        )
        for i in raw
    ]
    return rows, priced


def create_template(
    db: Session,
    company_id: int,
    data: PackageTemplateCreate,
    clock: Clock = system_clock,
) -> DBTemplate:
    rows, priced = _build_items(db, company_id, data.items)

    original_price = (
        to_money(data.original_price)
        if data.original_price is not None
        else calc_package_price(priced)
    )
    sale_price = to_money(data.sale_price) if data.sale_price is not None else original_price

    template = DBTemplate(
        company_id=company_id,
        name=data.name,
        description=data.description,
        code=data.code,
        validity_days=data.validity_days,
        validity_type=data.validity_type,
        original_price=original_price,
        sale_price=sale_price,
        allow_partial_use=data.allow_partial_use,
        transferable=data.transferable,
        max_installments=data.max_installments,
        is_active=True,
        created_at=clock.now(),
        items=rows,
    )
    db.add(template)
    db.commit()

    logger.info(f"Package template {template.id} created (company={company_id})")
    return get_template(db, company_id, template.id)


def _is_referenced(db: Session, template_id: int) -> bool:
    return (
        db.query(DBClientPackage.id)
        .filter(DBClientPackage.template_id == template_id)
        .first()
        is not None
    )


def _lock_template(db: Session, company_id: int, template_id: int) -> DBTemplate:
    template = (
        _template_query(db, company_id)
        .filter(DBTemplate.id == template_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not template:
        raise NotFound(f"Package template {template_id} not found", template_id=template_id)
    return template


def update_template(
    db: Session,
    company_id: int,
    template_id: int,
    data: PackageTemplateUpdate,
    clock: Clock = system_clock,
) -> DBTemplate:
    """
    Apply an edit on a freshly locked row.

    The version column is bumped by the mapper on flush; a concurrent edit
    committed between the read and the write makes the flush stale, and the
    re-run then fails the expected_version comparison.
    """
    changes = data.model_dump(exclude_unset=True, exclude={"expected_version", "items"})
    # explicit nulls only clear nullable text fields
    changes = {
        k: v for k, v in changes.items()
        if v is not None or k in NULLABLE_FIELDS
    }
    items_changed = data.items is not None

    def operation() -> DBTemplate:
        template = _lock_template(db, company_id, template_id)

        if data.expected_version is not None and data.expected_version != template.version:
            raise ConcurrencyConflict(
                "Package template was modified by someone else",
                template_id=template_id,
                expected_version=data.expected_version,
                current_version=template.version,
            )

        touches_policy = items_changed or bool(POLICY_FIELDS & changes.keys())
        if touches_policy and data.expected_version is None and _is_referenced(db, template_id):
            raise InvalidRequest(
                "Template has sold packages: editing items, prices or validity "
                "requires expected_version",
                template_id=template_id,
                current_version=template.version,
            )

        if items_changed:
            rows, priced = _build_items(db, company_id, data.items)
            template.items = rows
            if "original_price" not in changes:
                template.original_price = calc_package_price(priced)

        for field, value in changes.items():
            if field in ("original_price", "sale_price") and value is not None:
                value = to_money(value)
            setattr(template, field, value)

        template.updated_at = clock.now()
        return template

    template = run_in_transaction(db, operation, label="template update")

    logger.info(f"Package template {template_id} updated to version {template.version}")
    return get_template(db, company_id, template_id)


def delete_template(
    db: Session,
    company_id: int,
    template_id: int,
    clock: Clock = system_clock,
) -> None:
    """Soft delete: sold packages keep pointing at the row."""
    template = get_template(db, company_id, template_id)
    template.deleted_at = clock.now()
    template.is_active = False
    db.commit()
    logger.info(f"Package template {template_id} deleted")


def template_to_read(template: DBTemplate) -> dict:
    """Project a template row into the PackageTemplateRead shape."""
    return {
        "id": template.id,
        "company_id": template.company_id,
        "name": template.name,
        "description": template.description,
        "code": template.code,
        "validity_days": template.validity_days,
        "validity_type": template.validity_type,
        "original_price": to_money(template.original_price),
        "sale_price": to_money(template.sale_price),
        "discount_percent": discount_percent(template.original_price, template.sale_price),
        "is_active": template.is_active,
        "allow_partial_use": template.allow_partial_use,
        "transferable": template.transferable,
        "max_installments": template.max_installments,
        "version": template.version,
        "items": [
            {
                "id": item.id,
                "service_id": item.service_id,
                "service_name": item.service.name,
                "quantity": item.quantity,
                "unit_price": None if item.unit_price is None else to_money(item.unit_price),
                "service_price": to_money(item.service.price),
            }
            for item in template.items
        ],
        "created_at": template.created_at,
        "updated_at": template.updated_at,
    }
