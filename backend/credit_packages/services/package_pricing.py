# backend/credit_packages/services/package_pricing.py
"""
Package price arithmetic.

All money is Decimal quantized to cents (ROUND_HALF_UP). Floats never enter
the ledger: repeated partial payments must add up to exactly the amount due.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from .directory import ServiceRef

CENT = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def to_money(value: Optional[Number]) -> Decimal:
    """Coerce to a cent-quantized Decimal (None → 0.00)."""
    if value is None:
        return Decimal("0.00")
    if isinstance(value, float):
        # str() first: Decimal(0.1) would keep the binary noise
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def resolve_item_prices(
    package_items: list[dict],
    services: dict[int, ServiceRef],
) -> list[dict]:
    """
    Fill in unit prices for package items.

    Args:
        package_items: list of {"service_id": int, "quantity": int,
                       "unit_price": Decimal | None}
        services: {service_id: ServiceRef} lookup

    Returns:
        New list of {"service_id", "quantity", "unit_price"} where a missing
        unit_price falls back to the service's current price.
    """
    resolved = []
    for item in package_items:
        svc = services[item["service_id"]]
        unit_price = item.get("unit_price")
        resolved.append({
            "service_id": item["service_id"],
            "quantity": item["quantity"],
            "unit_price": to_money(svc.price if unit_price is None else unit_price),
        })
    return resolved


def calc_package_price(package_items: list[dict]) -> Decimal:
    """Σ unit_price × quantity over items with resolved unit prices."""
    total = Decimal("0.00")
    for item in package_items:
        total += to_money(item["unit_price"]) * item["quantity"]
    return to_money(total)


def amount_due(sale_price: Number, discount_amount: Number) -> Decimal:
    return to_money(to_money(sale_price) - to_money(discount_amount))


def is_fully_paid(paid_amount: Number, sale_price: Number, discount_amount: Number) -> bool:
    return to_money(paid_amount) >= amount_due(sale_price, discount_amount)


def discount_percent(original_price: Number, sale_price: Number) -> Decimal:
    """Percentage off the original price; 0 when the original is 0."""
    original = to_money(original_price)
    if original <= 0:
        return Decimal("0.00")
    return to_money((original - to_money(sale_price)) / original * 100)
