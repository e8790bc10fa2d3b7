"""Pricing engine.

Pure functions over ``Decimal``: no database, no clock, no rounding. The stored
invoice totals are exactly what ``compute_totals`` returns; rounding to two
places only happens when a value is presented.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional, Union

from invoicing.core.config import DEFAULT_TAX_RATE
from invoicing.core.errors import ValidationError

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LineItem:
    unit_price: Decimal
    quantity: int


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


def to_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            # str() evita herdar o erro binário de um float
            result = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise ValidationError(f"{field} must be a number", details={"field": field}) from exc
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", details={"field": field})
    return result


def resolve_tax_rate(tax_rate_percent: Any = None) -> Decimal:
    if tax_rate_percent is None:
        return DEFAULT_TAX_RATE
    rate = to_decimal(tax_rate_percent, "taxRate")
    if rate < 0 or rate > HUNDRED:
        raise ValidationError(
            "Tax rate must be between 0 and 100",
            details={"field": "taxRate", "value": str(rate)},
        )
    return rate


def _line_parts(item: Union[LineItem, Mapping[str, Any]]) -> tuple[Decimal, int]:
    if isinstance(item, Mapping):
        unit_price, quantity = item.get("unit_price"), item.get("quantity")
    else:
        unit_price, quantity = item.unit_price, item.quantity

    price = to_decimal(unit_price, "unit_price")
    if price < 0:
        raise ValidationError("Unit price cannot be negative", details={"field": "unit_price"})
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be at least 1", details={"field": "quantity"})
    return price, quantity


def compute_totals(
    line_items: Iterable[Union[LineItem, Mapping[str, Any]]],
    tax_rate_percent: Optional[Any] = None,
) -> Totals:
    rate = resolve_tax_rate(tax_rate_percent)

    subtotal = Decimal("0")
    for item in line_items:
        price, quantity = _line_parts(item)
        subtotal += price * quantity

    tax_amount = subtotal * rate / HUNDRED
    return Totals(subtotal=subtotal, tax_amount=tax_amount, total=subtotal + tax_amount)
