# Overview: Document totals: parts and labor lines, tax and discount, in integer cents.

"""
Line-item arithmetic shared by work orders, budgets and invoices.

Money is integer cents. Quantities and hours are Decimal, so a labor line
of 1.5 h at 2000 cents/h is exactly 3000 cents. Fractional cents from
hour-priced lines and from tax are rounded half-up, once per line and once
for tax.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ..errors import ValidationError
from ..money import to_decimal, round_cents, apply_bps, has_max_places


@dataclass(frozen=True)
class LineTotal:
    description: str | None
    quantity: Decimal
    unit_price_cents: int
    total_cents: int


@dataclass(frozen=True)
class DocumentTotals:
    items: list[LineTotal] = field(default_factory=list)
    services: list[LineTotal] = field(default_factory=list)
    subtotal_cents: int = 0
    tax_amount_cents: int = 0
    discount_amount_cents: int = 0
    total_amount_cents: int = 0

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "total_amount_cents": self.total_amount_cents,
        }


def _price(value, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer number of cents")
    if value < 0:
        raise ValidationError(f"{field_name} cannot be negative")
    return value


def _amount(value, field_name: str) -> Decimal:
    try:
        amount = to_decimal(value)
    except ValueError:
        raise ValidationError(f"{field_name} must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field_name} must be positive")
    # Stored with 2 decimal places; the line total must match what is stored
    if not has_max_places(amount, 2):
        raise ValidationError(f"{field_name} allows at most 2 decimal places")
    return amount


def line_total(quantity, unit_price_cents, *, quantity_field="quantity", price_field="unit_price_cents") -> LineTotal:
    qty = _amount(quantity, quantity_field)
    price = _price(unit_price_cents, price_field)
    return LineTotal(
        description=None,
        quantity=qty,
        unit_price_cents=price,
        total_cents=round_cents(qty * price),
    )


def compute(items, services, *, tax_rate_bps: int, discount_cents: int = 0) -> DocumentTotals:
    """
    Compute line totals, subtotal, tax and total.

    items: [{"quantity", "unit_price_cents", "description"?}]
    services: [{"hours", "rate_cents", "description"?}]

    tax = subtotal * tax_rate_bps / 10000 (half-up)
    total = subtotal + tax - discount

    Raises ValidationError on malformed lines or a discount outside
    [0, subtotal + tax].
    """
    item_lines: list[LineTotal] = []
    for idx, raw in enumerate(items or []):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        lt = line_total(
            raw.get("quantity"),
            raw.get("unit_price_cents"),
            quantity_field=f"items[{idx}].quantity",
            price_field=f"items[{idx}].unit_price_cents",
        )
        item_lines.append(LineTotal(raw.get("description"), lt.quantity, lt.unit_price_cents, lt.total_cents))

    service_lines: list[LineTotal] = []
    for idx, raw in enumerate(services or []):
        if not isinstance(raw, dict):
            raise ValidationError(f"services[{idx}] must be an object")
        lt = line_total(
            raw.get("hours"),
            raw.get("rate_cents"),
            quantity_field=f"services[{idx}].hours",
            price_field=f"services[{idx}].rate_cents",
        )
        service_lines.append(LineTotal(raw.get("description"), lt.quantity, lt.unit_price_cents, lt.total_cents))

    subtotal = sum(line.total_cents for line in item_lines) + sum(line.total_cents for line in service_lines)
    tax = apply_bps(subtotal, tax_rate_bps)

    discount = _price(discount_cents or 0, "discount_amount_cents")
    if discount > subtotal + tax:
        raise ValidationError("discount_amount_cents cannot exceed subtotal plus tax")

    return DocumentTotals(
        items=item_lines,
        services=service_lines,
        subtotal_cents=subtotal,
        tax_amount_cents=tax,
        discount_amount_cents=discount,
        total_amount_cents=subtotal + tax - discount,
    )
