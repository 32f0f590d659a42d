"""Money helpers and server-side recomputation of cost breakdowns."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from glassflow.errors import ValidationError

CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("999999.99")


def to_money(value, name: str = "amount") -> Decimal:
    """Coerce to a non-negative Decimal with two fraction digits."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{name} is required", "invalid_amount")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a number", "invalid_amount")
    if not amount.is_finite():
        raise ValidationError(f"{name} must be a number", "invalid_amount")
    if amount < 0:
        raise ValidationError(f"{name} must not be negative", "invalid_amount")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{name} is too large", "invalid_amount")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class CostBreakdown:
    line_items: list[dict] = field(default_factory=list)
    parts_cost: Decimal = Decimal("0.00")
    labor_cost: Decimal = Decimal("0.00")
    total_cost: Decimal = Decimal("0.00")

    def line_items_json(self) -> list[dict]:
        return [
            {**item, "unit_price": str(item["unit_price"])}
            for item in self.line_items
        ]


def build_cost_breakdown(
    line_items: list[dict] | None,
    labor_cost,
    parts_cost=None,
    total_cost=None,
) -> CostBreakdown:
    """Recompute parts and total from the line items.

    With no line items a single "Parts" line carrying ``parts_cost`` is
    created. Client-supplied ``parts_cost``/``total_cost`` are only checked
    against the recomputed values, never trusted.
    """
    labor = to_money(labor_cost, "labor_cost")
    items: list[dict] = []

    if line_items:
        for raw in line_items:
            name = str(raw.get("name", "")).strip()
            if not name:
                raise ValidationError("Every line item needs a name", "invalid_line_item")
            quantity = raw.get("quantity", 1)
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise ValidationError("Line item quantity must be a positive whole number", "invalid_line_item")
            items.append({
                "name": name,
                "description": str(raw.get("description", "") or ""),
                "quantity": quantity,
                "unit_price": to_money(raw.get("unit_price"), "unit_price"),
            })
        parts = sum((i["unit_price"] * i["quantity"] for i in items), Decimal("0.00")).quantize(CENT)
        if parts_cost is not None and to_money(parts_cost, "parts_cost") != parts:
            raise ValidationError(
                "Parts cost does not match the sum of the line items", "parts_cost_mismatch",
            )
    else:
        if parts_cost is None:
            raise ValidationError("Either line items or parts_cost is required", "missing_parts")
        parts = to_money(parts_cost, "parts_cost")
        items.append({"name": "Parts", "description": "", "quantity": 1, "unit_price": parts})

    total = (parts + labor).quantize(CENT)
    if total_cost is not None and to_money(total_cost, "total_cost") != total:
        raise ValidationError(
            "Total cost must equal parts cost plus labor cost", "total_cost_mismatch",
        )
    if total <= 0:
        raise ValidationError("Please enter a valid price", "invalid_amount")

    return CostBreakdown(line_items=items, parts_cost=parts, labor_cost=labor, total_cost=total)
