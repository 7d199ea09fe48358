"""
Budgeting -- line item, department and phase budget arithmetic.

Responsibility:
    Pure functions computing a line item's total, a department's budget from
    its line items, and a phase's total budget from whichever department
    representation the phase carries. Also parses and validates line items
    supplied for a write.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - ``total(LineItem) == quantity * unit_price``.
    - ``budget(Department) == sum(total(item) for item in line_items)``;
      a department budget is always recomputed from its items, never stored
      independently.
    - A phase total uses the normalized departments when any exist, else the
      legacy inline map; the two are never added together.

Failure modes:
    - LineItemValidationError for a missing unit of measure, or a quantity
      or unit price that is not a non-negative decimal.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence

from budget_kernel.domain.dtos import Department, LineItem
from budget_kernel.domain.formats import parse_decimal
from budget_kernel.exceptions import LineItemValidationError

ZERO = Decimal("0")

DEFAULT_LABOUR_ITEM_TYPE = "Labour"


def line_item_total(item: LineItem) -> Decimal:
    return item.quantity * item.unit_price


def department_budget(line_items: Iterable[LineItem]) -> Decimal:
    return sum((line_item_total(item) for item in line_items), ZERO)


def phase_total_budget(
    departments: Sequence[Department],
    legacy_departments: Mapping[str, Decimal],
) -> Decimal:
    """Sum department budgets, falling back to the legacy inline map."""
    if departments:
        return sum((department_budget(d.line_items) for d in departments), ZERO)
    return sum(legacy_departments.values(), ZERO)


def department_budgets(
    departments: Sequence[Department],
    legacy_departments: Mapping[str, Decimal],
) -> dict[str, Decimal]:
    """Display name -> budget, using the same representation as the total."""
    if departments:
        return {d.name: department_budget(d.line_items) for d in departments}
    return dict(legacy_departments)


def _non_negative(raw: Any, field: str, index: int | None) -> Decimal:
    value = parse_decimal(raw)
    if value is None:
        raise LineItemValidationError(field, raw, "must be a number", index)
    if value < ZERO:
        raise LineItemValidationError(field, raw, "must not be negative", index)
    return value


def parse_line_item(
    raw: Mapping[str, Any],
    index: int | None = None,
    labour_item_type: str = DEFAULT_LABOUR_ITEM_TYPE,
) -> LineItem:
    """
    Build a validated LineItem from user-entered fields.

    Quantity and unit price may be numeric strings with thousands
    separators. The spec text is cleared for labour items.
    """
    uom = str(raw.get("uom") or "").strip()
    if not uom:
        raise LineItemValidationError("uom", raw.get("uom"), "unit of measure is required", index)

    quantity = _non_negative(raw.get("quantity"), "quantity", index)
    unit_price = _non_negative(raw.get("unitPrice"), "unitPrice", index)

    item_type = str(raw.get("itemType") or "").strip()
    spec = str(raw.get("spec") or "").strip()
    if item_type == labour_item_type:
        spec = ""

    return LineItem(
        item_type=item_type,
        item=str(raw.get("item") or "").strip(),
        spec=spec,
        quantity=quantity,
        uom=uom,
        unit_price=unit_price,
    )


def parse_line_items(
    raw_items: Iterable[Mapping[str, Any]],
    labour_item_type: str = DEFAULT_LABOUR_ITEM_TYPE,
) -> tuple[LineItem, ...]:
    return tuple(
        parse_line_item(raw, index, labour_item_type)
        for index, raw in enumerate(raw_items)
    )


def encode_line_item(item: LineItem) -> dict[str, Any]:
    """Stored shape of a line item inside a department document."""
    return {
        "itemType": item.item_type,
        "item": item.item,
        "spec": item.spec,
        "quantity": item.quantity,
        "uom": item.uom,
        "unitPrice": item.unit_price,
    }
