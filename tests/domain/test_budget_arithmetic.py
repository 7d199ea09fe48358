"""
Tests for budget arithmetic (``budget_kernel.domain.budgeting``).

Invariants tested:
- A line item total is quantity * unit price.
- A department budget is the sum of its line items, never stored.
- A phase total uses normalized departments when present, else the legacy
  map, never both.
- Line item validation rejects bad input before anything is written.
"""

from decimal import Decimal

import pytest

from budget_kernel.domain.budgeting import (
    department_budget,
    department_budgets,
    encode_line_item,
    parse_line_item,
    parse_line_items,
    phase_total_budget,
)
from budget_kernel.domain.dtos import Department, LineItem
from budget_kernel.exceptions import LineItemValidationError


def _item(quantity: str, price: str, item_type: str = "Material") -> LineItem:
    return LineItem(
        item_type=item_type,
        item="Plywood",
        spec="18mm",
        quantity=Decimal(quantity),
        uom="sheet",
        unit_price=Decimal(price),
    )


def _department(name: str, *items: LineItem) -> Department:
    return Department(department_id=f"d-{name}", name=name, phase_id="ph1", line_items=items)


# =========================================================================
# Totals
# =========================================================================


class TestTotals:
    """Line item, department and phase totals."""

    def test_line_item_total(self):
        assert _item("2.5", "400").total == Decimal("1000.0")

    def test_department_budget_sums_items(self):
        assert department_budget([_item("2", "100"), _item("3", "50")]) == Decimal("350")

    def test_department_without_items_is_zero(self):
        assert department_budget([]) == Decimal("0")
        assert _department("Empty").budget == Decimal("0")

    def test_phase_total_prefers_normalized_departments(self):
        """The legacy map is ignored once any normalized department exists."""
        departments = [_department("Set", _item("1", "5000"))]
        legacy = {"Set": Decimal("9999"), "Costume": Decimal("3000")}
        assert phase_total_budget(departments, legacy) == Decimal("5000")

    def test_phase_total_falls_back_to_legacy(self):
        legacy = {"Set": Decimal("5000"), "Costume": Decimal("3000")}
        assert phase_total_budget([], legacy) == Decimal("8000")

    def test_department_budgets_follow_same_representation(self):
        departments = [_department("Set", _item("1", "5000")), _department("Costume", _item("2", "1500"))]
        assert department_budgets(departments, {"Old": Decimal("1")}) == {
            "Set": Decimal("5000"),
            "Costume": Decimal("3000"),
        }
        assert department_budgets([], {"Old": Decimal("1")}) == {"Old": Decimal("1")}


# =========================================================================
# Parsing user input
# =========================================================================


class TestParseLineItem:
    """Validation of user-entered line items."""

    def test_numeric_strings_with_separators(self):
        item = parse_line_item(
            {"itemType": "Material", "item": "Paint", "quantity": "1,000", "uom": "litre", "unitPrice": "2.50"}
        )
        assert item.quantity == Decimal("1000")
        assert item.unit_price == Decimal("2.50")
        assert item.total == Decimal("2500.00")

    def test_labour_items_drop_spec(self):
        item = parse_line_item(
            {"itemType": "Labour", "item": "Carpenter", "spec": "senior", "quantity": 4, "uom": "day", "unitPrice": 1200}
        )
        assert item.spec == ""

    def test_custom_labour_item_type(self):
        item = parse_line_item(
            {"itemType": "Crew", "spec": "night", "quantity": 1, "uom": "shift", "unitPrice": 1},
            labour_item_type="Crew",
        )
        assert item.spec == ""

    def test_missing_uom_rejected(self):
        with pytest.raises(LineItemValidationError) as exc_info:
            parse_line_item({"quantity": 1, "unitPrice": 1}, index=2)
        assert exc_info.value.field == "uom"
        assert exc_info.value.index == 2

    @pytest.mark.parametrize("quantity", ["abc", None, "", True])
    def test_non_numeric_quantity_rejected(self, quantity):
        with pytest.raises(LineItemValidationError) as exc_info:
            parse_line_item({"quantity": quantity, "uom": "pc", "unitPrice": 1})
        assert exc_info.value.field == "quantity"

    def test_negative_price_rejected(self):
        with pytest.raises(LineItemValidationError) as exc_info:
            parse_line_item({"quantity": 1, "uom": "pc", "unitPrice": "-5"})
        assert exc_info.value.field == "unitPrice"
        assert "negative" in exc_info.value.reason

    def test_parse_many_reports_failing_index(self):
        raw = [
            {"quantity": 1, "uom": "pc", "unitPrice": 1},
            {"quantity": 1, "uom": "", "unitPrice": 1},
        ]
        with pytest.raises(LineItemValidationError) as exc_info:
            parse_line_items(raw)
        assert exc_info.value.index == 1

    def test_encode_uses_stored_field_names(self):
        encoded = encode_line_item(_item("2", "10"))
        assert encoded == {
            "itemType": "Material",
            "item": "Plywood",
            "spec": "18mm",
            "quantity": Decimal("2"),
            "uom": "sheet",
            "unitPrice": Decimal("10"),
        }
