"""
Tests for PhaseAggregator (budget_services/phase_aggregator.py).

Invariants tested:
- Phase total from normalized departments, else the legacy map.
- Department buckets merge both stored key formats.
- Anonymous approved expenses land in "Other" and count towards phase spent.
- Only APPROVED expenses are spent; remaining is not clamped.
- A failing department load degrades that phase to its legacy map only.
"""

from decimal import Decimal

import pytest

from budget_kernel.exceptions import TransientStoreError
from budget_services.phase_aggregator import PhaseAggregator
from tests.conftest import PHASE, PROJECT, TENANT

D = Decimal


@pytest.fixture
def aggregator(store):
    return PhaseAggregator(store, max_workers=4)


# =========================================================================
# Reference scenario
# =========================================================================


class TestReferenceScenario:
    """Set 5000 / Costume 3000, mixed key formats, one anonymous expense."""

    def test_phase_totals(self, scenario, aggregator):
        summary = aggregator.aggregate(TENANT, PROJECT).phase(PHASE)
        assert summary.total_budget == D("8000")
        assert summary.spent == D("3500")
        assert summary.anonymous_spent == D("500")
        assert summary.remaining == D("4500")

    def test_department_spent_by_either_key(self, scenario, aggregator):
        summary = aggregator.aggregate(TENANT, PROJECT).phase(PHASE)
        assert summary.spent_for("Set") == D("2000")
        assert summary.spent_for(f"{PHASE}_Set") == D("2000")
        assert summary.spent_for("Costume") == D("1000")
        assert summary.spent_for("Props") == D("0")

    def test_buckets_keyed_canonically(self, scenario, aggregator):
        summary = aggregator.aggregate(TENANT, PROJECT).phase(PHASE)
        assert dict(summary.department_spent) == {f"{PHASE}_Set": D("2000"), f"{PHASE}_Costume": D("1000")}

    def test_pending_expense_not_spent(self, scenario, aggregator):
        aggregate = aggregator.aggregate(TENANT, PROJECT)
        assert aggregate.total_spent == D("3500")

    def test_project_totals(self, scenario, aggregator):
        aggregate = aggregator.aggregate(TENANT, PROJECT)
        assert aggregate.total_budget == D("8000")
        assert aggregate.unattributed_spent == D("0")
        assert aggregate.department_load_failures == ()


# =========================================================================
# Representation edge cases
# =========================================================================


class TestDepartmentRepresentations:
    """Normalized departments versus the legacy inline map."""

    def test_legacy_map_only(self, seed, aggregator):
        seed.project()
        seed.phase(legacy={"Set": 5000, f"{PHASE}_Costume": 3000})
        seed.expense("e1", 700, department="Costume")
        summary = aggregator.aggregate(TENANT, PROJECT).phase(PHASE)
        assert summary.used_legacy_departments
        assert summary.total_budget == D("8000")
        assert dict(summary.department_budgets) == {"Set": D("5000"), "Costume": D("3000")}
        assert summary.spent_for("Costume") == D("700")

    def test_normalized_departments_win_over_legacy(self, seed, aggregator):
        seed.project()
        seed.phase(legacy={"Set": 99999})
        seed.department("Set", 5000)
        summary = aggregator.aggregate(TENANT, PROJECT).phase(PHASE)
        assert summary.total_budget == D("5000")
        assert not summary.used_legacy_departments

    def test_expense_without_department_is_other(self, seed, aggregator):
        seed.project()
        seed.phase()
        seed.expense("e1", 250, department="")
        summary = aggregator.aggregate(TENANT, PROJECT).phase(PHASE)
        assert summary.anonymous_spent == D("250")
        assert summary.spent == D("250")

    def test_overspend_goes_negative(self, seed, aggregator):
        seed.project()
        seed.phase()
        seed.department("Set", 100)
        seed.expense("e1", 150, department="Set")
        assert aggregator.aggregate(TENANT, PROJECT).phase(PHASE).remaining == D("-50")

    def test_expenses_outside_known_phases_are_unattributed(self, seed, aggregator):
        seed.project()
        seed.phase()
        seed.expense("no-phase", 40, phase_id=None, department="Set")
        seed.expense("deleted-phase", 60, phase_id="gone", department="Set")
        aggregate = aggregator.aggregate(TENANT, PROJECT)
        assert aggregate.unattributed_spent == D("100")
        assert aggregate.total_spent == D("0")

    def test_phases_ordered_by_number(self, seed, aggregator):
        seed.project()
        seed.phase("late", number=2)
        seed.phase("early", number=1)
        assert [s.phase_id for s in aggregator.aggregate(TENANT, PROJECT).phases] == ["early", "late"]

    def test_empty_project(self, seed, aggregator):
        seed.project()
        aggregate = aggregator.aggregate(TENANT, PROJECT)
        assert aggregate.phases == ()
        assert aggregate.total_budget == D("0")


# =========================================================================
# Failures
# =========================================================================


class TestLoadFailures:
    """Department failures degrade one phase; expense failures propagate."""

    def test_department_failure_falls_back_to_legacy(self, seed, flaky, captured_logs):
        seed.project()
        seed.phase(legacy={"Set": 1000})
        seed.department("Set", 5000)
        flaky.fail("query", "/departments")

        summary_set = PhaseAggregator(flaky).aggregate(TENANT, PROJECT)
        summary = summary_set.phase(PHASE)
        assert summary.total_budget == D("1000")
        assert summary_set.department_load_failures == (PHASE,)
        assert "department_load_failed_using_legacy" in [r["message"] for r in captured_logs()]

    def test_expense_failure_propagates(self, scenario, flaky):
        flaky.fail("query", "/expenses")
        with pytest.raises(TransientStoreError):
            PhaseAggregator(flaky).aggregate(TENANT, PROJECT)

    def test_summary_logged(self, scenario, aggregator, captured_logs):
        aggregator.aggregate(TENANT, PROJECT)
        record = next(r for r in captured_logs() if r["message"] == "phases_aggregated")
        assert record["phase_count"] == 1
        assert record["total_spent"] == "3500"
