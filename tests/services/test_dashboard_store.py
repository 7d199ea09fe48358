"""
Tests for DashboardStore (budget_services/dashboard_store.py).

Invariants tested:
- load_all joins every part before swapping in one snapshot.
- The most recently started load wins; a stale generation is discarded.
- Incremental deltas superseded by a load are counted.
- A failed phase aggregation leaves the current snapshot untouched;
  failed optional parts keep their previous values.
"""

import threading
from decimal import Decimal

import pytest

from budget_kernel.db import paths
from budget_kernel.domain.dtos import ExpenseStatus, TeamMember, UserRole
from budget_kernel.exceptions import ProjectNotFoundError, TransientStoreError
from budget_services.dashboard_store import DashboardStore, sort_team
from budget_services.phase_aggregator import PhaseAggregator
from tests.conftest import ADMIN_ID, DELEGATE_ID, MEMBER_ID, PHASE, PROJECT, TENANT

D = Decimal


# =========================================================================
# Bulk load
# =========================================================================


class TestLoadAll:
    """Rebuilding the snapshot from the document store."""

    def test_scenario_totals(self, scenario, dashboard):
        dashboard.load_all(PROJECT, TENANT)
        assert dashboard.total_project_budget == D("8000")
        assert dashboard.total_project_spent == D("3500")
        assert dashboard.snapshot.total_project_remaining == D("4500")
        assert dashboard.anonymous_expense(PHASE) == D("500")
        assert dashboard.department_spent(PHASE, "Set") == D("2000")
        assert dashboard.department_spent(PHASE, "Costume") == D("1000")
        assert dashboard.phase_budget(PHASE).remaining == D("4500")

    def test_tracks_loaded_project_only(self, scenario, dashboard):
        assert not dashboard.tracks(TENANT, PROJECT)
        dashboard.load_all(PROJECT, TENANT)
        assert dashboard.tracks(TENANT, PROJECT)
        assert not dashboard.tracks("other", PROJECT)

    def test_generations_increase(self, scenario, dashboard):
        first = dashboard.load_all(PROJECT, TENANT)
        second = dashboard.load_all(PROJECT, TENANT)
        assert (first.generation, second.generation) == (1, 2)

    def test_team_sorted_admins_first(self, seed, dashboard):
        seed.project(team=["9000000005", ADMIN_ID, MEMBER_ID])
        seed.phase()
        seed.user("9000000005", "zoe")
        seed.user(MEMBER_ID, "Arjun")
        seed.user(ADMIN_ID, "Head", role="BUSINESSHEAD", email=ADMIN_ID)
        dashboard.load_all(PROJECT, TENANT)
        assert [m.name for m in dashboard.team_members] == ["Head", "Arjun", "zoe"]

    def test_unknown_user_kept_by_id(self, seed, dashboard):
        seed.project(team=["9000000077"])
        dashboard.load_all(PROJECT, TENANT)
        assert dashboard.team_members[0].member_id == "9000000077"

    def test_extension_flag_and_enablement(self, seed, dashboard):
        seed.project()
        seed.phase(end="15/07/2025")
        seed.phase("ph2", number=2, enabled=False)
        seed.request("r1", "15/07/2025", status="ACCEPTED")
        dashboard.load_all(PROJECT, TENANT)
        assert dashboard.is_phase_extended(PHASE)
        assert not dashboard.is_phase_extended("ph2")
        assert not dashboard.is_phase_enabled("ph2")

    def test_delegation_loaded(self, seed, dashboard, clock):
        seed.project()
        seed.delegation("rec-1", start=clock.now(), end=clock.now())
        dashboard.load_all(PROJECT, TENANT)
        assert dashboard.delegation.approver_id == DELEGATE_ID

    def test_load_committed_log(self, scenario, dashboard, captured_logs):
        dashboard.load_all(PROJECT, TENANT)
        committed = next(r for r in captured_logs() if r["message"] == "dashboard_load_committed")
        assert committed["project_id"] == PROJECT
        assert committed["generation"] == "1"
        assert committed["total_spent"] == "3500"


class TestLoadFailures:
    """What survives when parts of a load fail."""

    def test_aggregation_failure_keeps_snapshot(self, scenario, flaky):
        dashboard = DashboardStore(flaky)
        before = dashboard.load_all(PROJECT, TENANT)
        flaky.fail("query", "/expenses")
        with pytest.raises(TransientStoreError):
            dashboard.load_all(PROJECT, TENANT)
        assert dashboard.snapshot is before

    def test_missing_project_propagates(self, dashboard):
        with pytest.raises(ProjectNotFoundError):
            dashboard.load_all(PROJECT, TENANT)

    def test_team_failure_keeps_previous_team(self, seed, flaky, captured_logs):
        seed.project(team=[MEMBER_ID])
        seed.phase()
        seed.user(MEMBER_ID, "Arjun")
        dashboard = DashboardStore(flaky)
        dashboard.load_all(PROJECT, TENANT)

        flaky.fail("get", f"/users/{MEMBER_ID}")
        dashboard.load_all(PROJECT, TENANT)
        assert [m.name for m in dashboard.team_members] == ["Arjun"]
        kept = [r for r in captured_logs() if r["message"] == "dashboard_part_kept_previous"]
        assert kept[0]["part"] == "team"


# =========================================================================
# Incremental updates
# =========================================================================


class TestIncrementalUpdates:
    """Mutations between loads."""

    def test_approval_delta(self, scenario, dashboard):
        dashboard.load_all(PROJECT, TENANT)
        dashboard.update_expense_status(
            "exp-pending", PHASE, "Set", ExpenseStatus.PENDING, ExpenseStatus.APPROVED, D("1000")
        )
        assert dashboard.department_spent(PHASE, "Set") == D("3000")
        assert dashboard.total_project_spent == D("4500")

    def test_reload_matches_incremental_state(self, scenario, store, dashboard):
        dashboard.load_all(PROJECT, TENANT)
        store.update(paths.expense_path(TENANT, PROJECT, "exp-pending"), {"status": "APPROVED"})
        dashboard.update_expense_status(
            "exp-pending", PHASE, "Set", ExpenseStatus.PENDING, ExpenseStatus.APPROVED, D("1000")
        )
        incremental = dashboard.snapshot
        reloaded = dashboard.load_all(PROJECT, TENANT)
        assert reloaded.total_project_spent == incremental.total_project_spent
        assert dict(reloaded.phase_department_spent[PHASE]) == dict(incremental.phase_department_spent[PHASE])

    def test_superseded_deltas_counted(self, scenario, dashboard, captured_logs):
        dashboard.load_all(PROJECT, TENANT)
        dashboard.set_phase_enabled(PHASE, False)
        dashboard.add_team_member(TeamMember("9000000044", "New"))
        dashboard.load_all(PROJECT, TENANT)
        assert dashboard.superseded_revisions == 2
        assert "incremental_deltas_superseded" in [r["message"] for r in captured_logs()]
        assert dashboard.is_phase_enabled(PHASE)

    def test_team_mutators(self, scenario, dashboard):
        dashboard.load_all(PROJECT, TENANT)
        member = TeamMember("9000000044", "New")
        assert dashboard.add_team_member(member)
        assert not dashboard.add_team_member(member)
        assert dashboard.remove_team_member("9000000044") == member
        assert dashboard.remove_team_member("9000000044") is None

    def test_concurrent_deltas_not_lost(self, scenario, dashboard):
        dashboard.load_all(PROJECT, TENANT)

        def approve():
            for _ in range(50):
                dashboard.update_expense_status(
                    "x", PHASE, "Set", ExpenseStatus.PENDING, ExpenseStatus.APPROVED, D("1")
                )

        threads = [threading.Thread(target=approve) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert dashboard.department_spent(PHASE, "Set") == D("2200")
        assert dashboard.snapshot.revision == 200


# =========================================================================
# Generations
# =========================================================================


class _BlockingAggregator:
    """Holds the first aggregation until released."""

    def __init__(self, inner: PhaseAggregator):
        self.inner = inner
        self.entered = threading.Event()
        self.release = threading.Event()
        self._calls = 0
        self._lock = threading.Lock()

    def aggregate(self, tenant_id, project_id):
        with self._lock:
            self._calls += 1
            first = self._calls == 1
        if first:
            self.entered.set()
            assert self.release.wait(5)
        return self.inner.aggregate(tenant_id, project_id)


class TestGenerations:
    """The most recently started load wins."""

    def test_stale_generation_discarded(self, scenario, store, captured_logs):
        blocking = _BlockingAggregator(PhaseAggregator(store))
        dashboard = DashboardStore(store, aggregator=blocking)
        results = {}

        slow = threading.Thread(target=lambda: results.setdefault("slow", dashboard.load_all(PROJECT, TENANT)))
        slow.start()
        assert blocking.entered.wait(5)

        store.update(paths.expense_path(TENANT, PROJECT, "exp-pending"), {"status": "APPROVED"})
        fresh = dashboard.load_all(PROJECT, TENANT)
        blocking.release.set()
        slow.join(5)

        assert fresh.generation == 2
        assert dashboard.snapshot is fresh
        assert results["slow"] is fresh
        assert dashboard.discarded_generations == 1
        assert dashboard.total_project_spent == D("4500")
        assert "stale_generation_discarded" in [r["message"] for r in captured_logs()]


class TestSortTeam:
    def test_admin_first_then_casefolded_name(self):
        members = [
            TeamMember("1", "bob"),
            TeamMember("2", "Alice"),
            TeamMember("h", "Zed", role=UserRole.BUSINESSHEAD),
        ]
        assert [m.name for m in sort_team(members)] == ["Zed", "Alice", "bob"]
