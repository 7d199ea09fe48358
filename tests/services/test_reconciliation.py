"""
Tests for ReconciliationService (budget_services/reconciliation_service.py).

Invariants tested:
- Accepted extensions left with phaseUpdate "pending" are completed.
- Stale delegation statuses are persisted.
- Repairs are idempotent; one failure does not stop the rest.
"""

import pytest

from budget_kernel.db import paths
from budget_services.reconciliation_service import SYSTEM_ACTOR, ReconciliationService
from tests.conftest import PHASE, PROJECT, TENANT, messages, window


@pytest.fixture
def interrupted(seed):
    """A project with one accepted extension whose phase was never moved."""
    seed.project()
    seed.phase(end="30/06/2025")
    seed.request("r1", "15/07/2025", status="ACCEPTED", phaseUpdate="pending")
    return seed


def make(store, identity, clock):
    return ReconciliationService(store, identity, clock=clock)


class TestExtensionRepair:
    """Completing interrupted acceptances."""

    def test_finds_only_pending_markers(self, interrupted, store, manager, clock):
        interrupted.request("r2", "20/07/2025", status="ACCEPTED", phaseUpdate="committed")
        interrupted.request("r3", "20/07/2025", status="ACCEPTED")
        found = make(store, manager, clock).find_unapplied_extensions(PROJECT)
        assert [r.request_id for r in found] == ["r1"]

    def test_repair_completes_extension(self, interrupted, store, manager, clock, captured_logs):
        report = make(store, manager, clock).repair(PROJECT)
        assert report.extensions_repaired == ["r1"]
        assert report.failures == []
        assert store.get(paths.phase_path(TENANT, PROJECT, PHASE))["endDate"] == "15/07/2025"
        [entry] = store.query(paths.changes_collection(TENANT, PROJECT, PHASE))
        assert entry.data["changedBy"] == SYSTEM_ACTOR
        reconciled = next(r for r in captured_logs() if r["message"] == "project_reconciled")
        assert reconciled["actor_id"] == SYSTEM_ACTOR
        assert reconciled["extensions_repaired"] == 1

    def test_second_run_is_clean(self, interrupted, store, manager, clock):
        service = make(store, manager, clock)
        service.repair(PROJECT)
        assert service.repair(PROJECT).clean
        assert len(store.query(paths.changes_collection(TENANT, PROJECT, PHASE))) == 1

    def test_failure_reported_and_others_continue(self, interrupted, flaky, manager, clock, captured_logs):
        interrupted.phase("ph2", number=2, end="31/07/2025")
        interrupted.request("r2", "15/08/2025", status="ACCEPTED", phaseUpdate="pending", phase_id="ph2")
        flaky.fail("add", f"/phases/{PHASE}/changes")
        report = make(flaky, manager, clock).repair(PROJECT)
        assert report.failures == ["r1"]
        assert report.extensions_repaired == ["r2"]
        assert "extension_repair_failed" in messages(captured_logs())


class TestDelegationRepair:
    def test_past_window_expired(self, seed, store, manager, clock):
        seed.project()
        start, end = window(clock, -5, -1)
        seed.delegation("rec-1", start=start, end=end, status="accepted")
        report = make(store, manager, clock).repair(PROJECT)
        assert report.delegations_reconciled == ["rec-1"]
        assert store.get(paths.delegation_path(TENANT, PROJECT, "rec-1"))["status"] == "expired"
        assert "tempApproverRecordID" not in store.get(paths.project_path(TENANT, PROJECT))

    def test_current_status_untouched(self, seed, store, manager, clock):
        seed.project()
        seed.delegation("rec-1", start=clock.now(), end=clock.now())
        assert make(store, manager, clock).repair(PROJECT).clean


class TestSweep:
    def test_every_project_of_tenant(self, interrupted, seed, store, manager, clock):
        seed.project("proj-2")
        seed.project("elsewhere", managers=())
        reports = make(store, manager, clock).sweep()
        assert [r.project_id for r in reports] == ["elsewhere", PROJECT, "proj-2"]
        assert [len(r.extensions_repaired) for r in reports] == [0, 1, 0]
