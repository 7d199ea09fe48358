"""
Tests for DelegationService (budget_services/delegation_service.py).

Invariants tested:
- Superseding expires the previous record and creates a new pending one;
  records are never edited into a new delegate or deleted.
- Only the delegate responds, and only to a pending record.
- Editing the window resets the record to pending.
- Removal expires the record and clears the project pointer.
- A record written without its pointer surfaces as PartialCommitError.
"""

from datetime import datetime

import pytest

from budget_kernel.db import paths
from budget_kernel.domain.dtos import DelegationStatus
from budget_kernel.exceptions import (
    DelegationConflictError,
    DelegationNotFoundError,
    DelegationWindowError,
    NotAuthorizedError,
    PartialCommitError,
)
from budget_services.delegation_service import DelegationService
from budget_services.events import DelegationChanged
from tests.conftest import DELEGATE_ID, PROJECT, TENANT, messages, window

OTHER_ID = "9000000055"


@pytest.fixture
def make_service(store, dashboard, events, clock, config):
    def _make(identity, backing=None):
        return DelegationService(
            backing or store, identity, dashboard=dashboard, events=events, clock=clock, config=config
        )

    return _make


def project_doc(store):
    return store.get(paths.project_path(TENANT, PROJECT))


def record_doc(store, record_id):
    return store.get(paths.delegation_path(TENANT, PROJECT, record_id))


def all_records(store):
    return store.query(paths.delegations_collection(TENANT, PROJECT))


# =========================================================================
# Delegate
# =========================================================================


class TestDelegate:
    """Creating and superseding delegations."""

    def test_first_delegation(self, seed, store, make_service, manager, clock, captured_logs):
        seed.project()
        start, end = window(clock, 1, 5)
        record = make_service(manager).delegate(PROJECT, "+91" + DELEGATE_ID, start, end)
        assert record.status is DelegationStatus.PENDING
        assert record.approver_id == DELEGATE_ID
        assert (record.start_date, record.end_date) == (start, end)
        doc = project_doc(store)
        assert doc["tempApproverID"] == DELEGATE_ID
        assert doc["tempApproverRecordID"] == record.record_id
        created = next(r for r in captured_logs() if r["message"] == "delegation_created")
        assert created["superseded_record_id"] is None

    def test_supersede_expires_previous(self, seed, store, make_service, manager, clock):
        seed.project()
        start, end = window(clock, -1, 5)
        seed.delegation("old", start=start, end=end, status="accepted")
        record = make_service(manager).delegate(PROJECT, OTHER_ID, *window(clock, 1, 3))
        assert record_doc(store, "old")["status"] == "expired"
        assert record_doc(store, "old")["approverId"] == DELEGATE_ID
        assert project_doc(store)["tempApproverRecordID"] == record.record_id
        assert len(all_records(store)) == 2

    def test_dashboard_and_event(self, seed, dashboard, events, make_service, manager, clock):
        seed.project()
        seed.phase()
        dashboard.load_all(PROJECT, TENANT)
        received = []
        events.subscribe(DelegationChanged, received.append)
        record = make_service(manager).delegate(PROJECT, DELEGATE_ID, *window(clock, 1, 3))
        assert dashboard.delegation == record
        assert received[0].record_id == record.record_id
        assert received[0].status is DelegationStatus.PENDING

    def test_empty_approver_rejected(self, seed, make_service, manager, clock):
        seed.project()
        with pytest.raises(ValueError):
            make_service(manager).delegate(PROJECT, "  ", *window(clock, 1, 3))

    def test_pointer_failure_is_partial_commit(self, seed, store, flaky, make_service, manager, clock, captured_logs):
        seed.project()
        flaky.fail("update", "/projects/")
        with pytest.raises(PartialCommitError) as exc_info:
            make_service(manager, backing=flaky).delegate(PROJECT, DELEGATE_ID, *window(clock, 1, 3))
        assert exc_info.value.operation == "delegation.delegate"
        assert exc_info.value.pending == "project pointer"
        assert len(all_records(store)) == 1
        assert "tempApproverRecordID" not in project_doc(store)
        assert "delegation_pointer_write_failed" in messages(captured_logs())

    def test_add_failure_after_expiry_is_partial_commit(self, seed, store, flaky, make_service, manager, clock):
        seed.project()
        seed.delegation("old", start=clock.now(), end=clock.now())
        flaky.fail("add", "/tempApprover")
        with pytest.raises(PartialCommitError) as exc_info:
            make_service(manager, backing=flaky).delegate(PROJECT, OTHER_ID, *window(clock, 1, 3))
        assert exc_info.value.committed == "expiry of old"
        assert record_doc(store, "old")["status"] == "expired"


class TestValidateWindow:
    def test_rejects_window_over_max_days(self, make_service, manager, clock):
        with pytest.raises(DelegationWindowError):
            make_service(manager).validate_window(*window(clock, 1, 40))

    def test_naive_datetime_read_as_utc(self, make_service, manager):
        make_service(manager).validate_window(datetime(2025, 6, 16, 9), datetime(2025, 6, 20, 9))


# =========================================================================
# Respond
# =========================================================================


class TestRespond:
    """The delegate's answer."""

    def test_accept(self, seed, store, make_service, delegate, clock):
        seed.project()
        seed.delegation("rec-1", start=clock.now(), end=clock.now())
        record = make_service(delegate).respond(PROJECT, accept=True)
        assert record.status is DelegationStatus.ACCEPTED
        assert project_doc(store)["tempApproverRecordID"] == "rec-1"

    def test_reject_clears_pointer_and_keeps_reason(self, seed, store, dashboard, make_service, delegate, clock):
        seed.project()
        seed.delegation("rec-1", start=clock.now(), end=clock.now())
        dashboard.load_all(PROJECT, TENANT)
        record = make_service(delegate).respond(PROJECT, accept=False, reason=" on leave ")
        assert record.status is DelegationStatus.REJECTED
        assert record.rejection_reason == "on leave"
        assert "tempApproverID" not in project_doc(store)
        assert dashboard.delegation is None

    def test_someone_else_cannot_respond(self, seed, make_service, manager, clock):
        seed.project()
        seed.delegation("rec-1", start=clock.now(), end=clock.now())
        with pytest.raises(NotAuthorizedError):
            make_service(manager).respond(PROJECT, accept=True)

    def test_only_pending_records(self, seed, make_service, delegate, clock):
        seed.project()
        seed.delegation("rec-1", start=clock.now(), end=clock.now(), status="accepted")
        with pytest.raises(DelegationConflictError):
            make_service(delegate).respond(PROJECT, accept=True)

    def test_no_current_record(self, seed, make_service, delegate):
        seed.project()
        with pytest.raises(DelegationNotFoundError):
            make_service(delegate).respond(PROJECT, accept=True)


# =========================================================================
# Edit, remove, reconcile
# =========================================================================


class TestSaveDelegateDetails:
    def test_new_window_resets_to_pending(self, seed, store, make_service, manager, clock):
        seed.project()
        seed.delegation("rec-1", start=clock.now(), end=clock.now(), status="accepted")
        start, end = window(clock, 2, 6)
        record = make_service(manager).save_delegate_details(PROJECT, start, end)
        assert record.status is DelegationStatus.PENDING
        assert (record.start_date, record.end_date) == (start, end)
        assert record.record_id == "rec-1"

    def test_expired_record_cannot_be_edited(self, seed, make_service, manager, clock):
        seed.project()
        seed.delegation("rec-1", start=clock.now(), end=clock.now(), status="expired")
        with pytest.raises(DelegationConflictError):
            make_service(manager).save_delegate_details(PROJECT, *window(clock, 1, 2))


class TestRemoveDelegate:
    def test_remove_expires_and_keeps_record(self, seed, store, make_service, manager, clock):
        seed.project()
        seed.delegation("rec-1", start=clock.now(), end=clock.now(), status="accepted")
        record = make_service(manager).remove_delegate(PROJECT)
        assert record.status is DelegationStatus.EXPIRED
        assert record_doc(store, "rec-1") is not None
        doc = project_doc(store)
        assert "tempApproverID" not in doc
        assert "tempApproverRecordID" not in doc

    def test_remove_without_delegate(self, seed, flaky, make_service, manager):
        seed.project()
        assert make_service(manager, backing=flaky).remove_delegate(PROJECT) is None
        assert flaky.writes() == []

    def test_dangling_pointer_cleared(self, seed, store, make_service, manager):
        seed.project(tempApproverID=DELEGATE_ID)
        assert make_service(manager).remove_delegate(PROJECT) is None
        assert "tempApproverID" not in project_doc(store)


class TestReconcileStatus:
    """Persisting the window-derived status."""

    def test_accepted_becomes_active(self, seed, store, make_service, manager, clock, captured_logs):
        seed.project()
        seed.delegation("rec-1", start=clock.now(), end=clock.now(), status="accepted")
        record = make_service(manager).reconcile_status(PROJECT)
        assert record.status is DelegationStatus.ACTIVE
        assert record_doc(store, "rec-1")["status"] == "active"
        assert "delegation_status_reconciled" in messages(captured_logs())

    def test_past_window_expires_and_clears_pointer(self, seed, store, make_service, manager, clock):
        seed.project()
        start, end = window(clock, -5, -1)
        seed.delegation("rec-1", start=start, end=end, status="accepted")
        record = make_service(manager).reconcile_status(PROJECT)
        assert record.status is DelegationStatus.EXPIRED
        assert "tempApproverRecordID" not in project_doc(store)

    def test_up_to_date_record_not_written(self, seed, flaky, make_service, manager, clock):
        seed.project()
        seed.delegation("rec-1", start=clock.now(), end=clock.now())
        record = make_service(manager, backing=flaky).reconcile_status(PROJECT)
        assert record.status is DelegationStatus.PENDING
        assert flaky.writes() == []
