"""
budget_services.delegation_service -- Temporary approver delegation.

Responsibility:
    Creates and supersedes delegation records, lets the delegate accept or
    reject, edits the window of the current record, removes a delegate, and
    persists the window-derived status when the stored one went stale.

Architecture position:
    Services. Every mutating operation is CONFIRM_THEN_APPLY: the document
    store is written first, then the Dashboard Store and the event bus.

Invariants enforced:
    - Superseding never edits a record in place: the previous record is
      marked expired (compare-and-set on its status), then a new pending
      record is created and the project's pointer moved to it.
    - Records are never deleted; removal expires the record and clears the
      project pointer.
    - Stored status changes follow DELEGATION_TRANSITIONS.
    - Editing the window of the current record resets it to pending.

Failure modes:
    - DelegationConflictError: the current record changed concurrently, or
      the requested transition is not allowed from its stored status.
    - DelegationNotFoundError: the project has no current record.
    - NotAuthorizedError: someone other than the delegate responds.
    - PartialCommitError: the record was written but the project pointer
      was not. ``reconcile_status`` or a repeated call repairs it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from budget_config import BudgetConfig
from budget_kernel.db import paths
from budget_kernel.db.document_store import DELETE_FIELD, DocumentStore
from budget_kernel.domain import delegation as rules
from budget_kernel.domain.clock import Clock, SystemClock
from budget_kernel.domain.consistency import ConsistencyMode, consistency_mode
from budget_kernel.domain.dtos import DelegationStatus, Project, TempApprover
from budget_kernel.domain.formats import coerce_timestamp, normalize_member_id
from budget_kernel.exceptions import (
    DelegationConflictError,
    DelegationNotFoundError,
    NotAuthorizedError,
    PartialCommitError,
    PreconditionFailedError,
    TransientError,
)
from budget_kernel.logging_config import LogContext, get_logger
from budget_kernel.selectors.project_selector import ProjectSelector
from budget_services.dashboard_store import DashboardStore
from budget_services.events import DelegationChanged, EventBus
from budget_services.identity import IdentityResolver

logger = get_logger("services.delegation")


def _aware(value: datetime, field: str) -> datetime:
    result = coerce_timestamp(value)
    if result is None:
        raise ValueError(f"{field} must be a datetime")
    return result


class DelegationService:
    """Temporary approver workflows for the caller's tenant."""

    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityResolver,
        dashboard: DashboardStore | None = None,
        events: EventBus | None = None,
        clock: Clock | None = None,
        config: BudgetConfig | None = None,
    ):
        self._store = store
        self._selector = ProjectSelector(store)
        self._identity = identity
        self._dashboard = dashboard
        self._events = events or EventBus()
        self._clock = clock or SystemClock()
        self._config = config or BudgetConfig()

    # =========================================================================
    # Reads
    # =========================================================================

    def current(self, project_id: str) -> TempApprover | None:
        caller = self._identity.resolve()
        project = self._selector.require_project(caller.tenant_id, project_id)
        return self._selector.current_delegation(project)

    def display_status(self, record: TempApprover) -> DelegationStatus:
        return rules.compute_display_status(record, self._clock.now_utc())

    def needs_status_update(self, record: TempApprover) -> bool:
        return rules.needs_status_update(record, self._clock.now_utc())

    def validate_window(self, start: datetime, end: datetime) -> None:
        """Raise DelegationWindowError for a window the UI must not submit."""
        rules.validate_window(
            _aware(start, "start"),
            _aware(end, "end"),
            self._clock.now_utc(),
            self._config.delegation.max_days,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_current(self, project: Project) -> TempApprover:
        record = self._selector.current_delegation(project)
        if record is None:
            raise DelegationNotFoundError(project.project_id, project.temp_approver_record_id)
        return record

    def _set_record_status(
        self,
        project: Project,
        record: TempApprover,
        target: DelegationStatus,
        extra: Mapping[str, Any] | None = None,
    ) -> datetime:
        """Compare-and-set the stored status of ``record``; returns the write time."""
        if not rules.can_transition(record.status, target):
            raise DelegationConflictError(
                project.project_id,
                record.record_id,
                f"cannot move from {record.status.value} to {target.value}",
            )
        path = paths.delegation_path(project.tenant_id, project.project_id, record.record_id)
        raw = self._store.get(path)
        if raw is None:
            raise DelegationNotFoundError(project.project_id, record.record_id)
        now = self._clock.now_utc()
        fields = {"status": target.value, "updatedAt": now, **(extra or {})}
        try:
            self._store.update(path, fields, expected={"status": raw.get("status")})
        except PreconditionFailedError:
            raise DelegationConflictError(
                project.project_id, record.record_id, "status changed concurrently"
            ) from None
        logger.info(
            "delegation_status_written",
            extra={
                "record_id": record.record_id,
                "from_status": record.status.value,
                "to_status": target.value,
            },
        )
        return now

    def _write_pointer(
        self,
        project: Project,
        operation: str,
        committed: str,
        fields: Mapping[str, Any],
    ) -> None:
        try:
            self._store.update(
                paths.project_path(project.tenant_id, project.project_id),
                {**fields, "updatedAt": self._clock.now_utc()},
            )
        except TransientError as exc:
            logger.error(
                "delegation_pointer_write_failed",
                extra={"operation": operation, "committed": committed},
            )
            raise PartialCommitError(operation, committed, "project pointer", str(exc)) from exc

    def _clear_pointer(self, project: Project, operation: str, committed: str) -> None:
        self._write_pointer(
            project,
            operation,
            committed,
            {"tempApproverID": DELETE_FIELD, "tempApproverRecordID": DELETE_FIELD},
        )

    def _apply(self, project: Project, record: TempApprover | None, changed: TempApprover) -> None:
        if self._dashboard is not None and self._dashboard.tracks(project.tenant_id, project.project_id):
            self._dashboard.set_delegation(record)
        self._events.publish(
            DelegationChanged(
                tenant_id=project.tenant_id,
                project_id=project.project_id,
                record_id=changed.record_id,
                approver_id=changed.approver_id,
                status=changed.status,
                occurred_at=self._clock.now_utc(),
            )
        )

    def _reload(self, project: Project, record_id: str) -> TempApprover:
        record = self._selector.get_delegation(project.tenant_id, project.project_id, record_id)
        if record is None:
            raise DelegationNotFoundError(project.project_id, record_id)
        return record

    # =========================================================================
    # Workflows
    # =========================================================================

    @consistency_mode(ConsistencyMode.CONFIRM_THEN_APPLY, "delegation.delegate")
    def delegate(
        self,
        project_id: str,
        approver_id: str,
        start: datetime,
        end: datetime,
    ) -> TempApprover:
        """
        Make ``approver_id`` the project's temporary approver.

        Any current record is expired first; the new record always starts
        pending. The window is stored as given; call ``validate_window``
        beforehand to enforce the UI rules.
        """
        caller = self._identity.resolve()
        with LogContext.bind(tenant_id=caller.tenant_id, project_id=project_id, actor_id=caller.user_id):
            project = self._selector.require_project(caller.tenant_id, project_id)
            approver = normalize_member_id(approver_id)
            if not approver:
                raise ValueError("approver_id is required")
            start_at = _aware(start, "start")
            end_at = _aware(end, "end")

            previous = self._selector.current_delegation(project)
            superseded = None
            if previous is not None and previous.status is not DelegationStatus.EXPIRED:
                self._set_record_status(project, previous, DelegationStatus.EXPIRED)
                superseded = previous.record_id

            now = self._clock.now_utc()
            try:
                record_id = self._store.add(
                    paths.delegations_collection(caller.tenant_id, project_id),
                    {
                        "approverId": approver,
                        "startDate": start_at,
                        "endDate": end_at,
                        "status": DelegationStatus.PENDING.value,
                        "approvedExpense": [],
                        "updatedAt": now,
                    },
                )
            except TransientError as exc:
                if superseded is None:
                    raise
                raise PartialCommitError(
                    "delegation.delegate", f"expiry of {superseded}", "new record", str(exc)
                ) from exc

            self._write_pointer(
                project,
                "delegation.delegate",
                f"record {record_id}",
                {"tempApproverID": approver, "tempApproverRecordID": record_id},
            )

            record = self._reload(project, record_id)
            logger.info(
                "delegation_created",
                extra={
                    "record_id": record_id,
                    "approver_id": approver,
                    "superseded_record_id": superseded,
                },
            )
            self._apply(project, record, record)
            return record

    @consistency_mode(ConsistencyMode.CONFIRM_THEN_APPLY, "delegation.respond")
    def respond(self, project_id: str, accept: bool, reason: str | None = None) -> TempApprover:
        """The delegate accepts or rejects the pending delegation."""
        caller = self._identity.resolve()
        with LogContext.bind(tenant_id=caller.tenant_id, project_id=project_id, actor_id=caller.user_id):
            project = self._selector.require_project(caller.tenant_id, project_id)
            record = self._require_current(project)
            if record.approver_id != caller.user_id:
                raise NotAuthorizedError(caller.user_id, "respond to this delegation")
            if record.status is not DelegationStatus.PENDING:
                raise DelegationConflictError(
                    project_id, record.record_id, f"record is {record.status.value}"
                )

            if accept:
                self._set_record_status(project, record, DelegationStatus.ACCEPTED)
                updated = self._reload(project, record.record_id)
                self._apply(project, updated, updated)
            else:
                text = (reason or "").strip()
                extra = {"rejectionReason": text} if text else None
                self._set_record_status(project, record, DelegationStatus.REJECTED, extra)
                self._clear_pointer(project, "delegation.respond", f"rejection of {record.record_id}")
                updated = self._reload(project, record.record_id)
                self._apply(project, None, updated)

            logger.info(
                "delegation_responded",
                extra={"record_id": record.record_id, "accepted": accept},
            )
            return updated

    @consistency_mode(ConsistencyMode.CONFIRM_THEN_APPLY, "delegation.save_details")
    def save_delegate_details(self, project_id: str, start: datetime, end: datetime) -> TempApprover:
        """Change the window of the current record; the delegate must accept again."""
        caller = self._identity.resolve()
        with LogContext.bind(tenant_id=caller.tenant_id, project_id=project_id, actor_id=caller.user_id):
            project = self._selector.require_project(caller.tenant_id, project_id)
            record = self._require_current(project)
            self._set_record_status(
                project,
                record,
                DelegationStatus.PENDING,
                {"startDate": _aware(start, "start"), "endDate": _aware(end, "end")},
            )
            updated = self._reload(project, record.record_id)
            self._apply(project, updated, updated)
            return updated

    @consistency_mode(ConsistencyMode.CONFIRM_THEN_APPLY, "delegation.remove")
    def remove_delegate(self, project_id: str) -> TempApprover | None:
        """Expire the current record and clear the pointer; the record stays for audit."""
        caller = self._identity.resolve()
        with LogContext.bind(tenant_id=caller.tenant_id, project_id=project_id, actor_id=caller.user_id):
            project = self._selector.require_project(caller.tenant_id, project_id)
            record = self._selector.current_delegation(project)
            if record is None:
                if project.temp_approver_id:
                    self._clear_pointer(project, "delegation.remove", "nothing")
                return None
            if record.status is not DelegationStatus.EXPIRED:
                self._set_record_status(project, record, DelegationStatus.EXPIRED)
            self._clear_pointer(project, "delegation.remove", f"expiry of {record.record_id}")
            updated = self._reload(project, record.record_id)
            logger.info("delegation_removed", extra={"record_id": record.record_id})
            self._apply(project, None, updated)
            return updated

    @consistency_mode(ConsistencyMode.CONFIRM_THEN_APPLY, "delegation.reconcile")
    def reconcile_status(self, project_id: str, tenant_id: str | None = None) -> TempApprover | None:
        """
        Persist the display status of the current record when it went stale.

        An expired record also clears the project pointer. Returns the
        current record after reconciliation, or None when there is none.
        """
        tenant = tenant_id or self._identity.resolve().tenant_id
        with LogContext.bind(tenant_id=tenant, project_id=project_id):
            project = self._selector.require_project(tenant, project_id)
            record = self._selector.current_delegation(project)
            if record is None:
                return None
            now = self._clock.now_utc()
            if not rules.needs_status_update(record, now):
                return record
            display = rules.compute_display_status(record, now)
            self._set_record_status(project, record, display)
            updated = self._reload(project, record.record_id)
            if display is DelegationStatus.EXPIRED:
                self._clear_pointer(project, "delegation.reconcile", f"expiry of {record.record_id}")
                self._apply(project, None, updated)
            else:
                self._apply(project, updated, updated)
            logger.info(
                "delegation_status_reconciled",
                extra={
                    "record_id": record.record_id,
                    "stored_status": record.status.value,
                    "display_status": display.value,
                },
            )
            return updated
