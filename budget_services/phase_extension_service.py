"""
budget_services.phase_extension_service -- Phase extension requests.

Responsibility:
    Stakeholders submit a request to move a phase's end date; an approver
    accepts or rejects it. Acceptance moves the phase end date to the
    requested date and appends a timeline entry under ``changes``.
    Whether a phase "is extended" is always re-derived from the current
    end date and the accepted requests, never stored.

Architecture position:
    Services. ``resolve`` is CONFIRM_THEN_APPLY.

Invariants enforced:
    - PENDING -> ACCEPTED | REJECTED exactly once (compare-and-set on the
      request status).
    - An accepted request carries ``phaseUpdate``: "pending" is written with
      the status, "committed" only after the phase date and the timeline
      entry are written. A request left "pending" is what the
      reconciliation job repairs.
    - ``complete_extension`` is idempotent: it skips a phase date that
      already matches and a timeline entry that already exists.
    - Requested dates are stored in canonical ``dd/MM/yyyy`` form so the
      derived flag can compare strings exactly.

Failure modes:
    - ExtensionRequestNotFoundError / PhaseNotFoundError.
    - RequestAlreadyResolvedError: the request already left PENDING.
    - InvalidDateError: a submitted date is not ``dd/MM/yyyy``.
    - PartialCommitError: the request was accepted but the phase update did
      not complete.
"""

from __future__ import annotations

from datetime import datetime

from budget_kernel.db import paths
from budget_kernel.db.document_store import DocumentStore, FieldFilter
from budget_kernel.domain.clock import Clock, SystemClock
from budget_kernel.domain.consistency import ConsistencyMode, consistency_mode
from budget_kernel.domain.dtos import (
    Phase,
    PhaseExtensionRequest,
    PhaseTimelineChange,
    PhaseUpdateMarker,
    RequestDecision,
    RequestStatus,
)
from budget_kernel.domain.formats import format_stored_date, require_stored_date
from budget_kernel.domain.phase_schedule import extension_map, is_extended
from budget_kernel.exceptions import (
    ExtensionRequestNotFoundError,
    PartialCommitError,
    PreconditionFailedError,
    RequestAlreadyResolvedError,
    TransientError,
)
from budget_kernel.logging_config import LogContext, get_logger
from budget_kernel.selectors.project_selector import ProjectSelector
from budget_services.dashboard_store import DashboardStore
from budget_services.events import EventBus, PhaseExtended
from budget_services.identity import IdentityResolver

logger = get_logger("services.phase_extension")


def encode_change(change: PhaseTimelineChange) -> dict:
    return {
        "phaseId": change.phase_id,
        "projectId": change.project_id,
        "previousStartDate": change.previous_start,
        "previousEndDate": change.previous_end,
        "newStartDate": change.new_start,
        "newEndDate": change.new_end,
        "changedBy": change.changed_by,
        "requestID": change.request_id,
        "updatedAt": change.updated_at,
    }


class PhaseExtensionService:
    """Submit, resolve and derive phase extension requests."""

    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityResolver,
        dashboard: DashboardStore | None = None,
        events: EventBus | None = None,
        clock: Clock | None = None,
    ):
        self._store = store
        self._selector = ProjectSelector(store)
        self._identity = identity
        self._dashboard = dashboard
        self._events = events or EventBus()
        self._clock = clock or SystemClock()

    # =========================================================================
    # Reads
    # =========================================================================

    def _require_request(
        self, tenant_id: str, project_id: str, phase_id: str, request_id: str
    ) -> PhaseExtensionRequest:
        request = self._selector.get_request(tenant_id, project_id, phase_id, request_id)
        if request is None:
            raise ExtensionRequestNotFoundError(phase_id, request_id)
        return request

    def list_pending(self, project_id: str) -> list[PhaseExtensionRequest]:
        """Pending requests across all phases, newest first."""
        tenant_id = self._identity.resolve().tenant_id
        pending = []
        for phase in self._selector.list_phases(tenant_id, project_id):
            pending.extend(
                self._selector.list_requests(
                    tenant_id, project_id, phase.phase_id, RequestStatus.PENDING
                )
            )
        epoch = datetime.min
        return sorted(
            pending,
            key=lambda r: (r.created_at.replace(tzinfo=None) if r.created_at else epoch, r.request_id),
            reverse=True,
        )

    def is_extended(self, project_id: str, phase_id: str) -> bool:
        tenant_id = self._identity.resolve().tenant_id
        phase = self._selector.require_phase(tenant_id, project_id, phase_id)
        return is_extended(
            phase.end_raw, self._selector.list_requests(tenant_id, project_id, phase_id)
        )

    def extension_map(self, project_id: str) -> dict[str, bool]:
        tenant_id = self._identity.resolve().tenant_id
        phases = self._selector.list_phases(tenant_id, project_id)
        return extension_map(
            phases,
            {
                p.phase_id: self._selector.list_requests(tenant_id, project_id, p.phase_id)
                for p in phases
            },
        )

    # =========================================================================
    # Submission
    # =========================================================================

    def submit(
        self,
        project_id: str,
        phase_id: str,
        extended_date: str,
        reason: str,
        user_name: str | None = None,
        user_phone: str | None = None,
    ) -> PhaseExtensionRequest:
        """Create a PENDING extension request for a phase."""
        caller = self._identity.resolve()
        tenant_id = caller.tenant_id
        with LogContext.bind(tenant_id=tenant_id, project_id=project_id, actor_id=caller.user_id):
            self._selector.require_phase(tenant_id, project_id, phase_id)
            canonical = format_stored_date(require_stored_date(extended_date, "extendedDate"))
            now = self._clock.now_utc()
            data = {
                "phaseId": phase_id,
                "projectId": project_id,
                "extendedDate": canonical,
                "reason": (reason or "").strip(),
                "status": RequestStatus.PENDING.value,
                "userID": caller.user_id,
                "createdAt": now,
                "updatedAt": now,
            }
            name = user_name or caller.display_name
            if name:
                data["userName"] = name
            if user_phone:
                data["userPhoneNumber"] = user_phone
            request_id = self._store.add(
                paths.requests_collection(tenant_id, project_id, phase_id), data
            )
            logger.info(
                "extension_request_submitted",
                extra={"phase_id": phase_id, "request_id": request_id, "extended_date": canonical},
            )
            return self._require_request(tenant_id, project_id, phase_id, request_id)

    # =========================================================================
    # Resolution
    # =========================================================================

    @consistency_mode(ConsistencyMode.CONFIRM_THEN_APPLY, "extension.resolve")
    def resolve(
        self,
        project_id: str,
        phase_id: str,
        request_id: str,
        decision: RequestDecision,
        reason: str | None = None,
    ) -> PhaseExtensionRequest:
        caller = self._identity.resolve()
        tenant_id = caller.tenant_id
        with LogContext.bind(tenant_id=tenant_id, project_id=project_id, actor_id=caller.user_id):
            phase = self._selector.require_phase(tenant_id, project_id, phase_id)
            request = self._require_request(tenant_id, project_id, phase_id, request_id)
            if request.status is not RequestStatus.PENDING:
                raise RequestAlreadyResolvedError(request_id, request.status.value)

            path = paths.request_path(tenant_id, project_id, phase_id, request_id)
            raw = self._store.get(path) or {}
            accept = decision is RequestDecision.ACCEPT
            fields = {
                "status": (RequestStatus.ACCEPTED if accept else RequestStatus.REJECTED).value,
                "updatedAt": self._clock.now_utc(),
            }
            text = (reason or "").strip()
            if text:
                fields["reasonToReact"] = text
            if accept:
                fields["phaseUpdate"] = PhaseUpdateMarker.PENDING.value

            try:
                self._store.update(path, fields, expected={"status": raw.get("status")})
            except PreconditionFailedError:
                current = self._require_request(tenant_id, project_id, phase_id, request_id)
                raise RequestAlreadyResolvedError(request_id, current.status.value) from None

            logger.info(
                "extension_request_resolved",
                extra={"phase_id": phase_id, "request_id": request_id, "decision": decision.value},
            )
            if not accept:
                return self._require_request(tenant_id, project_id, phase_id, request_id)

            try:
                updated_phase = self.complete_extension(
                    tenant_id, project_id, phase_id, request_id, caller.user_id
                )
            except TransientError as exc:
                logger.error(
                    "extension_phase_update_failed",
                    extra={"phase_id": phase_id, "request_id": request_id},
                )
                raise PartialCommitError(
                    "extension.resolve", f"acceptance of {request_id}", "phase end date", str(exc)
                ) from exc

            self._events.publish(
                PhaseExtended(
                    tenant_id=tenant_id,
                    project_id=project_id,
                    phase_id=phase_id,
                    request_id=request_id,
                    previous_end=phase.end_raw,
                    new_end=request.extended_date,
                    actor_id=caller.user_id,
                    occurred_at=self._clock.now_utc(),
                )
            )
            logger.debug("extension_applied", extra={"new_end": updated_phase.end_raw})
            return self._require_request(tenant_id, project_id, phase_id, request_id)

    def complete_extension(
        self,
        tenant_id: str,
        project_id: str,
        phase_id: str,
        request_id: str,
        changed_by: str,
    ) -> Phase:
        """
        Second half of an acceptance: phase end date, timeline entry, marker.

        Safe to repeat. Returns the phase as stored afterwards.
        """
        phase = self._selector.require_phase(tenant_id, project_id, phase_id)
        request = self._require_request(tenant_id, project_id, phase_id, request_id)
        now = self._clock.now_utc()
        new_end = request.extended_date.strip()

        # Timeline entry before the date: a retry only skips work once the date matches.
        if (phase.end_raw or "").strip() != new_end:
            changes = paths.changes_collection(tenant_id, project_id, phase_id)
            logged = self._store.query(changes, [FieldFilter("requestID", "==", request_id)])
            if not logged:
                change = PhaseTimelineChange(
                    phase_id=phase_id,
                    project_id=project_id,
                    previous_start=phase.start_raw,
                    previous_end=phase.end_raw,
                    new_start=phase.start_raw,
                    new_end=new_end,
                    changed_by=changed_by,
                    request_id=request_id,
                    updated_at=now,
                )
                self._store.add(changes, encode_change(change))
            self._store.update(
                paths.phase_path(tenant_id, project_id, phase_id),
                {"endDate": new_end, "updatedAt": now},
            )

        self._store.update(
            paths.request_path(tenant_id, project_id, phase_id, request_id),
            {"phaseUpdate": PhaseUpdateMarker.COMMITTED.value},
        )
        updated = self._selector.require_phase(tenant_id, project_id, phase_id)
        logger.info(
            "phase_end_date_extended",
            extra={
                "phase_id": phase_id,
                "request_id": request_id,
                "previous_end": phase.end_raw,
                "new_end": updated.end_raw,
            },
        )

        if self._dashboard is not None and self._dashboard.tracks(tenant_id, project_id):
            requests = self._selector.list_requests(tenant_id, project_id, phase_id)
            self._dashboard.apply_phase_end_date(updated, is_extended(updated.end_raw, requests))
        return updated
