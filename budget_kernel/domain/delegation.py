"""
Delegation -- temporary approver state machine.

Responsibility:
    Stored-status transition table, window-derived display status, the
    staleness check, and validation of a proposed delegation window.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Invariants enforced:
    - Expired is terminal for stored status.
    - Display status is derived, never written back implicitly: a lapsed
      window displays as expired whatever the stored status; an accepted
      record displays as active once its start is reached.
    - ``needs_status_update`` is true exactly when display and stored
      statuses disagree.

Failure modes:
    - DelegationWindowError from ``validate_window``.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from budget_kernel.domain.dtos import DelegationStatus, TempApprover
from budget_kernel.exceptions import DelegationWindowError

DEFAULT_MAX_DELEGATION_DAYS = 30

DELEGATION_TRANSITIONS: dict[DelegationStatus, frozenset[DelegationStatus]] = {
    DelegationStatus.PENDING: frozenset({
        DelegationStatus.PENDING,
        DelegationStatus.ACCEPTED,
        DelegationStatus.REJECTED,
        DelegationStatus.EXPIRED,
    }),
    DelegationStatus.ACCEPTED: frozenset({
        DelegationStatus.PENDING,
        DelegationStatus.ACTIVE,
        DelegationStatus.EXPIRED,
    }),
    DelegationStatus.ACTIVE: frozenset({
        DelegationStatus.PENDING,
        DelegationStatus.EXPIRED,
    }),
    DelegationStatus.REJECTED: frozenset({
        DelegationStatus.PENDING,
        DelegationStatus.EXPIRED,
    }),
    DelegationStatus.EXPIRED: frozenset(),
}

# Statuses under which a record still counts as the project's live delegation.
LIVE_DELEGATION_STATUSES: frozenset[DelegationStatus] = frozenset({
    DelegationStatus.PENDING,
    DelegationStatus.ACCEPTED,
    DelegationStatus.ACTIVE,
})


def can_transition(current: DelegationStatus, target: DelegationStatus) -> bool:
    return target in DELEGATION_TRANSITIONS.get(current, frozenset())


def compute_display_status(record: TempApprover, now: datetime) -> DelegationStatus:
    if now > record.end_date:
        return DelegationStatus.EXPIRED
    if record.status is DelegationStatus.ACCEPTED and now >= record.start_date:
        return DelegationStatus.ACTIVE
    return record.status


def needs_status_update(record: TempApprover, now: datetime) -> bool:
    return compute_display_status(record, now) is not record.status


def grants_approval_authority(
    record: TempApprover | None,
    approver_id: str,
    now: datetime,
) -> bool:
    """True iff ``approver_id`` holds this record and it displays as active."""
    if record is None or record.approver_id != approver_id:
        return False
    return compute_display_status(record, now) is DelegationStatus.ACTIVE


def validate_window(
    start: datetime,
    end: datetime,
    now: datetime,
    max_days: int = DEFAULT_MAX_DELEGATION_DAYS,
) -> None:
    """
    Reject a delegation window that starts in the past, ends before it
    starts, or spans more than ``max_days``.

    Callers choose whether to validate; ``DelegationService.delegate`` stores
    what it is given.
    """
    if start.date() < now.date():
        raise DelegationWindowError("start date is in the past")
    if end <= start:
        raise DelegationWindowError("end date must be after start date")
    if end - start > timedelta(days=max_days):
        raise DelegationWindowError(f"window exceeds {max_days} days")
