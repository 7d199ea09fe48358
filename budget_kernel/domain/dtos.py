"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable records that flow between the read boundary
    (selectors), the pure budgeting/projection logic and the services:
    Project, Phase, Department, LineItem, Expense, TempApprover,
    PhaseExtensionRequest, PhaseTimelineChange and TeamMember, plus their
    status enums.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Decoding from stored documents lives in ``selectors``; encoding for
    writes lives in the services that own each write.

Invariants enforced:
    - Money is always ``Decimal`` (never float).
    - Stored calendar dates (phase start/end, extension dates) keep their
      raw ``dd/MM/yyyy`` string next to the parsed ``date`` so derived
      string comparisons stay exact.
    - Department keys on expenses are carried in canonical
      ``<phaseId>_<name>`` form; the raw stored key is kept for audit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Mapping


# =========================================================================
# Enums
# =========================================================================


class ExpenseStatus(str, Enum):
    """Expense lifecycle states. PENDING is the only non-terminal state."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


TERMINAL_EXPENSE_STATUSES: frozenset[ExpenseStatus] = frozenset({
    ExpenseStatus.APPROVED,
    ExpenseStatus.REJECTED,
})


class ExpenseDecision(str, Enum):
    """Decision an approver applies to a pending expense."""

    APPROVE = "approve"
    REJECT = "reject"

    @property
    def target_status(self) -> ExpenseStatus:
        if self is ExpenseDecision.APPROVE:
            return ExpenseStatus.APPROVED
        return ExpenseStatus.REJECTED


class ProjectStatus(str, Enum):
    IN_REVIEW = "IN_REVIEW"
    LOCKED = "LOCKED"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    STANDBY = "STANDBY"
    COMPLETED = "COMPLETED"
    DECLINED = "DECLINED"
    MAINTENANCE = "MAINTENANCE"
    ARCHIVE = "ARCHIVE"


class ContractorMode(str, Enum):
    LABOUR_ONLY = "Labour-Only"
    TURNKEY = "Turnkey"


class UserRole(str, Enum):
    BUSINESSHEAD = "BUSINESSHEAD"
    APPROVER = "APPROVER"
    USER = "USER"
    HEAD = "HEAD"


class DelegationStatus(str, Enum):
    """Stored (and display) status of a temporary approver record."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ACTIVE = "active"
    EXPIRED = "expired"


class RequestStatus(str, Enum):
    """Phase extension request lifecycle states."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class RequestDecision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class PhaseUpdateMarker(str, Enum):
    """Second-write marker carried by an accepted extension request."""

    PENDING = "pending"
    COMMITTED = "committed"


# =========================================================================
# Budget structure
# =========================================================================


@dataclass(frozen=True)
class LineItem:
    """A priced unit of a department budget: ``total = quantity * unit_price``."""

    item_type: str
    item: str
    spec: str
    quantity: Decimal
    uom: str
    unit_price: Decimal

    @property
    def total(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class Department:
    """A named budget bucket within a phase."""

    department_id: str
    name: str
    phase_id: str
    contractor_mode: ContractorMode = ContractorMode.LABOUR_ONLY
    line_items: tuple[LineItem, ...] = ()

    @property
    def budget(self) -> Decimal:
        return sum((item.total for item in self.line_items), Decimal("0"))


@dataclass(frozen=True)
class Phase:
    """
    A time-bounded stage of a project.

    ``start_raw`` / ``end_raw`` preserve the stored strings; ``start_date`` /
    ``end_date`` are their parsed values (None when absent or unparsable).
    ``legacy_departments`` is the inline ``display name -> budget`` map of
    older documents.
    """

    phase_id: str
    project_id: str
    name: str
    number: int
    start_raw: str | None = None
    end_raw: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    enabled: bool = True
    legacy_departments: Mapping[str, Decimal] = field(
        default_factory=lambda: MappingProxyType({})
    )


@dataclass(frozen=True)
class Project:
    project_id: str
    tenant_id: str
    name: str = ""
    status: ProjectStatus = ProjectStatus.ACTIVE
    is_suspended: bool = False
    team_member_ids: tuple[str, ...] = ()
    manager_ids: tuple[str, ...] = ()
    temp_approver_id: str | None = None
    temp_approver_record_id: str | None = None
    budget: Decimal = Decimal("0")


# =========================================================================
# Expenses
# =========================================================================


@dataclass(frozen=True)
class Expense:
    """
    An expense submitted against a phase/department.

    ``department_key`` is the canonical ``<phaseId>_<name>`` key (or the bare
    name when the expense carries no phase); ``department`` is the raw stored
    value.
    """

    expense_id: str
    project_id: str
    amount: Decimal
    status: ExpenseStatus
    department: str
    department_key: str
    phase_id: str | None = None
    phase_name: str | None = None
    is_anonymous: bool = False
    original_department: str | None = None
    is_admin: bool = False
    submitted_by: str | None = None
    approved_by: str | None = None
    rejected_by: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    remark: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EXPENSE_STATUSES


# =========================================================================
# Delegation
# =========================================================================


@dataclass(frozen=True)
class TempApprover:
    """A temporary approver delegation record."""

    record_id: str
    approver_id: str
    project_id: str
    start_date: datetime
    end_date: datetime
    status: DelegationStatus
    updated_at: datetime | None = None
    rejection_reason: str | None = None
    approved_expenses: tuple[str, ...] = ()


# =========================================================================
# Phase extension
# =========================================================================


@dataclass(frozen=True)
class PhaseExtensionRequest:
    request_id: str
    phase_id: str
    project_id: str
    extended_date: str
    reason: str
    status: RequestStatus
    user_id: str | None = None
    user_name: str | None = None
    user_phone: str | None = None
    reason_to_react: str | None = None
    phase_update: PhaseUpdateMarker | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class PhaseTimelineChange:
    """Audit entry written under ``phases/{phaseId}/changes`` on accept."""

    phase_id: str
    project_id: str
    previous_start: str | None
    previous_end: str | None
    new_start: str | None
    new_end: str | None
    changed_by: str
    request_id: str | None
    updated_at: datetime


# =========================================================================
# Team
# =========================================================================


@dataclass(frozen=True)
class TeamMember:
    """
    A project team member.

    ``member_id`` is the normalized phone number, or the e-mail address for
    business heads.
    """

    member_id: str
    name: str
    role: UserRole = UserRole.USER
    phone: str = ""
    email: str | None = None
    is_active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.BUSINESSHEAD
