"""
Projection -- immutable dashboard snapshot and its pure reducers.

Responsibility:
    Holds one generation of a project's dashboard aggregate (phases,
    per-phase budgets and spend, the anonymous "Other" bucket, enablement,
    extension flags, team and delegation) as an immutable value, and
    expresses every incremental mutation as a pure function
    ``snapshot -> snapshot``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O. The stateful holder
    is ``budget_services.dashboard_store.DashboardStore``.

Invariants enforced:
    - ``total_project_budget == sum(b.total_budget for b in phase_budget)``
      and ``total_project_spent == sum(b.spent ...)`` after every reducer.
    - ``remaining = total_budget - spent`` is never clamped.
    - Department spent buckets are keyed by the canonical
      ``<phaseId>_<name>`` key only.
    - Anonymous transitions move the phase spent and the "Other" bucket,
      never a named department bucket.
    - Zero-valued spend buckets are dropped, so a transition followed by its
      inverse yields a snapshot equal to the original apart from
      ``revision``.
    - ``team_member_ids`` never holds duplicates.
    - ``team_members`` holds exactly one entry per id in ``team_member_ids``.
    - ``generation`` identifies the bulk load a snapshot descends from;
      ``revision`` counts incremental deltas applied since that load.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, Mapping

from budget_kernel.domain.dtos import (
    Department,
    ExpenseStatus,
    Phase,
    TeamMember,
    TempApprover,
)
from budget_kernel.domain.formats import (
    canonical_department_key,
    lookup_department_spent,
)

ZERO = Decimal("0")


def _frozen(mapping: Mapping | None = None) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


def _frozen_nested(mapping: Mapping[str, Mapping] | None = None) -> Mapping:
    return MappingProxyType({k: _frozen(v) for k, v in (mapping or {}).items()})


@dataclass(frozen=True)
class PhaseBudget:
    total_budget: Decimal = ZERO
    spent: Decimal = ZERO

    @property
    def remaining(self) -> Decimal:
        return self.total_budget - self.spent


@dataclass(frozen=True)
class DepartmentTotal:
    """Budget and spend of one department name rolled up across phases."""

    budget: Decimal = ZERO
    spent: Decimal = ZERO

    @property
    def remaining(self) -> Decimal:
        return self.budget - self.spent


@dataclass(frozen=True)
class DashboardSnapshot:
    project_id: str | None = None
    tenant_id: str | None = None
    generation: int = 0
    revision: int = 0
    phases: tuple[Phase, ...] = ()
    departments: Mapping[str, tuple[Department, ...]] = field(default_factory=_frozen)
    phase_enabled: Mapping[str, bool] = field(default_factory=_frozen)
    phase_budget: Mapping[str, PhaseBudget] = field(default_factory=_frozen)
    phase_department_budget: Mapping[str, Mapping[str, Decimal]] = field(default_factory=_frozen)
    phase_department_spent: Mapping[str, Mapping[str, Decimal]] = field(default_factory=_frozen)
    phase_anonymous_expense: Mapping[str, Decimal] = field(default_factory=_frozen)
    phase_extended: Mapping[str, bool] = field(default_factory=_frozen)
    unattributed_spent: Decimal = ZERO
    team_members: tuple[TeamMember, ...] = ()
    team_member_ids: tuple[str, ...] = ()
    delegation: TempApprover | None = None
    total_project_budget: Decimal = ZERO
    total_project_spent: Decimal = ZERO
    department_totals: Mapping[str, DepartmentTotal] = field(default_factory=_frozen)

    @property
    def total_project_remaining(self) -> Decimal:
        return self.total_project_budget - self.total_project_spent

    def department_spent(self, phase_id: str, department: str) -> Decimal:
        return lookup_department_spent(
            self.phase_department_spent.get(phase_id, {}), phase_id, department
        )

    def anonymous_expense(self, phase_id: str) -> Decimal:
        return self.phase_anonymous_expense.get(phase_id, ZERO)

    def is_phase_enabled(self, phase_id: str) -> bool:
        return self.phase_enabled.get(phase_id, True)

    def is_phase_extended(self, phase_id: str) -> bool:
        return self.phase_extended.get(phase_id, False)

    def phase(self, phase_id: str) -> Phase | None:
        return next((p for p in self.phases if p.phase_id == phase_id), None)


def empty_snapshot(project_id: str | None = None, tenant_id: str | None = None) -> DashboardSnapshot:
    return DashboardSnapshot(project_id=project_id, tenant_id=tenant_id)


def build_snapshot(
    *,
    project_id: str,
    tenant_id: str,
    generation: int,
    phases: Iterable[Phase],
    departments: Mapping[str, tuple[Department, ...]],
    phase_budget: Mapping[str, PhaseBudget],
    phase_department_budget: Mapping[str, Mapping[str, Decimal]],
    phase_department_spent: Mapping[str, Mapping[str, Decimal]],
    phase_anonymous_expense: Mapping[str, Decimal],
    phase_extended: Mapping[str, bool],
    unattributed_spent: Decimal,
    team_members: Iterable[TeamMember],
    delegation: TempApprover | None,
) -> DashboardSnapshot:
    """Assemble one generation's snapshot and compute its totals."""
    phases = tuple(phases)
    members = _dedupe_members(team_members)
    snapshot = DashboardSnapshot(
        project_id=project_id,
        tenant_id=tenant_id,
        generation=generation,
        revision=0,
        phases=phases,
        departments=_frozen(departments),
        phase_enabled=_frozen({p.phase_id: p.enabled for p in phases}),
        phase_budget=_frozen(phase_budget),
        phase_department_budget=_frozen_nested(phase_department_budget),
        phase_department_spent=_frozen_nested(_nonzero_buckets(phase_department_spent)),
        phase_anonymous_expense=_frozen(
            {k: v for k, v in phase_anonymous_expense.items() if v != ZERO}
        ),
        phase_extended=_frozen(phase_extended),
        unattributed_spent=unattributed_spent,
        team_members=members,
        team_member_ids=tuple(m.member_id for m in members),
        delegation=delegation,
    )
    return recalculate_totals(snapshot)


def _nonzero_buckets(
    buckets_by_phase: Mapping[str, Mapping[str, Decimal]],
) -> dict[str, dict[str, Decimal]]:
    result: dict[str, dict[str, Decimal]] = {}
    for phase_id, buckets in buckets_by_phase.items():
        kept = {key: value for key, value in buckets.items() if value != ZERO}
        if kept:
            result[phase_id] = kept
    return result


def _dedupe_members(members: Iterable[TeamMember]) -> tuple[TeamMember, ...]:
    seen: dict[str, TeamMember] = {}
    for member in members:
        seen.setdefault(member.member_id, member)
    return tuple(seen.values())


# =========================================================================
# Reducers
# =========================================================================


def recalculate_totals(snapshot: DashboardSnapshot) -> DashboardSnapshot:
    """Recompute project totals strictly from the phase budget map."""
    total_budget = sum((b.total_budget for b in snapshot.phase_budget.values()), ZERO)
    total_spent = sum((b.spent for b in snapshot.phase_budget.values()), ZERO)

    rollup: dict[str, DepartmentTotal] = {}
    for phase_id, budgets in snapshot.phase_department_budget.items():
        buckets = snapshot.phase_department_spent.get(phase_id, {})
        for name, budget in budgets.items():
            current = rollup.get(name, DepartmentTotal())
            rollup[name] = DepartmentTotal(
                budget=current.budget + budget,
                spent=current.spent + lookup_department_spent(buckets, phase_id, name),
            )

    return replace(
        snapshot,
        total_project_budget=total_budget,
        total_project_spent=total_spent,
        department_totals=_frozen(rollup),
    )


def _shift(mapping: Mapping[str, Decimal], key: str, delta: Decimal) -> Mapping[str, Decimal]:
    updated = dict(mapping)
    value = updated.get(key, ZERO) + delta
    if value == ZERO:
        updated.pop(key, None)
    else:
        updated[key] = value
    return _frozen(updated)


def spend_delta(
    old_status: ExpenseStatus,
    new_status: ExpenseStatus,
    amount: Decimal,
) -> Decimal:
    """Signed change to spent for a status transition."""
    was_approved = old_status is ExpenseStatus.APPROVED
    is_approved = new_status is ExpenseStatus.APPROVED
    if is_approved and not was_approved:
        return amount
    if was_approved and not is_approved:
        return -amount
    return ZERO


def apply_expense_transition(
    snapshot: DashboardSnapshot,
    *,
    phase_id: str | None,
    department: str,
    old_status: ExpenseStatus,
    new_status: ExpenseStatus,
    amount: Decimal,
    is_anonymous: bool = False,
) -> DashboardSnapshot:
    """
    Apply one expense status transition to the spend aggregates.

    Only transitions into or out of APPROVED move money. A phase the
    snapshot does not hold is left alone; an expense without a phase moves
    the unattributed total.
    """
    delta = spend_delta(old_status, new_status, amount)
    if delta == ZERO:
        return snapshot

    if phase_id is None:
        return replace(
            snapshot,
            unattributed_spent=snapshot.unattributed_spent + delta,
            revision=snapshot.revision + 1,
        )

    budget = snapshot.phase_budget.get(phase_id)
    if budget is None:
        return snapshot

    phase_budget = dict(snapshot.phase_budget)
    phase_budget[phase_id] = PhaseBudget(budget.total_budget, budget.spent + delta)

    changes: dict = {"phase_budget": _frozen(phase_budget)}
    if is_anonymous:
        changes["phase_anonymous_expense"] = _shift(
            snapshot.phase_anonymous_expense, phase_id, delta
        )
    else:
        buckets = dict(snapshot.phase_department_spent)
        shifted = _shift(
            buckets.get(phase_id, {}),
            canonical_department_key(phase_id, department),
            delta,
        )
        if shifted:
            buckets[phase_id] = shifted
        else:
            buckets.pop(phase_id, None)
        changes["phase_department_spent"] = _frozen(buckets)

    return recalculate_totals(
        replace(snapshot, revision=snapshot.revision + 1, **changes)
    )


def add_team_member(
    snapshot: DashboardSnapshot, member: TeamMember
) -> tuple[DashboardSnapshot, bool]:
    """Append a member; returns whether the snapshot changed."""
    if member.member_id in snapshot.team_member_ids:
        return snapshot, False
    return (
        replace(
            snapshot,
            team_members=snapshot.team_members + (member,),
            team_member_ids=snapshot.team_member_ids + (member.member_id,),
            revision=snapshot.revision + 1,
        ),
        True,
    )


def remove_team_member(
    snapshot: DashboardSnapshot, member_id: str
) -> tuple[DashboardSnapshot, TeamMember | None]:
    """Drop a member; returns the removed member, or None if absent."""
    if member_id not in snapshot.team_member_ids:
        return snapshot, None
    removed = next((m for m in snapshot.team_members if m.member_id == member_id), None)
    if removed is None:
        removed = TeamMember(member_id=member_id, name="")
    return (
        replace(
            snapshot,
            team_members=tuple(m for m in snapshot.team_members if m.member_id != member_id),
            team_member_ids=tuple(i for i in snapshot.team_member_ids if i != member_id),
            revision=snapshot.revision + 1,
        ),
        removed,
    )


def confirm_team_member_ids(
    snapshot: DashboardSnapshot,
    member_ids: Iterable[str],
    known: Iterable[TeamMember] = (),
) -> DashboardSnapshot:
    """
    Replace the id list with the authoritative stored list.

    ``team_members`` is rebuilt to cover exactly those ids: entries already
    held are kept, missing ones come from ``known`` or get the same
    placeholder a full load uses for an unknown user.
    """
    ids = tuple(dict.fromkeys(member_ids))
    held = {m.member_id: m for m in snapshot.team_members}
    if ids == snapshot.team_member_ids and set(ids) == set(held):
        return snapshot
    for member in known:
        held.setdefault(member.member_id, member)
    keep = set(ids)
    members = [m for m in snapshot.team_members if m.member_id in keep]
    present = {m.member_id for m in members}
    members.extend(
        held.get(member_id) or TeamMember(member_id=member_id, name=member_id)
        for member_id in ids
        if member_id not in present
    )
    return replace(
        snapshot,
        team_member_ids=ids,
        team_members=tuple(members),
        revision=snapshot.revision + 1,
    )


def set_phase_enabled(
    snapshot: DashboardSnapshot, phase_id: str, enabled: bool
) -> DashboardSnapshot:
    if snapshot.phase_enabled.get(phase_id) is enabled:
        return snapshot
    flags = dict(snapshot.phase_enabled)
    flags[phase_id] = enabled
    phases = tuple(
        replace(p, enabled=enabled) if p.phase_id == phase_id else p
        for p in snapshot.phases
    )
    return replace(
        snapshot,
        phases=phases,
        phase_enabled=_frozen(flags),
        revision=snapshot.revision + 1,
    )


def set_phase_end_date(
    snapshot: DashboardSnapshot,
    phase: Phase,
    extended: bool,
) -> DashboardSnapshot:
    """Swap in a phase whose end date changed and refresh its extended flag."""
    if snapshot.phase(phase.phase_id) is None:
        return snapshot
    flags = dict(snapshot.phase_extended)
    flags[phase.phase_id] = extended
    return replace(
        snapshot,
        phases=tuple(phase if p.phase_id == phase.phase_id else p for p in snapshot.phases),
        phase_extended=_frozen(flags),
        revision=snapshot.revision + 1,
    )


def set_delegation(
    snapshot: DashboardSnapshot, delegation: TempApprover | None
) -> DashboardSnapshot:
    if snapshot.delegation == delegation:
        return snapshot
    return replace(snapshot, delegation=delegation, revision=snapshot.revision + 1)
