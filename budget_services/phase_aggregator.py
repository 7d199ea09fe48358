"""
budget_services.phase_aggregator -- Phase budget and spend aggregation.

Responsibility:
    For one project, loads every phase (ordered by phase number), each
    phase's departments, and the project's APPROVED expenses (once, not per
    phase), then computes per phase: total budget, spent, remaining,
    per-department spent and the anonymous "Other" amount.

Architecture position:
    Services. Reads through ProjectSelector; arithmetic comes from
    ``budget_kernel.domain.budgeting`` and key handling from
    ``budget_kernel.domain.formats``.

Invariants enforced:
    - Phase total budget uses normalized departments when the phase has any,
      otherwise the legacy inline map, never both.
    - Named department buckets exclude anonymous expenses; anonymous
      approved expenses sum into the phase's "Other" amount.
    - Phase spent = all approved expenses attributed to the phase (named
      departments plus Other). Remaining is not clamped.
    - Expenses attributed to no phase, or to a phase that no longer exists,
      are counted as unattributed spend.

Failure modes:
    - A department load failure for one phase is logged and that phase falls
      back to its legacy map; other phases are unaffected.
    - A failure listing phases or approved expenses propagates; the caller
      keeps whatever it had before.
"""

from __future__ import annotations

import contextvars
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, Mapping

from budget_kernel.db.document_store import DocumentStore
from budget_kernel.domain.budgeting import department_budgets, phase_total_budget
from budget_kernel.domain.dtos import Department, Expense, ExpenseStatus, Phase
from budget_kernel.domain.formats import lookup_department_spent
from budget_kernel.exceptions import TransientError
from budget_kernel.logging_config import get_logger
from budget_kernel.selectors.project_selector import ProjectSelector

logger = get_logger("services.phase_aggregator")

ZERO = Decimal("0")


@dataclass(frozen=True)
class PhaseSummary:
    phase: Phase
    departments: tuple[Department, ...]
    department_budgets: Mapping[str, Decimal]
    total_budget: Decimal
    spent: Decimal
    department_spent: Mapping[str, Decimal]
    anonymous_spent: Decimal
    used_legacy_departments: bool = False

    @property
    def phase_id(self) -> str:
        return self.phase.phase_id

    @property
    def remaining(self) -> Decimal:
        return self.total_budget - self.spent

    def spent_for(self, department: str) -> Decimal:
        return lookup_department_spent(self.department_spent, self.phase_id, department)


@dataclass(frozen=True)
class ProjectAggregate:
    tenant_id: str
    project_id: str
    phases: tuple[PhaseSummary, ...] = ()
    unattributed_spent: Decimal = ZERO
    department_load_failures: tuple[str, ...] = field(default=())

    def phase(self, phase_id: str) -> PhaseSummary | None:
        return next((s for s in self.phases if s.phase_id == phase_id), None)

    @property
    def total_budget(self) -> Decimal:
        return sum((s.total_budget for s in self.phases), ZERO)

    @property
    def total_spent(self) -> Decimal:
        return sum((s.spent for s in self.phases), ZERO)


@dataclass
class ExpenseBuckets:
    """Approved expense amounts bucketed by phase, then department key."""

    department: dict[str, dict[str, Decimal]] = field(default_factory=dict)
    anonymous: dict[str, Decimal] = field(default_factory=dict)
    unattributed: Decimal = ZERO


def bucket_approved_expenses(
    expenses: Iterable[Expense],
    phase_ids: Iterable[str],
) -> ExpenseBuckets:
    """Sum approved expenses into department, anonymous and unattributed buckets."""
    known = set(phase_ids)
    buckets = ExpenseBuckets()
    for expense in expenses:
        if expense.status is not ExpenseStatus.APPROVED:
            continue
        phase_id = expense.phase_id
        if phase_id is None or phase_id not in known:
            buckets.unattributed += expense.amount
            continue
        if expense.is_anonymous or not expense.department:
            buckets.anonymous[phase_id] = buckets.anonymous.get(phase_id, ZERO) + expense.amount
            continue
        phase_buckets = buckets.department.setdefault(phase_id, {})
        key = expense.department_key
        phase_buckets[key] = phase_buckets.get(key, ZERO) + expense.amount
    return buckets


def summarize_phase(
    phase: Phase,
    departments: tuple[Department, ...],
    buckets: ExpenseBuckets,
) -> PhaseSummary:
    department_spent = dict(buckets.department.get(phase.phase_id, {}))
    anonymous = buckets.anonymous.get(phase.phase_id, ZERO)
    return PhaseSummary(
        phase=phase,
        departments=departments,
        department_budgets=MappingProxyType(
            department_budgets(departments, phase.legacy_departments)
        ),
        total_budget=phase_total_budget(departments, phase.legacy_departments),
        spent=sum(department_spent.values(), ZERO) + anonymous,
        department_spent=MappingProxyType(department_spent),
        anonymous_spent=anonymous,
        used_legacy_departments=not departments,
    )


class PhaseAggregator:
    """Loads and aggregates one project's phases."""

    def __init__(self, store: DocumentStore, max_workers: int = 8):
        self._selector = ProjectSelector(store)
        self._max_workers = max_workers

    def _load_departments(
        self, tenant_id: str, project_id: str, phase: Phase
    ) -> tuple[tuple[Department, ...], bool]:
        try:
            return tuple(self._selector.list_departments(tenant_id, project_id, phase.phase_id)), False
        except TransientError:
            logger.warning(
                "department_load_failed_using_legacy",
                extra={
                    "phase_id": phase.phase_id,
                    "legacy_departments": len(phase.legacy_departments),
                },
                exc_info=True,
            )
            return (), True

    def aggregate(self, tenant_id: str, project_id: str) -> ProjectAggregate:
        phases = self._selector.list_phases(tenant_id, project_id)

        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            expenses_future: Future = pool.submit(
                contextvars.copy_context().run,
                self._selector.list_expenses,
                tenant_id,
                project_id,
                ExpenseStatus.APPROVED,
            )
            department_futures = {
                phase.phase_id: pool.submit(
                    contextvars.copy_context().run,
                    self._load_departments,
                    tenant_id,
                    project_id,
                    phase,
                )
                for phase in phases
            }

        expenses = expenses_future.result()
        buckets = bucket_approved_expenses(expenses, (p.phase_id for p in phases))

        summaries = []
        failures = []
        for phase in phases:
            departments, failed = department_futures[phase.phase_id].result()
            if failed:
                failures.append(phase.phase_id)
            summaries.append(summarize_phase(phase, departments, buckets))

        aggregate = ProjectAggregate(
            tenant_id=tenant_id,
            project_id=project_id,
            phases=tuple(summaries),
            unattributed_spent=buckets.unattributed,
            department_load_failures=tuple(failures),
        )
        logger.info(
            "phases_aggregated",
            extra={
                "phase_count": len(summaries),
                "approved_expenses": len(expenses),
                "total_budget": aggregate.total_budget,
                "total_spent": aggregate.total_spent,
                "department_load_failures": len(failures),
            },
        )
        return aggregate
