"""
budget_services.dashboard_store -- In-memory dashboard projection per project.

Responsibility:
    Owns the current DashboardSnapshot for one open project view. Bulk
    loads rebuild it from the document store; workflows apply incremental
    mutations through the pure reducers in ``budget_kernel.domain.projection``.
    Display code reads through the synchronous accessors.

Architecture position:
    Services. Injected into the workflow services; one instance per
    session or request context, never a module global.

Invariants enforced:
    - ``load_all`` fans out (phase aggregation, team, delegation, extension
      flags), joins every task, and only then swaps in the new snapshot in
      one reference assignment. Readers see one generation at a time.
    - Generation numbers are issued when a load starts. A load whose
      generation is older than the committed snapshot's is discarded, so
      the most recently started load wins.
    - Incremental deltas applied since the last commit are counted and
      logged when a load replaces them.
    - Every mutation is a read-reduce-swap under one lock; no update is lost
      between two concurrent mutators.

Failure modes:
    - A failed phase aggregation (phases or approved expenses unreadable)
      propagates and leaves the current snapshot untouched.
    - Transient failures loading team, delegation or extension flags keep
      the previous values for the same project and are logged.
"""

from __future__ import annotations

import contextvars
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from decimal import Decimal
from typing import Callable, Iterable, TypeVar

from budget_config import BudgetConfig
from budget_kernel.db.document_store import DocumentStore
from budget_kernel.domain import projection
from budget_kernel.domain.dtos import (
    ExpenseStatus,
    Phase,
    TeamMember,
    TempApprover,
    UserRole,
)
from budget_kernel.domain.phase_schedule import extension_map
from budget_kernel.domain.projection import DashboardSnapshot, PhaseBudget
from budget_kernel.exceptions import TransientError
from budget_kernel.logging_config import LogContext, get_logger
from budget_kernel.selectors.project_selector import ProjectSelector
from budget_services.phase_aggregator import PhaseAggregator, ProjectAggregate

logger = get_logger("services.dashboard_store")

T = TypeVar("T")


def sort_team(members: list[TeamMember]) -> list[TeamMember]:
    """Admins first, then by name."""
    return sorted(members, key=lambda m: (m.role is not UserRole.BUSINESSHEAD, m.name.casefold()))


class DashboardStore:
    """Holder of the current dashboard snapshot for one project view."""

    def __init__(
        self,
        store: DocumentStore,
        config: BudgetConfig | None = None,
        aggregator: PhaseAggregator | None = None,
    ):
        self._config = config or BudgetConfig()
        self._selector = ProjectSelector(store)
        self._aggregator = aggregator or PhaseAggregator(
            store, max_workers=self._config.load.max_workers
        )
        self._lock = threading.Lock()
        self._snapshot: DashboardSnapshot = projection.empty_snapshot()
        self._issued_generation = 0
        self.discarded_generations = 0
        self.superseded_revisions = 0

    # ------------------------------------------------------------------
    # Snapshot access
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> DashboardSnapshot:
        return self._snapshot

    def tracks(self, tenant_id: str, project_id: str) -> bool:
        snap = self._snapshot
        return snap.tenant_id == tenant_id and snap.project_id == project_id

    @property
    def phases(self) -> tuple[Phase, ...]:
        return self._snapshot.phases

    def phase_budget(self, phase_id: str) -> PhaseBudget | None:
        return self._snapshot.phase_budget.get(phase_id)

    def department_spent(self, phase_id: str, department: str) -> Decimal:
        return self._snapshot.department_spent(phase_id, department)

    def anonymous_expense(self, phase_id: str) -> Decimal:
        return self._snapshot.anonymous_expense(phase_id)

    def is_phase_enabled(self, phase_id: str) -> bool:
        return self._snapshot.is_phase_enabled(phase_id)

    def is_phase_extended(self, phase_id: str) -> bool:
        return self._snapshot.is_phase_extended(phase_id)

    @property
    def total_project_budget(self) -> Decimal:
        return self._snapshot.total_project_budget

    @property
    def total_project_spent(self) -> Decimal:
        return self._snapshot.total_project_spent

    @property
    def team_members(self) -> tuple[TeamMember, ...]:
        return self._snapshot.team_members

    @property
    def delegation(self) -> TempApprover | None:
        return self._snapshot.delegation

    # ------------------------------------------------------------------
    # Bulk load
    # ------------------------------------------------------------------

    def load_all(self, project_id: str, tenant_id: str) -> DashboardSnapshot:
        """Rebuild the snapshot for a project from the document store."""
        with self._lock:
            self._issued_generation += 1
            generation = self._issued_generation

        with LogContext.bind(tenant_id=tenant_id, project_id=project_id, generation=generation):
            logger.info("dashboard_load_started")
            previous = self._snapshot
            same_project = previous.tenant_id == tenant_id and previous.project_id == project_id

            with ThreadPoolExecutor(max_workers=4) as pool:
                def submit(fn: Callable[..., T], *args: object) -> Future:
                    return pool.submit(contextvars.copy_context().run, fn, *args)

                aggregate_future = submit(self._aggregator.aggregate, tenant_id, project_id)
                team_future = submit(self._load_team, tenant_id, project_id)
                delegation_future = submit(self._load_delegation, tenant_id, project_id)
                extended_future = submit(self._load_extension_flags, tenant_id, project_id)

            aggregate: ProjectAggregate = aggregate_future.result()
            team = self._optional(team_future, "team", previous.team_members if same_project else ())
            delegation = self._optional(
                delegation_future, "delegation", previous.delegation if same_project else None
            )
            extended = self._optional(
                extended_future,
                "extension_flags",
                dict(previous.phase_extended) if same_project else {},
            )

            snapshot = projection.build_snapshot(
                project_id=project_id,
                tenant_id=tenant_id,
                generation=generation,
                phases=(s.phase for s in aggregate.phases),
                departments={s.phase_id: s.departments for s in aggregate.phases},
                phase_budget={
                    s.phase_id: PhaseBudget(s.total_budget, s.spent) for s in aggregate.phases
                },
                phase_department_budget={
                    s.phase_id: s.department_budgets for s in aggregate.phases
                },
                phase_department_spent={
                    s.phase_id: s.department_spent for s in aggregate.phases
                },
                phase_anonymous_expense={
                    s.phase_id: s.anonymous_spent for s in aggregate.phases
                },
                phase_extended={
                    s.phase_id: bool(extended.get(s.phase_id, False)) for s in aggregate.phases
                },
                unattributed_spent=aggregate.unattributed_spent,
                team_members=team,
                delegation=delegation,
            )
            return self._commit(snapshot)

    def _optional(self, future: Future, part: str, fallback: T) -> T:
        try:
            return future.result()
        except TransientError:
            logger.warning("dashboard_part_kept_previous", extra={"part": part}, exc_info=True)
            return fallback

    def _commit(self, snapshot: DashboardSnapshot) -> DashboardSnapshot:
        with self._lock:
            current = self._snapshot
            if snapshot.generation < current.generation:
                self.discarded_generations += 1
                logger.warning(
                    "stale_generation_discarded",
                    extra={"committed_generation": current.generation},
                )
                return current
            if current.revision:
                self.superseded_revisions += current.revision
                logger.info(
                    "incremental_deltas_superseded",
                    extra={
                        "superseded_revisions": current.revision,
                        "previous_generation": current.generation,
                    },
                )
            self._snapshot = snapshot
        logger.info(
            "dashboard_load_committed",
            extra={
                "phase_count": len(snapshot.phases),
                "total_budget": snapshot.total_project_budget,
                "total_spent": snapshot.total_project_spent,
                "team_size": len(snapshot.team_members),
            },
        )
        return snapshot

    def _load_team(self, tenant_id: str, project_id: str) -> list[TeamMember]:
        project = self._selector.require_project(tenant_id, project_id)
        members = []
        for member_id in project.team_member_ids:
            member = self._selector.get_member(tenant_id, member_id)
            members.append(member if member is not None else TeamMember(member_id=member_id, name=member_id))
        return sort_team(members)

    def _load_delegation(self, tenant_id: str, project_id: str) -> TempApprover | None:
        project = self._selector.get_project(tenant_id, project_id)
        if project is None:
            return None
        return self._selector.current_delegation(project)

    def _load_extension_flags(self, tenant_id: str, project_id: str) -> dict[str, bool]:
        phases = self._selector.list_phases(tenant_id, project_id)
        requests = {
            p.phase_id: self._selector.list_requests(tenant_id, project_id, p.phase_id)
            for p in phases
        }
        return extension_map(phases, requests)

    # ------------------------------------------------------------------
    # Incremental mutation
    # ------------------------------------------------------------------

    def _apply(self, reducer: Callable[[DashboardSnapshot], DashboardSnapshot]) -> DashboardSnapshot:
        with self._lock:
            self._snapshot = reducer(self._snapshot)
            return self._snapshot

    def recalculate_totals(self) -> DashboardSnapshot:
        return self._apply(projection.recalculate_totals)

    def update_expense_status(
        self,
        expense_id: str,
        phase_id: str | None,
        department: str,
        old_status: ExpenseStatus,
        new_status: ExpenseStatus,
        amount: Decimal,
        *,
        is_anonymous: bool = False,
    ) -> DashboardSnapshot:
        """
        Move spend for one expense transition.

        Not idempotent: call exactly once per genuine transition.
        """
        snapshot = self._apply(
            lambda s: projection.apply_expense_transition(
                s,
                phase_id=phase_id,
                department=department,
                old_status=old_status,
                new_status=new_status,
                amount=amount,
                is_anonymous=is_anonymous,
            )
        )
        logger.debug(
            "expense_status_applied",
            extra={
                "expense_id": expense_id,
                "phase_id": phase_id,
                "old_status": old_status.value,
                "new_status": new_status.value,
                "amount": amount,
                "revision": snapshot.revision,
            },
        )
        return snapshot

    def add_team_member(self, member: TeamMember) -> bool:
        """Append a member; False when already present (nothing changed)."""
        changed = False

        def reducer(s: DashboardSnapshot) -> DashboardSnapshot:
            nonlocal changed
            s, changed = projection.add_team_member(s, member)
            return s

        self._apply(reducer)
        return changed

    def remove_team_member(self, member_id: str) -> TeamMember | None:
        """Drop a member; returns the removed member, or None if absent."""
        removed: TeamMember | None = None

        def reducer(s: DashboardSnapshot) -> DashboardSnapshot:
            nonlocal removed
            s, removed = projection.remove_team_member(s, member_id)
            return s

        self._apply(reducer)
        return removed

    def confirm_team_member_ids(
        self, member_ids: list[str], known: Iterable[TeamMember] = ()
    ) -> DashboardSnapshot:
        return self._apply(lambda s: projection.confirm_team_member_ids(s, member_ids, known))

    def set_phase_enabled(self, phase_id: str, enabled: bool) -> DashboardSnapshot:
        return self._apply(lambda s: projection.set_phase_enabled(s, phase_id, enabled))

    def apply_phase_end_date(self, phase: Phase, extended: bool) -> DashboardSnapshot:
        return self._apply(lambda s: projection.set_phase_end_date(s, phase, extended))

    def set_delegation(self, delegation: TempApprover | None) -> DashboardSnapshot:
        return self._apply(lambda s: projection.set_delegation(s, delegation))
