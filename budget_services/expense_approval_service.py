"""
budget_services.expense_approval_service -- Expense approve/reject workflow.

Responsibility:
    Resolves which projects the caller may act on, locates the expense
    among them, writes the decision to the document store and, only after
    that write succeeded, moves spend in the Dashboard Store and publishes
    ExpenseStatusChanged.

Architecture position:
    Services. Declared CONFIRM_THEN_APPLY.

Invariants enforced:
    - PENDING -> APPROVED | REJECTED exactly once. The write is a
      compare-and-set on the stored status, so two racing approvers cannot
      both move the aggregate.
    - The Dashboard Store is never touched before the remote write returns.
    - Approval writes approvedAt/approvedBy and deletes rejectedAt/rejectedBy;
      rejection mirrors that.
    - Admin decisions without a remark get the configured admin remark;
      other remarks are trimmed and stored only when non-empty.

Failure modes:
    - ExpenseNotFoundError: absent under every project the caller may act on.
    - ExpenseAlreadyDecidedError: the expense already left PENDING.
    - TransientError: store failure. Nothing local changed; the caller may
      resubmit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from budget_config import BudgetConfig
from budget_kernel.db import paths
from budget_kernel.db.document_store import DELETE_FIELD, DocumentStore
from budget_kernel.domain.clock import Clock, SystemClock
from budget_kernel.domain.consistency import ConsistencyMode, consistency_mode
from budget_kernel.domain.delegation import grants_approval_authority
from budget_kernel.domain.dtos import (
    Expense,
    ExpenseDecision,
    ExpenseStatus,
    Project,
)
from budget_kernel.exceptions import (
    BudgetKernelError,
    ExpenseAlreadyDecidedError,
    ExpenseNotFoundError,
    PreconditionFailedError,
)
from budget_kernel.logging_config import LogContext, get_logger
from budget_kernel.selectors.decoders import decode_expense
from budget_kernel.selectors.project_selector import ProjectSelector
from budget_services.dashboard_store import DashboardStore
from budget_services.events import EventBus, ExpenseStatusChanged
from budget_services.identity import CallerIdentity, IdentityResolver

logger = get_logger("services.expense_approval")


@dataclass(frozen=True)
class DecisionOutcome:
    """Result of one decision within ``decide_many``."""

    expense_id: str
    expense: Expense | None = None
    error: BudgetKernelError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ExpenseApprovalService:
    """
    Approve or reject pending expenses.

    Contract:
        ``decide`` returns the expense as written. The Dashboard Store is
        updated only when it currently holds the expense's project.
    """

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
    # Authority
    # =========================================================================

    def _may_act_on(self, caller: CallerIdentity, project: Project) -> bool:
        if caller.is_admin or caller.user_id in project.manager_ids:
            return True
        if project.temp_approver_id != caller.user_id:
            return False
        record = self._selector.current_delegation(project)
        return grants_approval_authority(record, caller.user_id, self._clock.now_utc())

    def candidate_projects(
        self, caller: CallerIdentity, project_id: str | None = None
    ) -> list[Project]:
        """Projects the caller may decide expenses on, optionally narrowed to one."""
        if project_id is not None:
            project = self._selector.get_project(caller.tenant_id, project_id)
            projects = [project] if project is not None else []
        else:
            projects = self._selector.list_projects(caller.tenant_id)
        return [p for p in projects if self._may_act_on(caller, p)]

    def _locate(
        self, caller: CallerIdentity, expense_id: str, projects: Iterable[Project]
    ) -> tuple[Project, Mapping[str, Any], Expense]:
        searched = 0
        for project in projects:
            searched += 1
            path = paths.expense_path(caller.tenant_id, project.project_id, expense_id)
            data = self._store.get(path)
            if data is not None:
                return project, data, decode_expense(project.project_id, expense_id, data)
        raise ExpenseNotFoundError(expense_id, searched)

    def _remark(
        self, caller: CallerIdentity, decision: ExpenseDecision, remark: str | None
    ) -> str | None:
        text = (remark or "").strip()
        if text:
            return text
        if caller.is_admin:
            remarks = self._config.remarks
            if decision is ExpenseDecision.APPROVE:
                return remarks.admin_approved
            return remarks.admin_rejected
        return None

    # =========================================================================
    # Decisions
    # =========================================================================

    @consistency_mode(ConsistencyMode.CONFIRM_THEN_APPLY, "expense.decide")
    def decide(
        self,
        expense_id: str,
        decision: ExpenseDecision,
        remark: str | None = None,
        project_id: str | None = None,
    ) -> Expense:
        caller = self._identity.resolve()
        with LogContext.bind(tenant_id=caller.tenant_id, actor_id=caller.user_id):
            projects = self.candidate_projects(caller, project_id)
            project, raw, expense = self._locate(caller, expense_id, projects)

            if expense.is_terminal:
                raise ExpenseAlreadyDecidedError(expense_id, expense.status.value)

            now = self._clock.now_utc()
            target = decision.target_status
            fields: dict[str, Any] = {"status": target.value, "updatedAt": now}
            if target is ExpenseStatus.APPROVED:
                fields.update(
                    approvedAt=now,
                    approvedBy=caller.user_id,
                    rejectedAt=DELETE_FIELD,
                    rejectedBy=DELETE_FIELD,
                )
            else:
                fields.update(
                    rejectedAt=now,
                    rejectedBy=caller.user_id,
                    approvedAt=DELETE_FIELD,
                    approvedBy=DELETE_FIELD,
                )
            text = self._remark(caller, decision, remark)
            if text is not None:
                fields["remark"] = text

            path = paths.expense_path(caller.tenant_id, project.project_id, expense_id)
            try:
                self._store.update(path, fields, expected={"status": raw.get("status")})
            except PreconditionFailedError:
                current = self._selector.get_expense(caller.tenant_id, project.project_id, expense_id)
                status = current.status.value if current is not None else "deleted"
                logger.warning(
                    "expense_decision_lost_race",
                    extra={"expense_id": expense_id, "current_status": status},
                )
                raise ExpenseAlreadyDecidedError(expense_id, status) from None

            logger.info(
                "expense_decided",
                extra={
                    "project_id": project.project_id,
                    "expense_id": expense_id,
                    "decision": decision.value,
                    "amount": expense.amount,
                    "phase_id": expense.phase_id,
                    "is_anonymous": expense.is_anonymous,
                },
            )

            if self._dashboard is not None and self._dashboard.tracks(caller.tenant_id, project.project_id):
                self._dashboard.update_expense_status(
                    expense_id,
                    expense.phase_id,
                    expense.department,
                    expense.status,
                    target,
                    expense.amount,
                    is_anonymous=expense.is_anonymous or not expense.department,
                )

            self._events.publish(
                ExpenseStatusChanged(
                    expense_id=expense_id,
                    tenant_id=caller.tenant_id,
                    project_id=project.project_id,
                    phase_id=expense.phase_id,
                    department=expense.department,
                    old_status=expense.status,
                    new_status=target,
                    amount=expense.amount,
                    is_anonymous=expense.is_anonymous,
                    actor_id=caller.user_id,
                    occurred_at=now,
                )
            )

            return self._selector.get_expense(caller.tenant_id, project.project_id, expense_id) or expense

    def decide_many(
        self,
        expense_ids: Iterable[str],
        decision: ExpenseDecision,
        remark: str | None = None,
        project_id: str | None = None,
    ) -> list[DecisionOutcome]:
        """
        Decide several expenses one by one.

        Each expense is an independent CONFIRM_THEN_APPLY operation; a
        failure on one is recorded in its outcome and does not stop the rest.
        """
        outcomes = []
        for expense_id in expense_ids:
            try:
                expense = self.decide(expense_id, decision, remark, project_id)
            except BudgetKernelError as exc:
                logger.warning(
                    "expense_decision_failed",
                    extra={"expense_id": expense_id, "error_code": exc.code},
                )
                outcomes.append(DecisionOutcome(expense_id, error=exc))
            else:
                outcomes.append(DecisionOutcome(expense_id, expense=expense))
        return outcomes

    def list_pending(self, project_id: str) -> list[Expense]:
        """Pending expenses the caller may decide, oldest first."""
        caller = self._identity.resolve()
        if not self.candidate_projects(caller, project_id):
            return []
        pending = self._selector.list_expenses(
            caller.tenant_id, project_id, status=ExpenseStatus.PENDING
        )
        if not caller.is_admin:
            pending = [e for e in pending if not e.is_admin]
        return sorted(pending, key=lambda e: (e.created_at is None, e.created_at, e.expense_id))
