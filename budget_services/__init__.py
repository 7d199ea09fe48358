"""
budget_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the pure kernel: the Phase Aggregator, the
    Dashboard Store, and the workflows that write to the document store
    (expense approval, team membership, delegation, phase extension, budget
    plan editing, reconciliation). This is the only layer that writes
    documents or reads the clock.

Architecture position:
    Services.

        budget_services/ -> budget_kernel/, budget_config/  (allowed)
        budget_kernel/   -> budget_services/                 (FORBIDDEN)

Invariants enforced:
    - Every store-mutating workflow declares its consistency mode with
      ``@consistency_mode``.
"""

from budget_kernel.logging_config import get_logger

logger = get_logger("services")

from budget_services.budget_plan_service import BudgetPlanService
from budget_services.dashboard_store import DashboardStore
from budget_services.delegation_service import DelegationService
from budget_services.events import (
    DelegationChanged,
    EventBus,
    ExpenseStatusChanged,
    PhaseExtended,
)
from budget_services.expense_approval_service import DecisionOutcome, ExpenseApprovalService
from budget_services.identity import CallerIdentity, IdentityResolver, StaticIdentityResolver
from budget_services.phase_aggregator import PhaseAggregator, PhaseSummary, ProjectAggregate
from budget_services.phase_extension_service import PhaseExtensionService
from budget_services.reconciliation_service import ReconciliationReport, ReconciliationService
from budget_services.team_membership_service import TeamMembershipService

__all__ = [
    "BudgetPlanService",
    "CallerIdentity",
    "DashboardStore",
    "DecisionOutcome",
    "DelegationChanged",
    "DelegationService",
    "EventBus",
    "ExpenseApprovalService",
    "ExpenseStatusChanged",
    "IdentityResolver",
    "PhaseAggregator",
    "PhaseExtended",
    "PhaseExtensionService",
    "PhaseSummary",
    "ProjectAggregate",
    "ReconciliationReport",
    "ReconciliationService",
    "StaticIdentityResolver",
    "TeamMembershipService",
]
