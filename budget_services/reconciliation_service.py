"""
budget_services.reconciliation_service -- Repair of interrupted multi-write workflows.

Responsibility:
    Finds and repairs the state left behind when a workflow stopped
    between two of its writes:

    - accepted extension requests whose ``phaseUpdate`` marker is still
      "pending" (the phase end date or timeline entry was never written);
    - delegation records whose stored status disagrees with their window.

Architecture position:
    Services. Composes PhaseExtensionService and DelegationService; run
    from ``scripts/reconcile_project.py`` or a scheduler.

Invariants enforced:
    - Every repair is idempotent; running the job twice changes nothing the
      second time.
    - One failed repair is logged and reported; it does not stop the rest.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from budget_kernel.db.document_store import DocumentStore
from budget_kernel.domain.clock import Clock, SystemClock
from budget_kernel.domain.dtos import (
    PhaseExtensionRequest,
    PhaseUpdateMarker,
    Project,
    RequestStatus,
)
from budget_kernel.exceptions import BudgetKernelError
from budget_kernel.logging_config import LogContext, get_logger
from budget_kernel.selectors.project_selector import ProjectSelector
from budget_services.delegation_service import DelegationService
from budget_services.identity import IdentityResolver
from budget_services.phase_extension_service import PhaseExtensionService

logger = get_logger("services.reconciliation")

SYSTEM_ACTOR = "system:reconciliation"


@dataclass
class ReconciliationReport:
    project_id: str
    extensions_repaired: list[str] = field(default_factory=list)
    delegations_reconciled: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not (self.extensions_repaired or self.delegations_reconciled or self.failures)


class ReconciliationService:
    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityResolver,
        extensions: PhaseExtensionService | None = None,
        delegations: DelegationService | None = None,
        clock: Clock | None = None,
    ):
        self._selector = ProjectSelector(store)
        self._identity = identity
        self._clock = clock or SystemClock()
        self._extensions = extensions or PhaseExtensionService(store, identity, clock=self._clock)
        self._delegations = delegations or DelegationService(store, identity, clock=self._clock)

    def find_unapplied_extensions(self, project_id: str) -> list[PhaseExtensionRequest]:
        tenant_id = self._identity.resolve().tenant_id
        found = []
        for phase in self._selector.list_phases(tenant_id, project_id):
            for request in self._selector.list_requests(
                tenant_id, project_id, phase.phase_id, RequestStatus.ACCEPTED
            ):
                if request.phase_update is PhaseUpdateMarker.PENDING:
                    found.append(request)
        return found

    def repair(self, project_id: str) -> ReconciliationReport:
        """Repair one project's extensions and delegation status."""
        tenant_id = self._identity.resolve().tenant_id
        report = ReconciliationReport(project_id)
        with LogContext.bind(tenant_id=tenant_id, project_id=project_id, actor_id=SYSTEM_ACTOR):
            for request in self.find_unapplied_extensions(project_id):
                try:
                    self._extensions.complete_extension(
                        tenant_id,
                        project_id,
                        request.phase_id,
                        request.request_id,
                        SYSTEM_ACTOR,
                    )
                except BudgetKernelError as exc:
                    logger.error(
                        "extension_repair_failed",
                        extra={"request_id": request.request_id, "error_code": exc.code},
                    )
                    report.failures.append(request.request_id)
                else:
                    report.extensions_repaired.append(request.request_id)

            before = self._delegations.current(project_id)
            try:
                after = self._delegations.reconcile_status(project_id, tenant_id)
            except BudgetKernelError as exc:
                logger.error(
                    "delegation_repair_failed",
                    extra={"error_code": exc.code},
                )
                report.failures.append(before.record_id if before else project_id)
            else:
                if before is not None and after is not None and after.status is not before.status:
                    report.delegations_reconciled.append(after.record_id)

            logger.info(
                "project_reconciled",
                extra={
                    "extensions_repaired": len(report.extensions_repaired),
                    "delegations_reconciled": len(report.delegations_reconciled),
                    "failures": len(report.failures),
                },
            )
        return report

    def projects(self) -> list[Project]:
        return self._selector.list_projects(self._identity.resolve().tenant_id)

    def sweep(self) -> list[ReconciliationReport]:
        """Repair every project of the caller's tenant."""
        return [self.repair(p.project_id) for p in self.projects()]
