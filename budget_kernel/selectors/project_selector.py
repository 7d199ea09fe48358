"""
Module: budget_kernel.selectors.project_selector
Responsibility: Read-only access to a tenant's projects and everything
    stored beneath them (phases, departments, expenses, delegation records,
    extension requests) plus tenant users, returned as frozen DTOs.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only: only ``get`` and ``query`` are called.
    - Phases are returned ordered by phase number.
    - A document that cannot be decoded is skipped with a warning; it never
      aborts a listing.

Failure modes:
    - ProjectNotFoundError / PhaseNotFoundError from the ``require_*``
      lookups. Plain ``get_*`` lookups return None on absence.
    - TransientStoreError propagates unchanged from the store.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping, TypeVar

from budget_kernel.db import paths
from budget_kernel.db.document_store import DocumentSnapshot, FieldFilter
from budget_kernel.domain.dtos import (
    Department,
    Expense,
    ExpenseStatus,
    Phase,
    PhaseExtensionRequest,
    Project,
    RequestStatus,
    TeamMember,
    TempApprover,
)
from budget_kernel.domain.delegation import LIVE_DELEGATION_STATUSES
from budget_kernel.exceptions import PhaseNotFoundError, ProjectNotFoundError
from budget_kernel.logging_config import get_logger
from budget_kernel.selectors.base import BaseSelector
from budget_kernel.selectors.decoders import (
    DocumentDecodeError,
    decode_delegation,
    decode_department,
    decode_expense,
    decode_member,
    decode_phase,
    decode_project,
    decode_request,
)

logger = get_logger("selectors.project")

T = TypeVar("T")


def _decode_all(
    snapshots: Iterable[DocumentSnapshot],
    decode: Callable[[str, Mapping[str, Any]], T],
) -> list[T]:
    results: list[T] = []
    for snap in snapshots:
        try:
            results.append(decode(snap.id, snap.data))
        except DocumentDecodeError as exc:
            logger.warning(
                "document_skipped",
                extra={"path": snap.path, "kind": exc.kind, "reason": exc.reason},
            )
    return results


class ProjectSelector(BaseSelector):
    """Decoded reads beneath ``tenants/{tenantId}``."""

    # Projects

    def get_project(self, tenant_id: str, project_id: str) -> Project | None:
        data = self.store.get(paths.project_path(tenant_id, project_id))
        if data is None:
            return None
        return decode_project(tenant_id, project_id, data)

    def require_project(self, tenant_id: str, project_id: str) -> Project:
        project = self.get_project(tenant_id, project_id)
        if project is None:
            raise ProjectNotFoundError(tenant_id, project_id)
        return project

    def list_projects(self, tenant_id: str) -> list[Project]:
        return _decode_all(
            self.store.query(paths.projects_collection(tenant_id)),
            lambda pid, data: decode_project(tenant_id, pid, data),
        )

    # Phases and departments

    def list_phases(self, tenant_id: str, project_id: str) -> list[Phase]:
        phases = _decode_all(
            self.store.query(paths.phases_collection(tenant_id, project_id)),
            lambda pid, data: decode_phase(project_id, pid, data),
        )
        return sorted(phases, key=lambda p: (p.number, p.phase_id))

    def get_phase(self, tenant_id: str, project_id: str, phase_id: str) -> Phase | None:
        data = self.store.get(paths.phase_path(tenant_id, project_id, phase_id))
        if data is None:
            return None
        return decode_phase(project_id, phase_id, data)

    def require_phase(self, tenant_id: str, project_id: str, phase_id: str) -> Phase:
        phase = self.get_phase(tenant_id, project_id, phase_id)
        if phase is None:
            raise PhaseNotFoundError(project_id, phase_id)
        return phase

    def list_departments(self, tenant_id: str, project_id: str, phase_id: str) -> list[Department]:
        return _decode_all(
            self.store.query(paths.departments_collection(tenant_id, project_id, phase_id)),
            lambda did, data: decode_department(phase_id, did, data),
        )

    def department_documents(
        self, tenant_id: str, project_id: str, phase_id: str
    ) -> list[DocumentSnapshot]:
        """Raw department documents, for writers that rewrite them by name."""
        return self.store.query(paths.departments_collection(tenant_id, project_id, phase_id))

    # Expenses

    def list_expenses(
        self,
        tenant_id: str,
        project_id: str,
        status: ExpenseStatus | None = None,
        phase_id: str | None = None,
    ) -> list[Expense]:
        filters = []
        if status is not None:
            filters.append(FieldFilter("status", "==", status.value))
        if phase_id is not None:
            filters.append(FieldFilter("phaseId", "==", phase_id))
        return _decode_all(
            self.store.query(paths.expenses_collection(tenant_id, project_id), filters),
            lambda eid, data: decode_expense(project_id, eid, data),
        )

    def get_expense(self, tenant_id: str, project_id: str, expense_id: str) -> Expense | None:
        data = self.store.get(paths.expense_path(tenant_id, project_id, expense_id))
        if data is None:
            return None
        return decode_expense(project_id, expense_id, data)

    # Delegation

    def get_delegation(self, tenant_id: str, project_id: str, record_id: str) -> TempApprover | None:
        data = self.store.get(paths.delegation_path(tenant_id, project_id, record_id))
        if data is None:
            return None
        return decode_delegation(project_id, record_id, data)

    def list_delegations(self, tenant_id: str, project_id: str) -> list[TempApprover]:
        return _decode_all(
            self.store.query(paths.delegations_collection(tenant_id, project_id)),
            lambda rid, data: decode_delegation(project_id, rid, data),
        )

    def current_delegation(self, project: Project) -> TempApprover | None:
        """
        The delegation record the project currently points at.

        Older projects carry only ``tempApproverID``; for those the newest
        live record held by that approver is the current one.
        """
        if project.temp_approver_record_id:
            return self.get_delegation(
                project.tenant_id, project.project_id, project.temp_approver_record_id
            )
        if not project.temp_approver_id:
            return None
        candidates = [
            record
            for record in self.list_delegations(project.tenant_id, project.project_id)
            if record.approver_id == project.temp_approver_id
            and record.status in LIVE_DELEGATION_STATUSES
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda r: (r.updated_at or r.start_date, r.record_id))

    # Extension requests

    def list_requests(
        self,
        tenant_id: str,
        project_id: str,
        phase_id: str,
        status: RequestStatus | None = None,
    ) -> list[PhaseExtensionRequest]:
        requests = _decode_all(
            self.store.query(paths.requests_collection(tenant_id, project_id, phase_id)),
            lambda rid, data: decode_request(project_id, phase_id, rid, data),
        )
        if status is not None:
            requests = [r for r in requests if r.status is status]
        return requests

    def get_request(
        self, tenant_id: str, project_id: str, phase_id: str, request_id: str
    ) -> PhaseExtensionRequest | None:
        data = self.store.get(paths.request_path(tenant_id, project_id, phase_id, request_id))
        if data is None:
            return None
        return decode_request(project_id, phase_id, request_id, data)

    # Users

    def get_member(self, tenant_id: str, user_id: str) -> TeamMember | None:
        data = self.store.get(paths.user_path(tenant_id, user_id))
        if data is None:
            return None
        return decode_member(user_id, data)
