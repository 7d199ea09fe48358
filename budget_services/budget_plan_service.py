"""
budget_services.budget_plan_service -- Editing the budget plan.

Responsibility:
    Creates phases, saves and deletes departments with their line items,
    toggles phase enablement, and keeps the project's stored ``budget``
    equal to the sum of its phase totals.

Architecture position:
    Services. Validation happens through ``budget_kernel.domain.budgeting``
    before any write.

Invariants enforced:
    - Phase and department names are non-empty and unique within their
      scope, compared case-insensitively.
    - A department's budget is never stored; it is always the sum of its
      line items.
    - Deleting a department removes its documents and both legacy map key
      formats, then marks every expense booked against it anonymous so its
      spend moves to the phase's "Other" bucket instead of vanishing.

Failure modes:
    - EmptyNameError, DuplicateNameError, LineItemValidationError,
      InvalidDateError: raised before any write.
    - PhaseNotFoundError / ProjectNotFoundError.
    - TransientError from the store, unchanged.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Mapping

from budget_config import BudgetConfig
from budget_kernel.db import paths
from budget_kernel.db.document_store import DocumentStore, FieldFilter
from budget_kernel.domain.budgeting import encode_line_item, parse_line_items, phase_total_budget
from budget_kernel.domain.clock import Clock, SystemClock
from budget_kernel.domain.consistency import ConsistencyMode, consistency_mode
from budget_kernel.domain.dtos import ContractorMode, Department, Phase
from budget_kernel.domain.formats import (
    department_display_name,
    format_stored_date,
    require_stored_date,
)
from budget_kernel.exceptions import DuplicateNameError, EmptyNameError
from budget_kernel.logging_config import LogContext, get_logger
from budget_kernel.selectors.decoders import decode_department, decode_phase
from budget_kernel.selectors.project_selector import ProjectSelector
from budget_services.dashboard_store import DashboardStore
from budget_services.identity import IdentityResolver

logger = get_logger("services.budget_plan")


def _require_name(kind: str, name: str) -> str:
    value = (name or "").strip()
    if not value:
        raise EmptyNameError(kind)
    return value


def _canonical_date(raw: str | None, field: str) -> str | None:
    if raw is None or not str(raw).strip():
        return None
    return format_stored_date(require_stored_date(raw, field))


class BudgetPlanService:
    """Phase and department editing for one tenant."""

    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityResolver,
        dashboard: DashboardStore | None = None,
        clock: Clock | None = None,
        config: BudgetConfig | None = None,
    ):
        self._store = store
        self._selector = ProjectSelector(store)
        self._identity = identity
        self._dashboard = dashboard
        self._clock = clock or SystemClock()
        self._config = config or BudgetConfig()

    def _tracked(self, tenant_id: str, project_id: str) -> bool:
        return self._dashboard is not None and self._dashboard.tracks(tenant_id, project_id)

    # =========================================================================
    # Phases
    # =========================================================================

    def create_phase(
        self,
        project_id: str,
        name: str,
        start_date: str | None = None,
        end_date: str | None = None,
        enabled: bool = True,
    ) -> Phase:
        tenant_id = self._identity.resolve().tenant_id
        phase_name = _require_name("Phase", name)
        start = _canonical_date(start_date, "startDate")
        end = _canonical_date(end_date, "endDate")

        self._selector.require_project(tenant_id, project_id)
        phases = self._selector.list_phases(tenant_id, project_id)
        if any(p.name.casefold() == phase_name.casefold() for p in phases):
            raise DuplicateNameError("Phase", phase_name, f"project {project_id}")

        now = self._clock.now_utc()
        data: dict[str, Any] = {
            "phaseName": phase_name,
            "phaseNumber": max((p.number for p in phases), default=0) + 1,
            "isEnabled": enabled,
            "departments": {},
            "createdAt": now,
            "updatedAt": now,
        }
        if start is not None:
            data["startDate"] = start
        if end is not None:
            data["endDate"] = end
        phase_id = self._store.add(paths.phases_collection(tenant_id, project_id), data)
        logger.info(
            "phase_created",
            extra={"project_id": project_id, "phase_id": phase_id, "phase_number": data["phaseNumber"]},
        )
        return decode_phase(project_id, phase_id, data)

    @consistency_mode(ConsistencyMode.CONFIRM_THEN_APPLY, "plan.set_phase_enabled")
    def set_phase_enabled(self, project_id: str, phase_id: str, enabled: bool) -> None:
        tenant_id = self._identity.resolve().tenant_id
        self._selector.require_phase(tenant_id, project_id, phase_id)
        self._store.update(
            paths.phase_path(tenant_id, project_id, phase_id),
            {"isEnabled": enabled, "updatedAt": self._clock.now_utc()},
        )
        logger.info("phase_enablement_changed", extra={"phase_id": phase_id, "enabled": enabled})
        if self._tracked(tenant_id, project_id):
            self._dashboard.set_phase_enabled(phase_id, enabled)

    # =========================================================================
    # Departments
    # =========================================================================

    def save_department(
        self,
        project_id: str,
        phase_id: str,
        name: str,
        line_items: Iterable[Mapping[str, Any]],
        contractor_mode: ContractorMode = ContractorMode.LABOUR_ONLY,
        department_id: str | None = None,
    ) -> Department:
        """Create a department, or replace one when ``department_id`` is given."""
        tenant_id = self._identity.resolve().tenant_id
        department_name = department_display_name(_require_name("Department", name), phase_id)
        items = parse_line_items(line_items, self._config.labour_item_type)

        phase = self._selector.require_phase(tenant_id, project_id, phase_id)
        taken = {
            d.name.casefold()
            for d in self._selector.list_departments(tenant_id, project_id, phase_id)
            if d.department_id != department_id
        }
        if department_id is None:
            taken.update(n.casefold() for n in phase.legacy_departments)
        if department_name.casefold() in taken:
            raise DuplicateNameError("Department", department_name, f"phase {phase.name or phase_id}")

        now = self._clock.now_utc()
        data = {
            "name": department_name,
            "phaseId": phase_id,
            "contractorMode": contractor_mode.value,
            "lineItems": [encode_line_item(item) for item in items],
            "updatedAt": now,
        }
        collection = paths.departments_collection(tenant_id, project_id, phase_id)
        if department_id is None:
            data["createdAt"] = now
            department_id = self._store.add(collection, data)
        else:
            self._store.set(
                paths.department_path(tenant_id, project_id, phase_id, department_id),
                data,
                merge=True,
            )
        department = decode_department(phase_id, department_id, data)
        logger.info(
            "department_saved",
            extra={
                "phase_id": phase_id,
                "department_id": department_id,
                "line_items": len(items),
                "budget": department.budget,
            },
        )
        self.refresh_project_budget(project_id)
        if self._tracked(tenant_id, project_id):
            self._dashboard.load_all(project_id, tenant_id)
        return department

    def delete_department(self, project_id: str, phase_id: str, name: str) -> int:
        """
        Remove a department from a phase; returns the number of expenses
        re-attributed to the phase's "Other" bucket.
        """
        caller = self._identity.resolve()
        tenant_id = caller.tenant_id
        department_name = department_display_name(_require_name("Department", name), phase_id)
        prefixed = f"{phase_id}_{department_name}"
        with LogContext.bind(tenant_id=tenant_id, project_id=project_id, actor_id=caller.user_id):
            self._selector.require_phase(tenant_id, project_id, phase_id)
            now = self._clock.now_utc()

            removed_docs = 0
            for snap in self._selector.department_documents(tenant_id, project_id, phase_id):
                stored = str(snap.data.get("name") or "")
                if department_display_name(stored, phase_id) == department_name:
                    self._store.delete(snap.path)
                    removed_docs += 1

            phase_path = paths.phase_path(tenant_id, project_id, phase_id)
            phase_data = self._store.get(phase_path) or {}
            legacy = phase_data.get("departments")
            if isinstance(legacy, Mapping) and (department_name in legacy or prefixed in legacy):
                kept = {k: v for k, v in legacy.items() if k not in (department_name, prefixed)}
                self._store.update(phase_path, {"departments": kept, "updatedAt": now})

            marked = 0
            expenses = self._store.query(
                paths.expenses_collection(tenant_id, project_id),
                [FieldFilter("phaseId", "==", phase_id)],
            )
            for snap in expenses:
                if snap.data.get("department") not in (department_name, prefixed):
                    continue
                self._store.update(
                    snap.path,
                    {
                        "isAnonymous": True,
                        "originalDepartment": department_name,
                        "departmentDeletedAt": now,
                        "updatedAt": now,
                    },
                )
                marked += 1

            logger.info(
                "department_deleted",
                extra={
                    "phase_id": phase_id,
                    "department": department_name,
                    "documents_removed": removed_docs,
                    "expenses_reattributed": marked,
                },
            )
            self.refresh_project_budget(project_id)
            if self._tracked(tenant_id, project_id):
                self._dashboard.load_all(project_id, tenant_id)
            return marked

    # =========================================================================
    # Project budget
    # =========================================================================

    def refresh_project_budget(self, project_id: str) -> Decimal:
        """Write the sum of all phase totals to the project's ``budget`` field."""
        tenant_id = self._identity.resolve().tenant_id
        total = Decimal("0")
        for phase in self._selector.list_phases(tenant_id, project_id):
            departments = self._selector.list_departments(tenant_id, project_id, phase.phase_id)
            total += phase_total_budget(departments, phase.legacy_departments)
        self._store.update(
            paths.project_path(tenant_id, project_id),
            {"budget": total, "updatedAt": self._clock.now_utc()},
        )
        logger.info("project_budget_refreshed", extra={"project_id": project_id, "budget": total})
        return total
