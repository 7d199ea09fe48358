"""
Pytest fixtures for the budget kernel test suite.

Provides:
- Structured logging configured once per session, and a captured_logs
  fixture returning parsed JSON records
- A DeterministicClock (2025-06-15 12:00 UTC)
- A fresh in-memory document store per test and a Seeder that writes
  documents in their stored shape (camelCase fields, dd/MM/yyyy dates,
  both department key formats)
- FlakyDocumentStore, a wrapper that fails chosen operations with
  TransientStoreError to exercise failure paths
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from io import StringIO
from typing import Any, Mapping, Sequence

import pytest

from budget_config import BudgetConfig
from budget_kernel.db import InMemoryDocumentStore, paths
from budget_kernel.db.document_store import DocumentSnapshot, FieldFilter
from budget_kernel.domain.clock import DeterministicClock
from budget_kernel.domain.dtos import UserRole
from budget_kernel.exceptions import TransientStoreError
from budget_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from budget_services.dashboard_store import DashboardStore
from budget_services.events import EventBus
from budget_services.identity import StaticIdentityResolver

TENANT = "tenant-1"
PROJECT = "proj-1"
PHASE = "phase-1"

ADMIN_ID = "head@studio.test"
MANAGER_ID = "9000000001"
DELEGATE_ID = "9000000002"
MEMBER_ID = "9000000003"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture budget_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, approvals):
            approvals.decide(...)
            logs = captured_logs()
            assert any(r["message"] == "expense_decided" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("budget_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def messages(records: list[dict]) -> list[str]:
    return [r["message"] for r in records]


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def config():
    return BudgetConfig()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def dashboard(store, config):
    return DashboardStore(store, config=config)


@pytest.fixture
def admin():
    return StaticIdentityResolver(ADMIN_ID, TENANT, role=UserRole.BUSINESSHEAD, display_name="Head")


@pytest.fixture
def manager():
    return StaticIdentityResolver(MANAGER_ID, TENANT, role=UserRole.APPROVER, display_name="Manager")


@pytest.fixture
def delegate():
    return StaticIdentityResolver(DELEGATE_ID, TENANT, role=UserRole.APPROVER, display_name="Delegate")


@pytest.fixture
def member():
    return StaticIdentityResolver(MEMBER_ID, TENANT, display_name="Member")


# =============================================================================
# Seeding
# =============================================================================


class Seeder:
    """Writes documents in their stored shape."""

    def __init__(self, store, tenant_id: str = TENANT):
        self.store = store
        self.tenant_id = tenant_id

    def project(
        self,
        project_id: str = PROJECT,
        *,
        managers: Sequence[str] = (MANAGER_ID,),
        team: Sequence[str] = (),
        **extra: Any,
    ) -> str:
        data = {
            "name": f"Project {project_id}",
            "status": "ACTIVE",
            "managerIds": list(managers),
            "teamMembers": list(team),
            **extra,
        }
        self.store.set(paths.project_path(self.tenant_id, project_id), data)
        return project_id

    def phase(
        self,
        phase_id: str = PHASE,
        *,
        project_id: str = PROJECT,
        name: str | None = None,
        number: int = 1,
        start: str | None = "01/06/2025",
        end: str | None = "31/12/2025",
        enabled: bool = True,
        legacy: Mapping[str, Any] | None = None,
    ) -> str:
        data: dict[str, Any] = {
            "phaseName": name or f"Phase {number}",
            "phaseNumber": number,
            "isEnabled": enabled,
        }
        if start is not None:
            data["startDate"] = start
        if end is not None:
            data["endDate"] = end
        if legacy is not None:
            data["departments"] = dict(legacy)
        self.store.set(paths.phase_path(self.tenant_id, project_id, phase_id), data)
        return phase_id

    def department(
        self,
        name: str,
        budget: Decimal | int | str,
        *,
        phase_id: str = PHASE,
        project_id: str = PROJECT,
        department_id: str | None = None,
    ) -> str:
        department_id = department_id or f"dept-{name.lower()}"
        self.store.set(
            paths.department_path(self.tenant_id, project_id, phase_id, department_id),
            {
                "name": name,
                "phaseId": phase_id,
                "contractorMode": "Turnkey",
                "lineItems": [
                    {
                        "itemType": "Material",
                        "item": name,
                        "spec": "",
                        "quantity": 1,
                        "uom": "lot",
                        "unitPrice": str(budget),
                    }
                ],
            },
        )
        return department_id

    def expense(
        self,
        expense_id: str,
        amount: Decimal | int | str,
        *,
        department: str = "",
        phase_id: str | None = PHASE,
        project_id: str = PROJECT,
        status: str = "APPROVED",
        anonymous: bool = False,
        is_admin: bool = False,
        created_at: datetime | None = None,
    ) -> str:
        data: dict[str, Any] = {
            "amount": str(amount),
            "status": status,
            "department": department,
            "isAnonymous": anonymous,
            "isAdmin": is_admin,
            "submittedBy": MEMBER_ID,
            "createdAt": created_at or datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc),
        }
        if phase_id is not None:
            data["phaseId"] = phase_id
        self.store.set(paths.expense_path(self.tenant_id, project_id, expense_id), data)
        return expense_id

    def delegation(
        self,
        record_id: str,
        *,
        approver_id: str = DELEGATE_ID,
        start: datetime,
        end: datetime,
        status: str = "pending",
        project_id: str = PROJECT,
        point_project: bool = True,
    ) -> str:
        self.store.set(
            paths.delegation_path(self.tenant_id, project_id, record_id),
            {
                "approverId": approver_id,
                "startDate": start,
                "endDate": end,
                "status": status,
                "approvedExpense": [],
                "updatedAt": start,
            },
        )
        if point_project:
            self.store.update(
                paths.project_path(self.tenant_id, project_id),
                {"tempApproverID": approver_id, "tempApproverRecordID": record_id},
            )
        return record_id

    def request(
        self,
        request_id: str,
        extended_date: str,
        *,
        status: str = "PENDING",
        phase_id: str = PHASE,
        project_id: str = PROJECT,
        **extra: Any,
    ) -> str:
        self.store.set(
            paths.request_path(self.tenant_id, project_id, phase_id, request_id),
            {
                "phaseId": phase_id,
                "projectId": project_id,
                "extendedDate": extended_date,
                "reason": "Weather delay",
                "status": status,
                "userID": MEMBER_ID,
                "createdAt": datetime(2025, 6, 10, tzinfo=timezone.utc),
                **extra,
            },
        )
        return request_id

    def user(self, user_id: str, name: str, *, role: str = "USER", email: str | None = None) -> str:
        data: dict[str, Any] = {"name": name, "role": role, "phoneNumber": f"+91{user_id}"}
        if email:
            data["email"] = email
        self.store.set(paths.user_path(self.tenant_id, user_id), data)
        return user_id

    def scenario(self) -> None:
        """
        Phase with Set 5000 and Costume 3000; approved Set 2000 (prefixed
        key), Costume 1000 (bare key), anonymous 500; one pending 1000.
        """
        self.project()
        self.phase()
        self.department("Set", 5000)
        self.department("Costume", 3000)
        self.expense("exp-set", 2000, department=f"{PHASE}_Set")
        self.expense("exp-costume", 1000, department="Costume")
        self.expense("exp-anon", 500, department="Props", anonymous=True)
        self.expense("exp-pending", 1000, department="Set", status="PENDING")


@pytest.fixture
def seed(store):
    return Seeder(store)


@pytest.fixture
def scenario(seed):
    seed.scenario()
    return seed


# =============================================================================
# Failure injection
# =============================================================================


class FlakyDocumentStore:
    """
    Delegating store that raises TransientStoreError for chosen calls.

    ``fail("update", "expenses/")`` makes the next matching update fail;
    ``times`` controls how many matching calls fail.
    """

    def __init__(self, inner):
        self.inner = inner
        self._rules: list[list] = []
        self.calls: list[tuple[str, str]] = []

    def fail(self, operation: str, path_contains: str = "", times: int = 1) -> None:
        self._rules.append([operation, path_contains, times])

    def _check(self, operation: str, path: str) -> None:
        self.calls.append((operation, path))
        for rule in self._rules:
            op, fragment, remaining = rule
            if op == operation and fragment in path and remaining > 0:
                rule[2] -= 1
                raise TransientStoreError(operation, path, "injected failure")

    def get(self, path: str):
        self._check("get", path)
        return self.inner.get(path)

    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: str | None = None,
    ) -> list[DocumentSnapshot]:
        self._check("query", collection)
        return self.inner.query(collection, filters, order_by)

    def set(self, path: str, data, merge: bool = False) -> None:
        self._check("set", path)
        self.inner.set(path, data, merge)

    def update(self, path: str, fields, expected=None) -> None:
        self._check("update", path)
        self.inner.update(path, fields, expected)

    def add(self, collection: str, data) -> str:
        self._check("add", collection)
        return self.inner.add(collection, data)

    def delete(self, path: str) -> None:
        self._check("delete", path)
        self.inner.delete(path)

    def writes(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] in ("set", "update", "add", "delete")]


@pytest.fixture
def flaky(store):
    return FlakyDocumentStore(store)


def window(clock, start_days: float, end_days: float) -> tuple[datetime, datetime]:
    """Delegation window relative to the clock's now."""
    now = clock.now()
    return now + timedelta(days=start_days), now + timedelta(days=end_days)
