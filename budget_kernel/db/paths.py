"""
Module: budget_kernel.db.paths
Responsibility: Builders for the logical document layout.

    tenants/{tenantId}/users/{userId}
    tenants/{tenantId}/projects/{projectId}
        phases/{phaseId}
            departments/{deptId}
            requests/{requestId}
            changes/{changeId}
        tempApprover/{recordId}
        expenses/{expenseId}

Collection paths have an odd number of segments, document paths an even
number. Identifiers must be non-empty and must not contain "/".
"""

from __future__ import annotations


def _segment(value: str, name: str) -> str:
    if not value or "/" in value:
        raise ValueError(f"Invalid {name}: {value!r}")
    return value


def join(*segments: str) -> str:
    return "/".join(segments)


def parent_collection(document_path: str) -> str:
    collection, _, _ = document_path.rpartition("/")
    return collection


def document_id(document_path: str) -> str:
    return document_path.rpartition("/")[2]


def is_document_path(path: str) -> bool:
    parts = path.split("/")
    return len(parts) % 2 == 0 and all(parts)


def is_collection_path(path: str) -> bool:
    parts = path.split("/")
    return len(parts) % 2 == 1 and all(parts)


def tenant_path(tenant_id: str) -> str:
    return join("tenants", _segment(tenant_id, "tenant_id"))


def users_collection(tenant_id: str) -> str:
    return join(tenant_path(tenant_id), "users")


def user_path(tenant_id: str, user_id: str) -> str:
    return join(users_collection(tenant_id), _segment(user_id, "user_id"))


def projects_collection(tenant_id: str) -> str:
    return join(tenant_path(tenant_id), "projects")


def project_path(tenant_id: str, project_id: str) -> str:
    return join(projects_collection(tenant_id), _segment(project_id, "project_id"))


def phases_collection(tenant_id: str, project_id: str) -> str:
    return join(project_path(tenant_id, project_id), "phases")


def phase_path(tenant_id: str, project_id: str, phase_id: str) -> str:
    return join(phases_collection(tenant_id, project_id), _segment(phase_id, "phase_id"))


def departments_collection(tenant_id: str, project_id: str, phase_id: str) -> str:
    return join(phase_path(tenant_id, project_id, phase_id), "departments")


def department_path(tenant_id: str, project_id: str, phase_id: str, department_id: str) -> str:
    return join(
        departments_collection(tenant_id, project_id, phase_id),
        _segment(department_id, "department_id"),
    )


def requests_collection(tenant_id: str, project_id: str, phase_id: str) -> str:
    return join(phase_path(tenant_id, project_id, phase_id), "requests")


def request_path(tenant_id: str, project_id: str, phase_id: str, request_id: str) -> str:
    return join(
        requests_collection(tenant_id, project_id, phase_id),
        _segment(request_id, "request_id"),
    )


def changes_collection(tenant_id: str, project_id: str, phase_id: str) -> str:
    return join(phase_path(tenant_id, project_id, phase_id), "changes")


def delegations_collection(tenant_id: str, project_id: str) -> str:
    return join(project_path(tenant_id, project_id), "tempApprover")


def delegation_path(tenant_id: str, project_id: str, record_id: str) -> str:
    return join(delegations_collection(tenant_id, project_id), _segment(record_id, "record_id"))


def expenses_collection(tenant_id: str, project_id: str) -> str:
    return join(project_path(tenant_id, project_id), "expenses")


def expense_path(tenant_id: str, project_id: str, expense_id: str) -> str:
    return join(expenses_collection(tenant_id, project_id), _segment(expense_id, "expense_id"))
