"""
Module: budget_kernel.selectors.decoders
Responsibility: Turn stored documents into domain DTOs. This is the read
    boundary: every representation quirk of stored data (dual department
    key formats, ``dd/MM/yyyy`` strings, legacy field names, phone prefixes)
    is normalized here through ``domain.formats`` and nowhere else.
Architecture position: Kernel > Selectors. Pure functions over dicts.

Failure modes:
    - DocumentDecodeError when a document lacks a field without which the
      DTO is meaningless (an expense without an amount, a delegation
      without its window). Selectors log and skip such documents.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping

from budget_kernel.domain.dtos import (
    ContractorMode,
    DelegationStatus,
    Department,
    Expense,
    LineItem,
    Phase,
    PhaseExtensionRequest,
    PhaseUpdateMarker,
    Project,
    ProjectStatus,
    TeamMember,
    TempApprover,
    UserRole,
)
from budget_kernel.domain.formats import (
    canonical_department_key,
    coerce_timestamp,
    decimal_or_zero,
    department_display_name,
    normalize_delegation_status,
    normalize_expense_status,
    normalize_member_id,
    normalize_request_status,
    parse_decimal,
    parse_stored_date,
)


class DocumentDecodeError(ValueError):
    """A stored document cannot be represented as its DTO."""

    def __init__(self, kind: str, document_id: str, reason: str):
        self.kind = kind
        self.document_id = document_id
        self.reason = reason
        super().__init__(f"Cannot decode {kind} {document_id}: {reason}")


def _text(data: Mapping[str, Any], *keys: str) -> str | None:
    """First non-empty string value among ``keys``."""
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _ids(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(dict.fromkeys(str(v).strip() for v in value if str(v).strip()))


def decode_project(tenant_id: str, project_id: str, data: Mapping[str, Any]) -> Project:
    try:
        status = ProjectStatus(str(data.get("status", "")).upper())
    except ValueError:
        status = ProjectStatus.LOCKED
    return Project(
        project_id=project_id,
        tenant_id=tenant_id,
        name=_text(data, "name") or "",
        status=status,
        is_suspended=bool(data.get("isSuspended", False)),
        team_member_ids=_ids(data.get("teamMembers")),
        manager_ids=tuple(normalize_member_id(m) for m in _ids(data.get("managerIds"))),
        temp_approver_id=normalize_member_id(_text(data, "tempApproverID")) or None,
        temp_approver_record_id=_text(data, "tempApproverRecordID"),
        budget=decimal_or_zero(data.get("budget")),
    )


def decode_legacy_departments(phase_id: str, raw: Any) -> dict[str, Decimal]:
    """
    Inline ``departments`` map of older phase documents, keyed by display name.

    When one department appears under both key formats, the prefixed
    (newer) entry wins.
    """
    if not isinstance(raw, Mapping):
        return {}
    result: dict[str, Decimal] = {}
    prefixed: set[str] = set()
    for key, value in raw.items():
        name = department_display_name(str(key), phase_id)
        if not name:
            continue
        is_prefixed = str(key).strip().startswith(f"{phase_id}_")
        if name in prefixed and not is_prefixed:
            continue
        result[name] = decimal_or_zero(value)
        if is_prefixed:
            prefixed.add(name)
    return result


def decode_phase(project_id: str, phase_id: str, data: Mapping[str, Any]) -> Phase:
    start_raw = _text(data, "startDate")
    end_raw = _text(data, "endDate")
    number = data.get("phaseNumber")
    return Phase(
        phase_id=phase_id,
        project_id=project_id,
        name=_text(data, "phaseName", "name") or "",
        number=int(number) if isinstance(number, (int, float)) and not isinstance(number, bool) else 0,
        start_raw=start_raw,
        end_raw=end_raw,
        start_date=parse_stored_date(start_raw),
        end_date=parse_stored_date(end_raw),
        enabled=data.get("isEnabled", True) is not False,
        legacy_departments=decode_legacy_departments(phase_id, data.get("departments")),
    )


def decode_line_item(raw: Mapping[str, Any]) -> LineItem:
    return LineItem(
        item_type=_text(raw, "itemType") or "",
        item=_text(raw, "item") or "",
        spec=_text(raw, "spec") or "",
        quantity=decimal_or_zero(raw.get("quantity")),
        uom=_text(raw, "uom") or "",
        unit_price=decimal_or_zero(raw.get("unitPrice")),
    )


def decode_department(phase_id: str, department_id: str, data: Mapping[str, Any]) -> Department:
    name = _text(data, "name")
    if name is None:
        raise DocumentDecodeError("department", department_id, "missing name")
    try:
        mode = ContractorMode(data.get("contractorMode"))
    except ValueError:
        mode = ContractorMode.LABOUR_ONLY
    items = data.get("lineItems") or []
    return Department(
        department_id=department_id,
        name=department_display_name(name, phase_id),
        phase_id=_text(data, "phaseId") or phase_id,
        contractor_mode=mode,
        line_items=tuple(decode_line_item(i) for i in items if isinstance(i, Mapping)),
    )


def decode_expense(project_id: str, expense_id: str, data: Mapping[str, Any]) -> Expense:
    amount = parse_decimal(data.get("amount"))
    if amount is None:
        raise DocumentDecodeError("expense", expense_id, "missing or invalid amount")
    status = normalize_expense_status(data.get("status"))
    if status is None:
        raise DocumentDecodeError("expense", expense_id, f"unknown status {data.get('status')!r}")
    phase_id = _text(data, "phaseId")
    department = _text(data, "department") or ""
    return Expense(
        expense_id=expense_id,
        project_id=_text(data, "projectId") or project_id,
        amount=amount,
        status=status,
        department=department,
        department_key=canonical_department_key(phase_id, department),
        phase_id=phase_id,
        phase_name=_text(data, "phaseName"),
        is_anonymous=data.get("isAnonymous") is True,
        original_department=_text(data, "originalDepartment"),
        is_admin=data.get("isAdmin") is True,
        submitted_by=_text(data, "submittedBy"),
        approved_by=_text(data, "approvedBy"),
        rejected_by=_text(data, "rejectedBy"),
        approved_at=coerce_timestamp(data.get("approvedAt")),
        rejected_at=coerce_timestamp(data.get("rejectedAt")),
        remark=_text(data, "remark"),
        created_at=coerce_timestamp(data.get("createdAt")),
        updated_at=coerce_timestamp(data.get("updatedAt")),
    )


def decode_delegation(project_id: str, record_id: str, data: Mapping[str, Any]) -> TempApprover:
    start = coerce_timestamp(data.get("startDate"))
    end = coerce_timestamp(data.get("endDate"))
    approver = _text(data, "approverId")
    if start is None or end is None or approver is None:
        raise DocumentDecodeError("delegation", record_id, "missing approver or window")
    return TempApprover(
        record_id=record_id,
        approver_id=normalize_member_id(approver),
        project_id=project_id,
        start_date=start,
        end_date=end,
        status=normalize_delegation_status(data.get("status")) or DelegationStatus.PENDING,
        updated_at=coerce_timestamp(data.get("updatedAt")),
        rejection_reason=_text(data, "rejectionReason"),
        approved_expenses=_ids(data.get("approvedExpense")),
    )


def decode_request(
    project_id: str,
    phase_id: str,
    request_id: str,
    data: Mapping[str, Any],
) -> PhaseExtensionRequest:
    extended = _text(data, "extendedDate", "requestedExtensionDate")
    status = normalize_request_status(data.get("status"))
    if extended is None or status is None:
        raise DocumentDecodeError("extension request", request_id, "missing date or status")
    marker = data.get("phaseUpdate")
    try:
        phase_update = PhaseUpdateMarker(marker) if marker is not None else None
    except ValueError:
        phase_update = None
    return PhaseExtensionRequest(
        request_id=request_id,
        phase_id=_text(data, "phaseId") or phase_id,
        project_id=_text(data, "projectId") or project_id,
        extended_date=extended,
        reason=_text(data, "reason", "description") or "",
        status=status,
        user_id=_text(data, "userID", "requestedBy"),
        user_name=_text(data, "userName"),
        user_phone=_text(data, "userPhoneNumber"),
        reason_to_react=_text(data, "reasonToReact", "remark"),
        phase_update=phase_update,
        created_at=coerce_timestamp(data.get("createdAt")),
        updated_at=coerce_timestamp(data.get("updatedAt")),
    )


def decode_member(user_id: str, data: Mapping[str, Any]) -> TeamMember:
    try:
        role = UserRole(str(data.get("role", "USER")).upper())
    except ValueError:
        role = UserRole.USER
    email = _text(data, "email")
    phone = normalize_member_id(_text(data, "phoneNumber") or "")
    if role is UserRole.BUSINESSHEAD and email:
        member_id = email
    else:
        member_id = phone or normalize_member_id(user_id)
    return TeamMember(
        member_id=member_id,
        name=_text(data, "name") or member_id,
        role=role,
        phone=phone,
        email=email,
        is_active=data.get("isActive", True) is not False,
    )
