"""
Formats -- the single normalization point for stored representations.

Responsibility:
    Stored documents mix representations that must stay readable forever:
    ``dd/MM/yyyy`` date strings next to native timestamps, and department
    keys stored either as a bare name (old format) or as
    ``<phaseId>_<name>`` (new format). Every decoder in ``selectors`` runs
    values through this module once; nothing deeper in the aggregation
    branches on format.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Failure modes:
    - ``require_stored_date`` raises InvalidDateError.
    - Lenient readers (``parse_stored_date``, ``parse_decimal``) return None
      instead of raising; callers decide whether absence is an error.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from budget_kernel.domain.dtos import (
    DelegationStatus,
    ExpenseStatus,
    RequestStatus,
)
from budget_kernel.exceptions import InvalidDateError

STORED_DATE_FORMAT = "%d/%m/%Y"
STORED_DATE_DISPLAY = "dd/MM/yyyy"

_ZERO = Decimal("0")

# =========================================================================
# Calendar dates
# =========================================================================


def parse_stored_date(raw: Any, fmt: str = STORED_DATE_FORMAT) -> date | None:
    """Parse a stored calendar date, returning None when absent or malformed."""
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return datetime.strptime(raw.strip(), fmt).date()
    except ValueError:
        return None


def require_stored_date(raw: Any, field: str, fmt: str = STORED_DATE_FORMAT) -> date:
    """Parse a calendar date supplied for a write; malformed input is rejected."""
    parsed = parse_stored_date(raw, fmt)
    if parsed is None:
        raise InvalidDateError(field, raw, STORED_DATE_DISPLAY)
    return parsed


def format_stored_date(value: date, fmt: str = STORED_DATE_FORMAT) -> str:
    return value.strftime(fmt)


def coerce_timestamp(value: Any) -> datetime | None:
    """Normalize a stored audit timestamp to an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            return coerce_timestamp(datetime.fromisoformat(value.strip()))
        except ValueError:
            return None
    return None


# =========================================================================
# Numbers
# =========================================================================


def parse_decimal(value: Any) -> Decimal | None:
    """
    Parse a stored or user-entered decimal.

    Accepts numbers and numeric strings with thousands separators
    ("1,25,000.50"). Returns None for anything else, including booleans
    and non-finite values.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        if not cleaned:
            return None
        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            return None
    else:
        return None
    if not result.is_finite():
        return None
    return result


def decimal_or_zero(value: Any) -> Decimal:
    parsed = parse_decimal(value)
    return _ZERO if parsed is None else parsed


# =========================================================================
# Department keys
# =========================================================================


def department_display_name(raw: str, phase_id: str | None) -> str:
    """Strip the ``<phaseId>_`` prefix from a stored department key."""
    value = (raw or "").strip()
    if phase_id:
        prefix = f"{phase_id}_"
        if value.startswith(prefix):
            return value[len(prefix):]
    return value


def canonical_department_key(phase_id: str | None, raw: str) -> str:
    """
    Return the canonical key for a department under a phase.

    Both stored formats map to ``<phaseId>_<name>``. Without a phase the
    display name itself is the key.
    """
    name = department_display_name(raw, phase_id)
    if not phase_id:
        return name
    return f"{phase_id}_{name}"


def lookup_department_spent(
    buckets: Mapping[str, Decimal],
    phase_id: str,
    department: str,
) -> Decimal:
    """
    Find a department's spent amount in a bucket map of unknown key format.

    Tries, in order: the exact key, the prefixed form, the stripped form,
    then a case-insensitive scan comparing display names. Absent means zero.
    """
    raw = (department or "").strip()
    name = department_display_name(raw, phase_id)
    for key in (raw, f"{phase_id}_{name}", name):
        if key in buckets:
            return buckets[key]
    wanted = name.casefold()
    for key, amount in buckets.items():
        if department_display_name(key, phase_id).casefold() == wanted:
            return amount
    return _ZERO


# =========================================================================
# Identifiers and statuses
# =========================================================================

_COUNTRY_PREFIX = "+91"


def normalize_member_id(raw: str | None) -> str:
    """Normalize a phone-based identity: trim and drop the country prefix."""
    value = (raw or "").strip()
    if value.startswith(_COUNTRY_PREFIX):
        value = value[len(_COUNTRY_PREFIX):]
    return value.strip()


def normalize_expense_status(raw: Any) -> ExpenseStatus | None:
    if not isinstance(raw, str):
        return None
    try:
        return ExpenseStatus(raw.strip().upper())
    except ValueError:
        return None


_REQUEST_STATUS_ALIASES = {"APPROVED": RequestStatus.ACCEPTED}


def normalize_request_status(raw: Any) -> RequestStatus | None:
    """Older request documents store ACCEPTED as ``APPROVED``."""
    if not isinstance(raw, str):
        return None
    value = raw.strip().upper()
    if value in _REQUEST_STATUS_ALIASES:
        return _REQUEST_STATUS_ALIASES[value]
    try:
        return RequestStatus(value)
    except ValueError:
        return None


def normalize_delegation_status(raw: Any) -> DelegationStatus | None:
    if not isinstance(raw, str):
        return None
    try:
        return DelegationStatus(raw.strip().lower())
    except ValueError:
        return None
