"""
Module: budget_kernel.db.codec
Responsibility: JSON encoding of document bodies for the SQL store.

Decimal, datetime and date values survive a round trip through tagged
objects (``{"$decimal": "12.50"}``); every other value is plain JSON.
Money never passes through float.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping

_DECIMAL = "$decimal"
_DATETIME = "$datetime"
_DATE = "$date"


def _encode_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return {_DECIMAL: str(value)}
    if isinstance(value, datetime):
        return {_DATETIME: value.isoformat()}
    if isinstance(value, date):
        return {_DATE: value.isoformat()}
    if isinstance(value, Mapping):
        return {str(k): _encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode_value(v) for v in value]
    return value


def _decode_object(obj: dict[str, Any]) -> Any:
    if len(obj) == 1:
        if _DECIMAL in obj:
            return Decimal(obj[_DECIMAL])
        if _DATETIME in obj:
            return datetime.fromisoformat(obj[_DATETIME])
        if _DATE in obj:
            return date.fromisoformat(obj[_DATE])
    return obj


def encode_document(data: Mapping[str, Any]) -> str:
    return json.dumps(_encode_value(data), sort_keys=True)


def decode_document(raw: str) -> dict[str, Any]:
    return json.loads(raw, object_hook=_decode_object)
