"""
Module: budget_kernel.db.document_store
Responsibility: The read / query / write contract every backing store
    implements, plus the store-independent helpers (filters, ordering,
    field deletion, compare-and-set checks) the implementations share.
Architecture position: Kernel > DB. Imports only paths and exceptions.

Invariants enforced:
    - Writes are single-document. There is no multi-document transaction;
      callers sequence writes and own their failure windows.
    - ``update`` never creates a document; ``set`` always does.
    - ``update(..., expected=...)`` is a compare-and-set on the listed
      fields: every listed field must currently equal the expected value
      (a missing field equals None), otherwise nothing is written.

Failure modes:
    - DocumentNotFoundError from ``update`` on a missing document.
    - PreconditionFailedError from ``update`` when ``expected`` mismatches.
    - TransientStoreError from any operation on backend failure.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol, Sequence, runtime_checkable

from budget_kernel.db import paths
from budget_kernel.exceptions import PreconditionFailedError


class _DeleteField:
    """Sentinel: an ``update`` value that removes the field."""

    _instance: "_DeleteField | None" = None

    def __new__(cls) -> "_DeleteField":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()

_OPERATORS = ("==", "!=", "in", "array_contains")


@dataclass(frozen=True)
class FieldFilter:
    """A single-field query predicate."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, data: Mapping[str, Any]) -> bool:
        actual = data.get(self.field)
        if self.op == "==":
            return actual == self.value
        if self.op == "!=":
            return actual != self.value
        if self.op == "in":
            return actual in self.value
        return isinstance(actual, (list, tuple)) and self.value in actual


@dataclass(frozen=True)
class DocumentSnapshot:
    """A document as returned by ``query``."""

    id: str
    path: str
    data: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class DocumentStore(Protocol):
    """Named-collection document store."""

    def get(self, path: str) -> dict[str, Any] | None:
        """Return a copy of the document at ``path``, or None if absent."""
        ...

    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: str | None = None,
    ) -> list[DocumentSnapshot]:
        """Return the documents directly under ``collection`` that match."""
        ...

    def set(self, path: str, data: Mapping[str, Any], merge: bool = False) -> None:
        """Create or overwrite a document; ``merge`` keeps unlisted fields."""
        ...

    def update(
        self,
        path: str,
        fields: Mapping[str, Any],
        expected: Mapping[str, Any] | None = None,
    ) -> None:
        """Change fields of an existing document."""
        ...

    def add(self, collection: str, data: Mapping[str, Any]) -> str:
        """Create a document with a generated id and return the id."""
        ...

    def delete(self, path: str) -> None:
        """Delete a document; deleting a missing document is not an error."""
        ...


# =========================================================================
# Shared helpers
# =========================================================================


def new_document_id() -> str:
    return uuid.uuid4().hex[:20]


def require_document_path(path: str) -> str:
    if not paths.is_document_path(path):
        raise ValueError(f"Not a document path: {path!r}")
    return path


def require_collection_path(path: str) -> str:
    if not paths.is_collection_path(path):
        raise ValueError(f"Not a collection path: {path!r}")
    return path


def strip_deletes(data: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not DELETE_FIELD}


def apply_fields(current: Mapping[str, Any], fields: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``fields`` into ``current``, honouring DELETE_FIELD."""
    merged = dict(current)
    for key, value in fields.items():
        if value is DELETE_FIELD:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def check_expected(
    path: str,
    current: Mapping[str, Any],
    expected: Mapping[str, Any] | None,
) -> None:
    if not expected:
        return
    mismatched = [k for k, v in expected.items() if current.get(k) != v]
    if mismatched:
        raise PreconditionFailedError(path, sorted(mismatched))


def select(
    documents: Iterable[tuple[str, Mapping[str, Any]]],
    filters: Sequence[FieldFilter],
    order_by: str | None,
) -> list[DocumentSnapshot]:
    """Filter and order ``(path, data)`` pairs into snapshots."""
    rows = [
        DocumentSnapshot(id=paths.document_id(path), path=path, data=data)
        for path, data in documents
        if all(f.matches(data) for f in filters)
    ]
    if order_by is None:
        rows.sort(key=lambda row: row.path)
    else:
        rows.sort(key=lambda row: _order_key(row.data.get(order_by), row.path))
    return rows


def _order_key(value: Any, path: str) -> tuple:
    # Missing values sort last; mixed types compare by type name first.
    if value is None:
        return (1, "", "", path)
    return (0, type(value).__name__, value, path)
