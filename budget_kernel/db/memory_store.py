"""
Module: budget_kernel.db.memory_store
Responsibility: Thread-safe in-process DocumentStore.
Architecture position: Kernel > DB.

Invariants enforced:
    - Every read returns a deep copy and every write stores a deep copy, so
      callers never share mutable state with the store.
    - Each operation runs under one lock; compare-and-set updates are
      atomic with respect to every other operation on the store.
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Mapping, Sequence

from budget_kernel.db import paths
from budget_kernel.db.document_store import (
    DocumentSnapshot,
    FieldFilter,
    apply_fields,
    check_expected,
    new_document_id,
    require_collection_path,
    require_document_path,
    select,
    strip_deletes,
)
from budget_kernel.exceptions import DocumentNotFoundError


class InMemoryDocumentStore:
    """Dictionary-backed document store keyed by full document path."""

    def __init__(self, documents: Mapping[str, Mapping[str, Any]] | None = None):
        self._lock = threading.RLock()
        self._documents: dict[str, dict[str, Any]] = {}
        for path, data in (documents or {}).items():
            self.set(path, data)

    def get(self, path: str) -> dict[str, Any] | None:
        require_document_path(path)
        with self._lock:
            data = self._documents.get(path)
            return copy.deepcopy(data) if data is not None else None

    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: str | None = None,
    ) -> list[DocumentSnapshot]:
        require_collection_path(collection)
        with self._lock:
            candidates = [
                (path, copy.deepcopy(data))
                for path, data in self._documents.items()
                if paths.parent_collection(path) == collection
            ]
        return select(candidates, filters, order_by)

    def set(self, path: str, data: Mapping[str, Any], merge: bool = False) -> None:
        require_document_path(path)
        with self._lock:
            current = self._documents.get(path) if merge else None
            if current is not None:
                stored = apply_fields(current, copy.deepcopy(dict(data)))
            else:
                stored = strip_deletes(copy.deepcopy(dict(data)))
            self._documents[path] = stored

    def update(
        self,
        path: str,
        fields: Mapping[str, Any],
        expected: Mapping[str, Any] | None = None,
    ) -> None:
        require_document_path(path)
        with self._lock:
            current = self._documents.get(path)
            if current is None:
                raise DocumentNotFoundError(path)
            check_expected(path, current, expected)
            self._documents[path] = apply_fields(current, copy.deepcopy(dict(fields)))

    def add(self, collection: str, data: Mapping[str, Any]) -> str:
        require_collection_path(collection)
        with self._lock:
            doc_id = new_document_id()
            while paths.join(collection, doc_id) in self._documents:
                doc_id = new_document_id()
            self._documents[paths.join(collection, doc_id)] = strip_deletes(
                copy.deepcopy(dict(data))
            )
        return doc_id

    def delete(self, path: str) -> None:
        require_document_path(path)
        with self._lock:
            self._documents.pop(path, None)

    def dump(self) -> dict[str, dict[str, Any]]:
        """Copy of every stored document, keyed by path."""
        with self._lock:
            return copy.deepcopy(self._documents)
