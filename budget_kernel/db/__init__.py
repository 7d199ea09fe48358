"""Persistence boundary: document store protocol and its implementations."""

from budget_kernel.db.document_store import (
    DELETE_FIELD,
    DocumentSnapshot,
    DocumentStore,
    FieldFilter,
)
from budget_kernel.db.memory_store import InMemoryDocumentStore
from budget_kernel.db.sql_store import SqlDocumentStore

__all__ = [
    "DELETE_FIELD",
    "DocumentSnapshot",
    "DocumentStore",
    "FieldFilter",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
]
