"""
Module: budget_kernel.db.sql_store
Responsibility: DocumentStore backed by a single SQLAlchemy ``documents``
    table (see models/document.py).
Architecture position: Kernel > DB. Imports models, codec and engine helpers.

Invariants enforced:
    - Every operation runs in its own transaction (session_scope).
    - Compare-and-set updates lock the row (SELECT ... FOR UPDATE) where the
      dialect supports it. SQLite connections are shared across threads, so
      operations against SQLite are serialized by a process lock.
    - Query filters and ordering are evaluated in Python over the rows of
      one collection, so behaviour matches InMemoryDocumentStore exactly.

Failure modes:
    - Any SQLAlchemyError surfaces as TransientStoreError; the transaction
      is rolled back first.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager, nullcontext
from typing import Any, Generator, Mapping, Sequence

from sqlalchemy import select as sql_select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from budget_kernel.db import paths
from budget_kernel.db.codec import decode_document, encode_document
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
from budget_kernel.db.engine import session_scope
from budget_kernel.exceptions import DocumentNotFoundError, TransientStoreError
from budget_kernel.logging_config import get_logger
from budget_kernel.models.document import StoredDocument

logger = get_logger("db.sql_store")


class SqlDocumentStore:
    """Relational implementation of the DocumentStore protocol."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._factory = session_factory
        bind = session_factory.kw.get("bind")
        dialect = bind.dialect.name if bind is not None else ""
        self._lock = threading.Lock() if dialect == "sqlite" else None
        self._lock_rows = dialect not in ("sqlite", "")

    @contextmanager
    def _transaction(self, operation: str, path: str) -> Generator[Session, None, None]:
        guard = self._lock if self._lock is not None else nullcontext()
        with guard:
            try:
                with session_scope(self._factory) as session:
                    yield session
            except SQLAlchemyError as exc:
                logger.error(
                    "document_store_failure",
                    extra={"operation": operation, "path": path},
                    exc_info=True,
                )
                raise TransientStoreError(operation, path, str(exc)) from exc

    def _row(self, session: Session, path: str, lock: bool = False) -> StoredDocument | None:
        stmt = sql_select(StoredDocument).where(StoredDocument.path == path)
        if lock and self._lock_rows:
            stmt = stmt.with_for_update()
        return session.scalars(stmt).first()

    def get(self, path: str) -> dict[str, Any] | None:
        require_document_path(path)
        with self._transaction("get", path) as session:
            row = self._row(session, path)
            return decode_document(row.body) if row is not None else None

    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: str | None = None,
    ) -> list[DocumentSnapshot]:
        require_collection_path(collection)
        with self._transaction("query", collection) as session:
            rows = session.scalars(
                sql_select(StoredDocument).where(StoredDocument.collection == collection)
            ).all()
            documents = [(row.path, decode_document(row.body)) for row in rows]
        return select(documents, filters, order_by)

    def set(self, path: str, data: Mapping[str, Any], merge: bool = False) -> None:
        require_document_path(path)
        with self._transaction("set", path) as session:
            row = self._row(session, path, lock=True)
            if row is None:
                session.add(self._new_row(path, strip_deletes(data)))
                return
            body = apply_fields(decode_document(row.body), data) if merge else strip_deletes(data)
            row.body = encode_document(body)
            row.version += 1

    def update(
        self,
        path: str,
        fields: Mapping[str, Any],
        expected: Mapping[str, Any] | None = None,
    ) -> None:
        require_document_path(path)
        with self._transaction("update", path) as session:
            row = self._row(session, path, lock=True)
            if row is None:
                raise DocumentNotFoundError(path)
            current = decode_document(row.body)
            check_expected(path, current, expected)
            row.body = encode_document(apply_fields(current, fields))
            row.version += 1

    def add(self, collection: str, data: Mapping[str, Any]) -> str:
        require_collection_path(collection)
        doc_id = new_document_id()
        path = paths.join(collection, doc_id)
        with self._transaction("add", path) as session:
            session.add(self._new_row(path, strip_deletes(data)))
        return doc_id

    def delete(self, path: str) -> None:
        require_document_path(path)
        with self._transaction("delete", path) as session:
            row = self._row(session, path, lock=True)
            if row is not None:
                session.delete(row)

    @staticmethod
    def _new_row(path: str, data: Mapping[str, Any]) -> StoredDocument:
        return StoredDocument(
            path=path,
            collection=paths.parent_collection(path),
            document_id=paths.document_id(path),
            body=encode_document(data),
            version=1,
        )
