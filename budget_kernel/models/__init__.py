"""SQLAlchemy ORM models for the SQL-backed document store."""

from budget_kernel.models.document import StoredDocument

__all__ = ["StoredDocument"]
