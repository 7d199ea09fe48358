"""
Stored document model.

One row per document. ``collection`` is the parent collection path, so a
collection query is a single indexed equality lookup. ``body`` holds the
codec-encoded JSON document; ``version`` increments on every write.
"""

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from budget_kernel.db.base import TimestampedBase


class StoredDocument(TimestampedBase):
    __tablename__ = "documents"

    path: Mapped[str] = mapped_column(String(1024), primary_key=True)
    collection: Mapped[str] = mapped_column(String(1024), nullable=False)
    document_id: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("idx_documents_collection", "collection"),
    )

    def __repr__(self) -> str:
        return f"<StoredDocument {self.path} v{self.version}>"
