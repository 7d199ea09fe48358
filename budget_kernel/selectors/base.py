"""
Module: budget_kernel.selectors.base
Responsibility: Abstract base class for read-only document selectors.
Architecture position: Kernel > Selectors. May import from db/ and domain/.
    MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors call only ``get`` and ``query`` on the
      store they are given.
    - DTO return convention: selectors return frozen domain DTOs, never raw
      document dictionaries.
"""

from abc import ABC

from budget_kernel.db.document_store import DocumentStore


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a DocumentStore from the caller, perform read-only
        lookups, and return DTOs. They MUST NOT write.
    """

    def __init__(self, store: DocumentStore):
        self.store = store
