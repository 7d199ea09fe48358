"""
Typed Exception Hierarchy for the Budget Kernel.

Every error has a typed class (catch by type, not message), a ``code``
class attribute (machine-readable), and structured attributes carrying the
identifiers involved.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BudgetKernelError (base)
    |
    +-- NotFoundError
    |   +-- ProjectNotFoundError
    |   +-- PhaseNotFoundError
    |   +-- ExpenseNotFoundError
    |   +-- DelegationNotFoundError
    |   +-- ExtensionRequestNotFoundError
    |   +-- DocumentNotFoundError
    |
    +-- ConflictError
    |   +-- MembershipConflictError
    |   +-- DelegationConflictError
    |   +-- PreconditionFailedError
    |   +-- ExpenseAlreadyDecidedError
    |   +-- RequestAlreadyResolvedError
    |   +-- DuplicateNameError
    |
    +-- ValidationError
    |   +-- LineItemValidationError
    |   +-- EmptyNameError
    |   +-- InvalidDateError
    |   +-- DelegationWindowError
    |
    +-- TransientError
    |   +-- TransientStoreError
    |   +-- PartialCommitError
    |
    +-- NotAuthorizedError

===============================================================================
PROPAGATION
===============================================================================

- ValidationError is raised before any write is attempted.
- ConflictError on a membership add triggers the compensation of the local
  mutation before it propagates.
- TransientError leaves the Dashboard Store unmodified. No workflow retries
  automatically; the caller resubmits.
- PartialCommitError marks a multi-write sequence that stopped after its
  first write. The reconciliation job repairs it.
"""


class BudgetKernelError(Exception):
    """
    Base exception for all budget kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "BUDGET_KERNEL_ERROR"


# Not found


class NotFoundError(BudgetKernelError):
    """A referenced record is absent under the caller's visible scope."""

    code: str = "NOT_FOUND"


class ProjectNotFoundError(NotFoundError):
    """Project with given ID was not found for the tenant."""

    code: str = "PROJECT_NOT_FOUND"

    def __init__(self, tenant_id: str, project_id: str):
        self.tenant_id = tenant_id
        self.project_id = project_id
        super().__init__(f"Project not found: {tenant_id}/{project_id}")


class PhaseNotFoundError(NotFoundError):
    """Phase with given ID was not found under the project."""

    code: str = "PHASE_NOT_FOUND"

    def __init__(self, project_id: str, phase_id: str):
        self.project_id = project_id
        self.phase_id = phase_id
        super().__init__(f"Phase not found: {phase_id} in project {project_id}")


class ExpenseNotFoundError(NotFoundError):
    """Expense not found under any project the caller may act on."""

    code: str = "EXPENSE_NOT_FOUND"

    def __init__(self, expense_id: str, searched_projects: int = 0):
        self.expense_id = expense_id
        self.searched_projects = searched_projects
        super().__init__(
            f"Expense not found: {expense_id} "
            f"(searched {searched_projects} project(s))"
        )


class DelegationNotFoundError(NotFoundError):
    """Project has no current delegation record."""

    code: str = "DELEGATION_NOT_FOUND"

    def __init__(self, project_id: str, record_id: str | None = None):
        self.project_id = project_id
        self.record_id = record_id
        detail = f" (record {record_id})" if record_id else ""
        super().__init__(f"No current delegation for project {project_id}{detail}")


class ExtensionRequestNotFoundError(NotFoundError):
    """Phase extension request not found under its phase."""

    code: str = "EXTENSION_REQUEST_NOT_FOUND"

    def __init__(self, phase_id: str, request_id: str):
        self.phase_id = phase_id
        self.request_id = request_id
        super().__init__(f"Extension request not found: {request_id} in phase {phase_id}")


class DocumentNotFoundError(NotFoundError):
    """Document store update targeted a missing document."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Document not found: {path}")


# Conflict


class ConflictError(BudgetKernelError):
    """The requested change collides with the current stored state."""

    code: str = "CONFLICT"


class MembershipConflictError(ConflictError):
    """Member is already part of the project's team."""

    code: str = "MEMBERSHIP_CONFLICT"

    def __init__(self, project_id: str, member_id: str):
        self.project_id = project_id
        self.member_id = member_id
        super().__init__(f"User is already a team member: {member_id} in {project_id}")


class DelegationConflictError(ConflictError):
    """The current delegation record changed while it was being superseded."""

    code: str = "DELEGATION_CONFLICT"

    def __init__(self, project_id: str, record_id: str, reason: str):
        self.project_id = project_id
        self.record_id = record_id
        self.reason = reason
        super().__init__(
            f"Delegation {record_id} on project {project_id} conflicts: {reason}"
        )


class PreconditionFailedError(ConflictError):
    """Compare-and-set update found different field values than expected."""

    code: str = "PRECONDITION_FAILED"

    def __init__(self, path: str, fields: list[str]):
        self.path = path
        self.fields = fields
        super().__init__(f"Precondition failed on {path} for fields {fields}")


class ExpenseAlreadyDecidedError(ConflictError):
    """Expense already left PENDING; terminal states are not re-decided."""

    code: str = "EXPENSE_ALREADY_DECIDED"

    def __init__(self, expense_id: str, current_status: str):
        self.expense_id = expense_id
        self.current_status = current_status
        super().__init__(f"Expense {expense_id} is already {current_status}")


class RequestAlreadyResolvedError(ConflictError):
    """Extension request already left PENDING."""

    code: str = "REQUEST_ALREADY_RESOLVED"

    def __init__(self, request_id: str, current_status: str):
        self.request_id = request_id
        self.current_status = current_status
        super().__init__(f"Extension request {request_id} is already {current_status}")


class DuplicateNameError(ConflictError):
    """A department or phase name already exists in scope (case-insensitive)."""

    code: str = "DUPLICATE_NAME"

    def __init__(self, kind: str, name: str, scope: str):
        self.kind = kind
        self.name = name
        self.scope = scope
        super().__init__(f"{kind} named '{name}' already exists in {scope}")


# Validation


class ValidationError(BudgetKernelError):
    """Input rejected before any write was attempted."""

    code: str = "VALIDATION_ERROR"


class LineItemValidationError(ValidationError):
    """A line item field is missing or not a non-negative decimal."""

    code: str = "LINE_ITEM_INVALID"

    def __init__(self, field: str, value: object, reason: str, index: int | None = None):
        self.field = field
        self.value = value
        self.reason = reason
        self.index = index
        where = f" (line {index + 1})" if index is not None else ""
        super().__init__(f"Invalid line item {field}{where}: {reason}")


class EmptyNameError(ValidationError):
    """A department or phase name is empty after trimming."""

    code: str = "EMPTY_NAME"

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"{kind} name must not be empty")


class InvalidDateError(ValidationError):
    """A date string does not match the stored date format."""

    code: str = "INVALID_DATE"

    def __init__(self, field: str, value: object, expected_format: str):
        self.field = field
        self.value = value
        self.expected_format = expected_format
        super().__init__(
            f"Invalid {field}: {value!r} (expected format {expected_format})"
        )


class DelegationWindowError(ValidationError):
    """A delegation window is in the past, inverted, or too long."""

    code: str = "DELEGATION_WINDOW_INVALID"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid delegation window: {reason}")


# Transient


class TransientError(BudgetKernelError):
    """Remote I/O failed. Retryable by resubmission."""

    code: str = "TRANSIENT_ERROR"


class TransientStoreError(TransientError):
    """The document store failed to complete an operation."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, path: str, detail: str = ""):
        self.operation = operation
        self.path = path
        self.detail = detail
        suffix = f": {detail}" if detail else ""
        super().__init__(f"Store {operation} failed for {path}{suffix}")


class PartialCommitError(TransientError):
    """A multi-write operation stopped after its first write committed."""

    code: str = "PARTIAL_COMMIT"

    def __init__(self, operation: str, committed: str, pending: str, cause: str):
        self.operation = operation
        self.committed = committed
        self.pending = pending
        self.cause = cause
        super().__init__(
            f"{operation} committed {committed} but not {pending}: {cause}"
        )


# Authorization


class NotAuthorizedError(BudgetKernelError):
    """Caller lacks the authority the operation requires."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, actor_id: str, action: str):
        self.actor_id = actor_id
        self.action = action
        super().__init__(f"{actor_id} is not authorized to {action}")
