"""
Typed exception hierarchy for the textbook kernel.

Every error has a typed class (catch by type, not message), a ``code``
class attribute (machine-readable, API-safe) and structured attributes
(not just a message string).  The administrative UI reports these to the
user and lets them retry with corrected input; none of them leaves the
ledger or requisition store partially mutated, because every multi-step
operation runs inside one transaction that is rolled back on error.

    TextbookKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- MissingSelectionError
    |   +-- ExceedsPendingQuantityError
    |   +-- PackagingMismatchError
    |   +-- DuplicateRequisitionError
    |   +-- RequisitionWindowClosedError
    |   +-- StockCorrectionError
    |   +-- OutOfScopeError
    |   +-- InvalidDestinationError
    |   +-- BookReferencedError
    |   +-- DisabledBookError
    |
    +-- InsufficientStockError
    |
    +-- InvalidTransitionError
    |   +-- NotCurrentApproverError
    |   +-- RequisitionNotDispatchableError
    |   +-- DocumentNotDeliveredError
    |
    +-- NotFoundError
    |   +-- BookNotFoundError
    |   +-- NodeNotFoundError
    |   +-- RequisitionNotFoundError
    |   +-- DispatchDocumentNotFoundError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ConfigError

Handling patterns:

    try:
        kernel.issue_dispatch(...)
    except InsufficientStockError as e:
        return {"error": e.code, "book": e.book_id, "available": e.available}
    except ConcurrencyError:
        # UnitOfWork already retried; surface as "try again"
        ...
"""


class TextbookKernelError(Exception):
    """
    Base exception for all textbook kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "TEXTBOOK_KERNEL_ERROR"


# Validation (malformed input, rejected before any mutation)


class ValidationError(TextbookKernelError):
    """Malformed or out-of-range input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str):
        self.detail = message
        super().__init__(message)


class InvalidQuantityError(ValidationError):
    """Quantity is not a whole number in the permitted range."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: object, minimum: int = 1):
        self.field = field
        self.value = value
        self.minimum = minimum
        super().__init__(
            f"{field} must be a whole number >= {minimum}, got {value!r}"
        )


class MissingSelectionError(ValidationError):
    """A required selection (book, school, destination, line) is missing."""

    code: str = "MISSING_SELECTION"

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Required selection missing: {field}")


class ExceedsPendingQuantityError(ValidationError):
    """Dispatch quantity exceeds the requisition's pending quantity."""

    code: str = "EXCEEDS_PENDING_QUANTITY"

    def __init__(self, requisition_id: str, pending: int, requested: int):
        self.requisition_id = requisition_id
        self.pending = pending
        self.requested = requested
        super().__init__(
            f"Dispatch of {requested} exceeds pending quantity {pending} "
            f"for requisition {requisition_id}"
        )


class PackagingMismatchError(ValidationError):
    """Box/packet/loose breakdown does not add up to the dispatched quantity."""

    code: str = "PACKAGING_MISMATCH"

    def __init__(self, book_id: str, packaged_total: int, quantity: int):
        self.book_id = book_id
        self.packaged_total = packaged_total
        self.quantity = quantity
        super().__init__(
            f"Packaging for book {book_id} totals {packaged_total}, "
            f"but {quantity} copies are dispatched"
        )


class DuplicateRequisitionError(ValidationError):
    """
    Same reqId + book already exists with a different payload.

    A retry with an identical payload is not an error; it returns the
    existing line.
    """

    code: str = "DUPLICATE_REQUISITION"

    def __init__(self, req_id: str, book_id: str):
        self.req_id = req_id
        self.book_id = book_id
        super().__init__(
            f"Requisition {req_id} already has a different line for book {book_id}"
        )


class RequisitionWindowClosedError(ValidationError):
    """The requisition window for this level is not open."""

    code: str = "REQUISITION_WINDOW_CLOSED"

    def __init__(self, level: str, message: str):
        self.level = level
        super().__init__(f"Requisition window closed for {level}: {message}")


class StockCorrectionError(ValidationError):
    """A correction entry would lower a stock balance."""

    code: str = "STOCK_CORRECTION_REJECTED"

    def __init__(self, level: str, owner_id: str, book_id: str, current: int, requested: int):
        self.level = level
        self.owner_id = owner_id
        self.book_id = book_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Correction for {level}/{owner_id} book {book_id} would lower "
            f"stock from {current} to {requested}; decrements happen only by dispatch"
        )


class OutOfScopeError(ValidationError):
    """A node is not within the hierarchy subtree the operation requires."""

    code: str = "OUT_OF_SCOPE"

    def __init__(self, node: str, scope: str):
        self.node = node
        self.scope = scope
        super().__init__(f"{node} is not within {scope}")


class InvalidDestinationError(ValidationError):
    """Destination tier is not below the issuing tier."""

    code: str = "INVALID_DESTINATION"

    def __init__(self, source: str, destination: str):
        self.source = source
        self.destination = destination
        super().__init__(
            f"{source} cannot dispatch to {destination}: destination must be a lower tier"
        )


class BookReferencedError(ValidationError):
    """Book cannot be deleted or re-keyed while referenced."""

    code: str = "BOOK_REFERENCED"

    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__(
            f"Book {book_id} is referenced by requisitions or stock and cannot be changed"
        )


class DisabledBookError(ValidationError):
    """Book is disabled in the catalog and cannot be requested."""

    code: str = "BOOK_DISABLED"

    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__(f"Book is disabled: {book_id}")


# Stock


class InsufficientStockError(TextbookKernelError):
    """Applying the delta would make a stock balance negative."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, level: str, owner_id: str, book_id: str, available: int, requested: int):
        self.level = level
        self.owner_id = owner_id
        self.book_id = book_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock at {level}/{owner_id} for book {book_id}: "
            f"available {available}, requested {requested}"
        )


# Transitions


class InvalidTransitionError(TextbookKernelError):
    """Status change not permitted from the current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, from_state: str, to_state: str, reason: str = ""):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        message = f"{entity_type} {entity_id}: cannot go from {from_state} to {to_state}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class NotCurrentApproverError(InvalidTransitionError):
    """The acting level is not the one the requisition is waiting on."""

    code: str = "NOT_CURRENT_APPROVER"

    def __init__(self, requisition_id: str, actor_level: str, awaiting_level: str | None, to_state: str):
        self.actor_level = actor_level
        self.awaiting_level = awaiting_level
        super().__init__(
            "Requisition",
            requisition_id,
            f"awaiting {awaiting_level or 'nobody'}",
            to_state,
            reason=f"{actor_level} is not the current approver",
        )


class RequisitionNotDispatchableError(InvalidTransitionError):
    """New copies dispatched against a requisition that is not APPROVED."""

    code: str = "REQUISITION_NOT_DISPATCHABLE"

    def __init__(self, requisition_id: str, status: str):
        self.status = status
        super().__init__(
            "Requisition",
            requisition_id,
            status,
            "DISPATCHED",
            reason="only APPROVED requisitions take new copies; held copies may still be forwarded",
        )


class DocumentNotDeliveredError(InvalidTransitionError):
    """Receipt recorded against a document that is not DELIVERED."""

    code: str = "DOCUMENT_NOT_DELIVERED"

    def __init__(self, challan_no: str, status: str):
        self.challan_no = challan_no
        self.status = status
        super().__init__(
            "DispatchDocument",
            challan_no,
            status,
            "RECEIVED",
            reason="only DELIVERED documents can be received",
        )


# Not found


class NotFoundError(TextbookKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"


class BookNotFoundError(NotFoundError):
    code: str = "BOOK_NOT_FOUND"

    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__(f"Book not found: {book_id}")


class NodeNotFoundError(NotFoundError):
    code: str = "NODE_NOT_FOUND"

    def __init__(self, level: str, code: str):
        self.level = level
        self.node_code = code
        super().__init__(f"Hierarchy node not found: {level}/{code}")


class RequisitionNotFoundError(NotFoundError):
    code: str = "REQUISITION_NOT_FOUND"

    def __init__(self, requisition_id: str):
        self.requisition_id = requisition_id
        super().__init__(f"Requisition not found: {requisition_id}")


class DispatchDocumentNotFoundError(NotFoundError):
    code: str = "DISPATCH_DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Dispatch document not found: {document_id}")


# Concurrency


class ConcurrencyError(TextbookKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Configuration


class ConfigError(TextbookKernelError):
    """Configuration file is missing or malformed."""

    code: str = "CONFIG_ERROR"

    def __init__(self, source: str, problem: str):
        self.source = source
        self.problem = problem
        super().__init__(f"Invalid configuration {source}: {problem}")
