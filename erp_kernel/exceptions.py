"""
Typed Exception Hierarchy for the Document Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the document engine (HTTP handlers, batch jobs, importers) must
react to failures precisely: a rejected status change is a 409 for the user,
a stale write is retried after a re-read, an unreachable counter store is
retried later.  Matching on message text is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)
  4. Every exception states whether it is RETRYABLE as-is

Example:
    try:
        service.change_status(order, "in_production", actor_id=user_id)
    except InvalidStatusTransitionError as e:
        return {"error": e.code, "from": e.from_status, "to": e.to_status}
    except ConcurrentModificationError:
        order = repository.find_by_id(order.id)   # re-read, then retry

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    DocumentEngineError (base)
    |
    +-- ValidationError
    |   +-- InvalidLineItemError
    |   +-- EmptyDocumentError
    |   +-- InvalidPaymentAmountError
    |   +-- InvalidReceiptError
    |
    +-- LifecycleError
    |   +-- InvalidStatusTransitionError
    |   +-- DocumentNotEditableError
    |   +-- DocumentNotFoundError
    |
    +-- NumberingError
    |   +-- NumberGenerationFailedError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- CollaboratorError
        +-- StockReservationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                       | Retryable | When Raised
-------------|----------------------------|-----------|------------------------------
Validation   | INVALID_LINE_ITEM          | no        | qty <= 0, rate < 0, bad discount/tax
             | EMPTY_DOCUMENT             | no        | no line items
             | INVALID_PAYMENT_AMOUNT     | no        | amount <= 0 or > outstanding
             | INVALID_RECEIPT            | no        | unknown product / over-receipt
-------------|----------------------------|-----------|------------------------------
Lifecycle    | INVALID_STATUS_TRANSITION  | no        | edge not in the graph, or amounts disagree
             | DOCUMENT_NOT_EDITABLE      | no        | line edit outside editable status
             | DOCUMENT_NOT_FOUND         | no        | repository lookup miss
-------------|----------------------------|-----------|------------------------------
Numbering    | NUMBER_GENERATION_FAILED   | yes       | counter store unreachable
-------------|----------------------------|-----------|------------------------------
Concurrency  | CONCURRENT_MODIFICATION    | yes       | stale version on save
-------------|----------------------------|-----------|------------------------------
Collaborator | STOCK_RESERVATION_FAILED   | no        | reservation refused

===============================================================================
"""

from decimal import Decimal


class DocumentEngineError(Exception):
    """
    Base exception for all document engine errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "DOCUMENT_ENGINE_ERROR"
    retryable: bool = False


# Validation-related exceptions


class ValidationError(DocumentEngineError):
    """Base exception for input validation failures."""

    code: str = "VALIDATION_ERROR"


class InvalidLineItemError(ValidationError):
    """A line item violates quantity, rate, discount or tax bounds."""

    code: str = "INVALID_LINE_ITEM"

    def __init__(self, line_index: int, reason: str):
        self.line_index = line_index
        self.reason = reason
        super().__init__(f"Line item {line_index + 1}: {reason}")


class EmptyDocumentError(ValidationError):
    """A document was submitted without any line items."""

    code: str = "EMPTY_DOCUMENT"

    def __init__(self, document_type: str | None = None):
        self.document_type = document_type
        label = document_type or "document"
        super().__init__(f"{label} must have at least one line item")


class InvalidPaymentAmountError(ValidationError):
    """Payment amount is not positive or exceeds the outstanding balance."""

    code: str = "INVALID_PAYMENT_AMOUNT"

    def __init__(self, invoice_id: str, amount: Decimal, outstanding: Decimal):
        self.invoice_id = invoice_id
        self.amount = amount
        self.outstanding = outstanding
        super().__init__(
            f"Invalid payment of {amount} on invoice {invoice_id}: "
            f"outstanding is {outstanding}"
        )


class InvalidReceiptError(ValidationError):
    """Goods receipt does not match the purchase order lines."""

    code: str = "INVALID_RECEIPT"

    def __init__(self, document_id: str, reason: str):
        self.document_id = document_id
        self.reason = reason
        super().__init__(f"Invalid receipt for {document_id}: {reason}")


# Lifecycle-related exceptions


class LifecycleError(DocumentEngineError):
    """Base exception for document lifecycle errors."""

    code: str = "LIFECYCLE_ERROR"


class InvalidStatusTransitionError(LifecycleError):
    """
    The requested status change is not an edge of the type's graph, or the
    document's amounts or quantities do not support the target status.
    """

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(
        self,
        document_type: str,
        from_status: str,
        to_status: str,
        reason: str | None = None,
    ):
        self.document_type = document_type
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        message = (
            f"Invalid {document_type} status transition "
            f"from {from_status} to {to_status}"
        )
        super().__init__(f"{message}: {reason}" if reason else message)


class DocumentNotEditableError(LifecycleError):
    """Line items cannot change in the document's current status."""

    code: str = "DOCUMENT_NOT_EDITABLE"

    def __init__(self, document_id: str, status: str):
        self.document_id = document_id
        self.status = status
        super().__init__(
            f"Document {document_id} is not editable in status {status}"
        )


class DocumentNotFoundError(LifecycleError):
    """Document with given ID was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


# Numbering-related exceptions


class NumberingError(DocumentEngineError):
    """Base exception for document numbering errors."""

    code: str = "NUMBERING_ERROR"


class NumberGenerationFailedError(NumberingError):
    """
    The sequence source could not allocate the next number.

    The caller must not persist a document without a number.  Safe to
    retry once the counter store is reachable again.
    """

    code: str = "NUMBER_GENERATION_FAILED"
    retryable: bool = True

    def __init__(self, scope_key: str, reason: str):
        self.scope_key = scope_key
        self.reason = reason
        super().__init__(
            f"Number generation failed for scope {scope_key}: {reason}"
        )


# Concurrency-related exceptions


class ConcurrencyError(DocumentEngineError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """
    The document changed since it was read.

    Raised by the persistence collaborator when the version token of the
    document being saved does not match the stored version.  Re-read the
    latest document and retry.
    """

    code: str = "CONCURRENT_MODIFICATION"
    retryable: bool = True

    def __init__(
        self,
        document_id: str,
        expected_version: int,
        actual_version: int | None,
    ):
        self.document_id = document_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Concurrent modification of document {document_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


# Collaborator-related exceptions


class CollaboratorError(DocumentEngineError):
    """Base exception for failures reported by external collaborators."""

    code: str = "COLLABORATOR_ERROR"


class StockReservationError(CollaboratorError):
    """Stock reservation was refused; the status change is aborted."""

    code: str = "STOCK_RESERVATION_FAILED"

    def __init__(self, document_id: str, reason: str):
        self.document_id = document_id
        self.reason = reason
        super().__init__(
            f"Stock reservation failed for document {document_id}: {reason}"
        )
