"""
Typed exception hierarchy for the billing core.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BillingError:

    BillingError (base)
    |
    +-- ValidationFailedError
    |   +-- OverAllocatedError
    |   +-- MissingCostCodeError
    |   +-- PartialApprovalNotConfirmedError
    |   +-- POOverageError
    |
    +-- InvalidTransitionError
    |
    +-- NotFoundError
    |
    +-- ConflictError
    |   +-- EntityLockedError
    |   +-- DuplicateDraftDrawError
    |
    +-- UndoError
    |   +-- UndoNotFoundError
    |   +-- UndoExpiredError
    |
    +-- PersistenceError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                            | When Raised
-------------|---------------------------------|-----------------------------------------
Validation   | VALIDATION_FAILED               | Invalid field or amount
             | OVER_ALLOCATED                  | Allocations exceed invoice / unbilled amount
             | MISSING_COST_CODE               | Allocation line without a cost code
             | PARTIAL_APPROVAL_NOT_CONFIRMED  | Partial approval without explicit confirmation
             | PO_OVERAGE                      | Approval would exceed PO capacity
-------------|---------------------------------|-----------------------------------------
Transition   | INVALID_TRANSITION              | Status guard violated
-------------|---------------------------------|-----------------------------------------
Lookup       | NOT_FOUND                       | Entity id unresolved
-------------|---------------------------------|-----------------------------------------
Conflict     | ENTITY_LOCKED                   | Advisory lock held by another owner
             | DUPLICATE_DRAFT_DRAW            | Job already has a draft draw
-------------|---------------------------------|-----------------------------------------
Undo         | UNDO_NOT_FOUND                  | Undo entry missing or already consumed
             | UNDO_EXPIRED                    | Undo window elapsed
-------------|---------------------------------|-----------------------------------------
Store        | PERSISTENCE_ERROR               | Underlying ledger store failure

===============================================================================
HANDLING PATTERNS
===============================================================================

Validation and transition errors are caller mistakes: report them and do not
retry.  ``EntityLockedError`` and ``PersistenceError`` are the only errors
flagged ``retryable``; everything the ledger facade raises after a
``PersistenceError`` has already been rolled back.

    try:
        ledger.approve_invoice(invoice_id, approved_by="pm")
    except PartialApprovalNotConfirmedError as e:
        ask_user(f"Approve {e.allocated} of {e.remaining}?")
    except InvalidTransitionError as e:
        return {"error": e.code, "current": e.current_status}
"""

from decimal import Decimal


class BillingError(Exception):
    """
    Base exception for all billing core errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification.
    """

    code: str = "BILLING_ERROR"
    retryable: bool = False


# Validation


class ValidationFailedError(BillingError):
    """A supplied value or allocation set is invalid."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class OverAllocatedError(ValidationFailedError):
    """Allocations sum to more than the amount available for them."""

    code: str = "OVER_ALLOCATED"

    def __init__(self, invoice_id: str, allocated: Decimal, available: Decimal):
        self.invoice_id = invoice_id
        self.allocated = allocated
        self.available = available
        super().__init__(
            f"Invoice {invoice_id} over-allocated: "
            f"{allocated} allocated vs {available} available",
            field="allocations",
        )


class MissingCostCodeError(ValidationFailedError):
    """One or more allocation lines have no cost code."""

    code: str = "MISSING_COST_CODE"

    def __init__(self, invoice_id: str, line_count: int):
        self.invoice_id = invoice_id
        self.line_count = line_count
        super().__init__(
            f"Invoice {invoice_id} has {line_count} allocation(s) without a cost code",
            field="cost_code_id",
        )


class PartialApprovalNotConfirmedError(ValidationFailedError):
    """Approving less than the remaining unbilled amount needs explicit consent."""

    code: str = "PARTIAL_APPROVAL_NOT_CONFIRMED"

    def __init__(self, invoice_id: str, allocated: Decimal, remaining: Decimal):
        self.invoice_id = invoice_id
        self.allocated = allocated
        self.remaining = remaining
        super().__init__(
            f"Invoice {invoice_id} allocations ({allocated}) are less than the "
            f"remaining unbilled amount ({remaining}); confirm partial approval"
        )


class POOverageError(ValidationFailedError):
    """Approval would push a purchase order past its total."""

    code: str = "PO_OVERAGE"

    def __init__(self, po_id: str, po_total: Decimal, projected: Decimal):
        self.po_id = po_id
        self.po_total = po_total
        self.projected = projected
        super().__init__(
            f"Purchase order {po_id} would be invoiced {projected} "
            f"against a total of {po_total}"
        )


# Transition


class InvalidTransitionError(BillingError):
    """The requested status change is not allowed from the current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        requested: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.requested = requested
        super().__init__(
            f"Cannot {requested} {entity_type} {entity_id} "
            f"from status '{current_status}'"
        )


# Lookup


class NotFoundError(BillingError):
    """An entity id did not resolve."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Conflict


class ConflictError(BillingError):
    """The operation collides with existing state."""

    code: str = "CONFLICT"


class EntityLockedError(ConflictError):
    """Another owner holds the advisory lock for the entity."""

    code: str = "ENTITY_LOCKED"
    retryable: bool = True

    def __init__(self, entity_type: str, entity_id: str, locked_by: str, expires_at):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.locked_by = locked_by
        self.expires_at = expires_at
        super().__init__(
            f"{entity_type} {entity_id} is locked by {locked_by} until {expires_at}"
        )


class DuplicateDraftDrawError(ConflictError):
    """The job already has a draft draw."""

    code: str = "DUPLICATE_DRAFT_DRAW"

    def __init__(self, job_id: str, existing_draw_id: str):
        self.job_id = job_id
        self.existing_draw_id = existing_draw_id
        super().__init__(
            f"Job {job_id} already has draft draw {existing_draw_id}"
        )


# Undo


class UndoError(BillingError):
    """Base exception for undo failures."""

    code: str = "UNDO_ERROR"


class UndoNotFoundError(UndoError):
    """Undo entry does not exist or was already consumed."""

    code: str = "UNDO_NOT_FOUND"

    def __init__(self, undo_id: str):
        self.undo_id = undo_id
        super().__init__(f"Undo not found or already used: {undo_id}")


class UndoExpiredError(UndoError):
    """Undo window has elapsed."""

    code: str = "UNDO_EXPIRED"

    def __init__(self, undo_id: str, expired_at):
        self.undo_id = undo_id
        self.expired_at = expired_at
        super().__init__(f"Undo {undo_id} expired at {expired_at}")


# Store


class PersistenceError(BillingError):
    """The ledger store rejected or failed an operation."""

    code: str = "PERSISTENCE_ERROR"
    retryable: bool = True

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}")
