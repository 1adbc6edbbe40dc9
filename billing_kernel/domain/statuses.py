"""Status enumerations shared across the billing core."""

from enum import Enum


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states.

    ``split`` and ``reconciled`` apply only to split parents.
    """
    RECEIVED = "received"
    NEEDS_APPROVAL = "needs_approval"
    APPROVED = "approved"
    IN_DRAW = "in_draw"
    PAID = "paid"
    DENIED = "denied"
    SPLIT = "split"
    RECONCILED = "reconciled"


class DrawStatus(str, Enum):
    """Draw lifecycle states."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    FUNDED = "funded"
    PARTIALLY_FUNDED = "partially_funded"
    OVERFUNDED = "overfunded"


class PurchaseOrderStatus(str, Enum):
    """Purchase order states."""
    DRAFT = "draft"
    OPEN = "open"
    ACTIVE = "active"
    CLOSED = "closed"
    VOIDED = "voided"


class ReviewFlag(str, Enum):
    """Typed review markers attached to an invoice."""
    SPLIT_CHILD = "split_child"
    PARTIAL_BILLED = "partial_billed"
    PO_OVERAGE = "po_overage"
    NEEDS_RECODE = "needs_recode"


# Statuses whose allocations count toward billed budget figures.
BILLED_STATUSES = frozenset({InvoiceStatus.IN_DRAW.value, InvoiceStatus.PAID.value})

# Statuses that hold PO capacity and count as pending spend.
COMMITTED_INVOICE_STATUSES = frozenset({
    InvoiceStatus.APPROVED.value,
    InvoiceStatus.IN_DRAW.value,
    InvoiceStatus.PAID.value,
})

# Statuses excluded from purchase-order invoiced totals.
NON_INVOICED_STATUSES = frozenset({
    InvoiceStatus.DENIED.value,
    InvoiceStatus.SPLIT.value,
    InvoiceStatus.RECONCILED.value,
})

# Split children that no longer hold a parent open.
SETTLED_CHILD_STATUSES = frozenset({InvoiceStatus.PAID.value, InvoiceStatus.DENIED.value})

# Purchase orders whose lines count as committed spend.
COMMITTED_PO_STATUSES = frozenset({
    PurchaseOrderStatus.OPEN.value,
    PurchaseOrderStatus.ACTIVE.value,
})

FUNDED_DRAW_STATUSES = frozenset({
    DrawStatus.FUNDED.value,
    DrawStatus.PARTIALLY_FUNDED.value,
    DrawStatus.OVERFUNDED.value,
})
