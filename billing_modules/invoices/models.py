"""
Invoice Domain Models (``billing_modules.invoices.models``).

Frozen value objects returned by ``InvoiceService``.  ``AllocationLine``
(from ``billing_engines.allocation``) is the input shape for coding.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from billing_engines.allocation import AllocationLine
from billing_kernel.db.types import ZERO
from billing_kernel.domain.statuses import InvoiceStatus, ReviewFlag


@dataclass(frozen=True)
class Allocation:
    id: UUID
    invoice_id: UUID
    cost_code_id: UUID | None
    amount: Decimal
    change_order_id: UUID | None = None
    po_line_item_id: UUID | None = None


@dataclass(frozen=True)
class Invoice:
    """A vendor invoice and its current coding."""
    id: UUID
    job_id: UUID
    amount: Decimal
    status: InvoiceStatus
    billed_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    vendor_id: UUID | None = None
    invoice_number: str | None = None
    po_id: UUID | None = None
    first_draw_id: UUID | None = None
    fully_billed_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    denied_at: datetime | None = None
    denial_reason: str | None = None
    is_split_parent: bool = False
    parent_invoice_id: UUID | None = None
    review_flags: tuple[ReviewFlag, ...] = ()
    allocations: tuple[Allocation, ...] = ()

    @property
    def allocated_total(self) -> Decimal:
        return sum((a.amount for a in self.allocations), ZERO)

    @property
    def remaining_unbilled(self) -> Decimal:
        return max(self.amount - max(self.billed_amount, self.paid_amount), ZERO)


@dataclass(frozen=True)
class SplitPart:
    """One child of a split: its amount and optional overrides."""
    amount: Decimal
    invoice_number: str | None = None
    job_id: UUID | None = None
    po_id: UUID | None = None


__all__ = ["Allocation", "AllocationLine", "Invoice", "SplitPart"]
