"""
Procurement Domain Models (``billing_modules.procurement.models``).

Frozen value objects for purchase orders, their line items and change
orders.  Purchase-order lines are committed (not yet billed) spend; a
change order's ``invoiced_amount`` is always the sum of the allocations
tagged with it.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from billing_kernel.domain.statuses import PurchaseOrderStatus


@dataclass(frozen=True)
class POLineItem:
    id: UUID
    purchase_order_id: UUID
    cost_code_id: UUID | None
    amount: Decimal
    invoiced_amount: Decimal
    description: str | None = None

    @property
    def remaining(self) -> Decimal:
        return self.amount - self.invoiced_amount


@dataclass(frozen=True)
class PurchaseOrder:
    id: UUID
    job_id: UUID
    po_number: str
    total_amount: Decimal
    status: PurchaseOrderStatus
    vendor_id: UUID | None = None
    line_items: tuple[POLineItem, ...] = ()


@dataclass(frozen=True)
class POLineRequest:
    """A line item supplied when a purchase order is created."""
    cost_code_id: UUID
    amount: Decimal
    description: str | None = None


@dataclass(frozen=True)
class ChangeOrder:
    id: UUID
    job_id: UUID
    change_order_number: str
    amount: Decimal
    invoiced_amount: Decimal
    status: str
    title: str | None = None
