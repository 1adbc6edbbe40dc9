"""
Draw Domain Models (``billing_modules.draws.models``).

A draw is a periodic billing package: a set of per-cost-code invoice
slices (``DrawLine``) plus change-order billings, submitted to the
lender and later funded.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from billing_kernel.db.types import ZERO
from billing_kernel.domain.statuses import DrawStatus


@dataclass(frozen=True)
class DrawLine:
    invoice_id: UUID
    cost_code_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class ChangeOrderBilling:
    change_order_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class Draw:
    id: UUID
    job_id: UUID
    draw_number: int
    status: DrawStatus
    total_amount: Decimal
    is_current_draft: bool = False
    locked_at: datetime | None = None
    submitted_at: datetime | None = None
    funded_at: datetime | None = None
    funded_amount: Decimal | None = None
    funding_difference: Decimal | None = None
    lines: tuple[DrawLine, ...] = ()
    change_order_billings: tuple[ChangeOrderBilling, ...] = ()

    @property
    def invoice_ids(self) -> tuple[UUID, ...]:
        seen: list[UUID] = []
        for line in self.lines:
            if line.invoice_id not in seen:
                seen.append(line.invoice_id)
        return tuple(seen)

    def billed_for(self, invoice_id: UUID) -> Decimal:
        return sum((line.amount for line in self.lines if line.invoice_id == invoice_id), ZERO)
