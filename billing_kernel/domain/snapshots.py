"""
Undo snapshot variants (``billing_kernel.domain.snapshots``).

An undo entry's previous state is a discriminated union keyed by entity
type.  Each variant carries exactly the fields the undo path restores for
that entity, nothing more.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID

from billing_kernel.domain.tagged import dumps_variant, loads_variant


@dataclass(frozen=True)
class InvoiceSnapshot:
    """Restorable invoice header fields captured before a status action."""

    kind: ClassVar[str] = "invoice"

    status: str
    po_id: UUID | None
    billed_amount: Decimal
    paid_amount: Decimal
    fully_billed_at: datetime | None
    approved_at: datetime | None
    approved_by: str | None
    denied_at: datetime | None
    denial_reason: str | None
    review_flags: tuple[str, ...] = ()


@dataclass(frozen=True)
class AllocationLineSnapshot:
    cost_code_id: UUID | None
    amount: Decimal
    change_order_id: UUID | None = None
    po_line_item_id: UUID | None = None


@dataclass(frozen=True)
class AllocationSnapshot:
    """An invoice's coding (allocation lines plus status) before a recode."""

    kind: ClassVar[str] = "allocation"

    invoice_status: str
    lines: tuple[AllocationLineSnapshot, ...] = ()

    @property
    def total(self) -> Decimal:
        return sum((line.amount for line in self.lines), Decimal("0"))


UndoSnapshot = InvoiceSnapshot | AllocationSnapshot

SNAPSHOT_TYPES: dict[str, type] = {
    InvoiceSnapshot.kind: InvoiceSnapshot,
    AllocationSnapshot.kind: AllocationSnapshot,
}


def serialize_snapshot(snapshot: UndoSnapshot) -> str:
    return dumps_variant(snapshot)


def deserialize_snapshot(raw: str) -> UndoSnapshot:
    return loads_variant(SNAPSHOT_TYPES, raw)
