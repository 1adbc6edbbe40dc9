"""
Audit activity detail variants (``billing_kernel.domain.activity``).

Every invoice or draw activity row stores one of these frozen variants,
keyed by ``kind`` (which is also the activity's action name), instead of a
free-form details map.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar
from uuid import UUID

from billing_kernel.domain.tagged import dumps_variant, loads_variant


# ---------------------------------------------------------------------------
# Invoice activity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvoiceCoded:
    kind: ClassVar[str] = "coded"
    allocated_total: Decimal
    line_count: int
    previous_status: str


@dataclass(frozen=True)
class InvoiceApproved:
    kind: ClassVar[str] = "approved"
    allocated_total: Decimal
    remaining_unbilled: Decimal
    partial: bool = False
    po_overage_overridden: bool = False


@dataclass(frozen=True)
class InvoiceDenied:
    kind: ClassVar[str] = "denied"
    reason: str
    previous_status: str


@dataclass(frozen=True)
class InvoiceUnapproved:
    kind: ClassVar[str] = "unapproved"
    reason: str | None = None


@dataclass(frozen=True)
class InvoiceResubmitted:
    kind: ClassVar[str] = "resubmitted"
    previous_denial_reason: str | None = None


@dataclass(frozen=True)
class InvoiceAddedToDraw:
    kind: ClassVar[str] = "added_to_draw"
    draw_id: UUID
    draw_number: int
    billed_this_draw: Decimal
    billed_to_date: Decimal


@dataclass(frozen=True)
class InvoiceRemovedFromDraw:
    kind: ClassVar[str] = "removed_from_draw"
    draw_id: UUID
    draw_number: int
    released_amount: Decimal


@dataclass(frozen=True)
class InvoicePartialBilled:
    kind: ClassVar[str] = "partial_billed"
    draw_id: UUID
    billed_to_date: Decimal
    remaining: Decimal


@dataclass(frozen=True)
class InvoicePaid:
    kind: ClassVar[str] = "paid"
    draw_id: UUID
    paid_this_draw: Decimal
    paid_to_date: Decimal


@dataclass(frozen=True)
class InvoiceUnpaid:
    kind: ClassVar[str] = "unpaid"
    reversed_paid_amount: Decimal
    reason: str | None = None


@dataclass(frozen=True)
class InvoiceRepaid:
    kind: ClassVar[str] = "repaid"
    paid_amount: Decimal
    draw_ids: tuple[UUID, ...]


@dataclass(frozen=True)
class InvoiceSplit:
    kind: ClassVar[str] = "split"
    child_ids: tuple[UUID, ...]
    child_amounts: tuple[Decimal, ...]


@dataclass(frozen=True)
class InvoiceUnsplit:
    kind: ClassVar[str] = "unsplit"
    removed_child_ids: tuple[UUID, ...]


@dataclass(frozen=True)
class InvoiceSplitReconciled:
    kind: ClassVar[str] = "split_reconciled"
    child_count: int


@dataclass(frozen=True)
class InvoiceSplitReopened:
    kind: ClassVar[str] = "split_reopened"
    child_id: UUID


@dataclass(frozen=True)
class InvoiceUndone:
    kind: ClassVar[str] = "undone"
    undo_id: UUID
    undone_action: str
    restored_status: str


INVOICE_ACTIVITY_TYPES: dict[str, type] = {
    cls.kind: cls
    for cls in (
        InvoiceCoded,
        InvoiceApproved,
        InvoiceDenied,
        InvoiceUnapproved,
        InvoiceResubmitted,
        InvoiceAddedToDraw,
        InvoiceRemovedFromDraw,
        InvoicePartialBilled,
        InvoicePaid,
        InvoiceUnpaid,
        InvoiceRepaid,
        InvoiceSplit,
        InvoiceUnsplit,
        InvoiceSplitReconciled,
        InvoiceSplitReopened,
        InvoiceUndone,
    )
}


# ---------------------------------------------------------------------------
# Draw activity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DrawCreated:
    kind: ClassVar[str] = "created"
    draw_number: int


@dataclass(frozen=True)
class DrawInvoicesAdded:
    kind: ClassVar[str] = "invoices_added"
    invoice_ids: tuple[UUID, ...]
    total_after: Decimal


@dataclass(frozen=True)
class DrawInvoiceRemoved:
    kind: ClassVar[str] = "invoice_removed"
    invoice_id: UUID
    total_after: Decimal


@dataclass(frozen=True)
class DrawChangeOrderBilled:
    kind: ClassVar[str] = "change_order_billed"
    change_order_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class DrawSubmitted:
    kind: ClassVar[str] = "submitted"
    total_amount: Decimal
    invoice_count: int
    kicked_back_invoice_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class DrawUnsubmitted:
    kind: ClassVar[str] = "unsubmitted"
    reason: str | None = None


@dataclass(frozen=True)
class DrawFunded:
    kind: ClassVar[str] = "funded"
    funded_amount: Decimal
    funding_difference: Decimal
    status: str
    paid_invoice_ids: tuple[UUID, ...] = ()


DRAW_ACTIVITY_TYPES: dict[str, type] = {
    cls.kind: cls
    for cls in (
        DrawCreated,
        DrawInvoicesAdded,
        DrawInvoiceRemoved,
        DrawChangeOrderBilled,
        DrawSubmitted,
        DrawUnsubmitted,
        DrawFunded,
    )
}


def serialize_activity(details) -> str:
    return dumps_variant(details)


def deserialize_invoice_activity(raw: str):
    return loads_variant(INVOICE_ACTIVITY_TYPES, raw)


def deserialize_draw_activity(raw: str):
    return loads_variant(DRAW_ACTIVITY_TYPES, raw)
