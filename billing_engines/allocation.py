"""
Module: billing_engines.allocation
Responsibility:
    Allocation Validator and draw slicing.  Checks an invoice's cost-code
    allocations against its amount, computes the amount still unbilled, and
    scales allocations down to the slice a single draw may bill.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Inputs are frozen
    dataclasses built by the invoice and draw services.

Invariants enforced:
    - sum(allocations) <= invoice.amount (+ tolerance), else OverAllocatedError.
    - Every allocation carries a cost code, else MissingCostCodeError.
    - Draw slices sum exactly to the requested target; each slice stays
      within [0, its allocation] (largest-remainder cent distribution).

Failure modes:
    - MissingCostCodeError / OverAllocatedError / ValidationFailedError
      from validate_allocations.
    - ValueError from compute_draw_slices if the target exceeds the
      allocation total.

Usage:
    from billing_engines.allocation import validate_allocations, remaining_unbilled

    total = validate_allocations(invoice, lines)
    left = remaining_unbilled(invoice)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from uuid import UUID

from billing_engines.tracer import traced_engine
from billing_kernel.config import AMOUNT_TOLERANCE
from billing_kernel.db.types import ZERO, round_money
from billing_kernel.exceptions import (
    MissingCostCodeError,
    OverAllocatedError,
    ValidationFailedError,
)
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class InvoiceAmounts:
    """The money fields of an invoice the validator needs."""

    invoice_id: UUID
    amount: Decimal
    billed_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO


@dataclass(frozen=True)
class AllocationLine:
    """One cost-code allocation of an invoice."""

    cost_code_id: UUID | None
    amount: Decimal
    change_order_id: UUID | None = None
    po_line_item_id: UUID | None = None


@dataclass(frozen=True)
class DrawSlice:
    """The portion of an invoice billed to one cost code in one draw."""

    cost_code_id: UUID
    amount: Decimal


def allocation_total(allocations: Sequence[AllocationLine]) -> Decimal:
    return round_money(sum((a.amount for a in allocations), ZERO))


def remaining_unbilled(invoice: InvoiceAmounts) -> Decimal:
    """``amount - max(billed, paid)``, floored at zero."""
    consumed = max(invoice.billed_amount, invoice.paid_amount)
    return max(round_money(invoice.amount - consumed), ZERO)


def validate_allocations(
    invoice: InvoiceAmounts,
    allocations: Sequence[AllocationLine],
    tolerance: Decimal = AMOUNT_TOLERANCE,
) -> Decimal:
    """
    Validate an allocation set against its invoice.

    Returns:
        The allocation total.

    Raises:
        MissingCostCodeError: any line has no cost code.
        ValidationFailedError: any line amount is zero or negative.
        OverAllocatedError: total exceeds invoice amount + tolerance.
    """
    missing = sum(1 for a in allocations if a.cost_code_id is None)
    if missing:
        raise MissingCostCodeError(str(invoice.invoice_id), missing)

    for a in allocations:
        if a.amount <= ZERO:
            raise ValidationFailedError(
                f"Allocation amount must be positive, got {a.amount}",
                field="amount",
            )

    total = allocation_total(allocations)
    if total > invoice.amount + tolerance:
        raise OverAllocatedError(str(invoice.invoice_id), total, invoice.amount)
    return total


def merge_by_cost_code(allocations: Sequence[AllocationLine]) -> tuple[DrawSlice, ...]:
    """Collapse allocation lines to one amount per cost code, first-seen order."""
    merged: dict[UUID, Decimal] = {}
    for a in allocations:
        if a.cost_code_id is None:
            continue
        merged[a.cost_code_id] = merged.get(a.cost_code_id, ZERO) + a.amount
    return tuple(DrawSlice(cc, round_money(amt)) for cc, amt in merged.items())


@traced_engine("draw_slicing", "1.0", fingerprint_fields=("allocations", "target"))
def compute_draw_slices(
    *,
    allocations: Sequence[AllocationLine],
    target: Decimal,
) -> tuple[DrawSlice, ...]:
    """
    Scale an invoice's allocations so they sum to ``target``.

    Preconditions:
        0 <= target <= allocation total.
    Postconditions:
        One slice per cost code; slices sum exactly to ``target``.  When
        scaling down, each slice is floored to the cent and leftover cents
        go to the largest fractional remainders (ties: earliest line).
    """
    shares = merge_by_cost_code(allocations)
    total = round_money(sum((s.amount for s in shares), ZERO))
    target = round_money(target)

    if target < ZERO or target > total:
        raise ValueError(f"Draw slice target {target} outside [0, {total}]")
    if target == total:
        return shares
    if target == ZERO:
        return tuple(DrawSlice(s.cost_code_id, ZERO) for s in shares)

    floors: list[Decimal] = []
    remainders: list[tuple[Decimal, int]] = []
    for i, share in enumerate(shares):
        exact = share.amount * target / total
        floored = exact.quantize(_CENT, rounding=ROUND_DOWN)
        floors.append(floored)
        remainders.append((exact - floored, i))

    leftover_cents = int((target - sum(floors, ZERO)) / _CENT)
    for _, i in sorted(remainders, key=lambda r: (-r[0], r[1]))[:leftover_cents]:
        floors[i] += _CENT

    slices = tuple(DrawSlice(s.cost_code_id, round_money(f)) for s, f in zip(shares, floors))

    logger.debug("draw_slices_computed", extra={
        "allocation_total": str(total),
        "target": str(target),
        "slice_count": len(slices),
    })
    return slices
