"""
Module: billing_engines.rollup
Responsibility:
    Budget Rollup Engine.  Recomputes committed / billed / paid / pending /
    projected figures per cost code from the primary ledgers (PO line
    items and invoice-level allocations).

Architecture position:
    Engines -- pure calculation, zero I/O.  ``BudgetService`` loads the
    inputs and persists the stored figures.

Invariants enforced:
    - committed = sum of line amounts on open/active purchase orders.
    - billed    = sum of allocations whose invoice is in_draw or paid.
    - paid      = sum of allocations whose invoice is paid.
    - pending   = sum of allocations whose invoice is approved, in_draw or
                  paid and not tied to a purchase order (spend the PO
                  commitment does not already cover).
    - projected (open line)   = max(budgeted, committed + pending)
      projected (closed line) = committed + pending
    - Idempotent: identical inputs yield identical figures.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from billing_engines.tracer import traced_engine
from billing_kernel.db.types import ZERO, round_money
from billing_kernel.domain.statuses import (
    BILLED_STATUSES,
    COMMITTED_INVOICE_STATUSES,
    COMMITTED_PO_STATUSES,
    InvoiceStatus,
)
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.rollup")


@dataclass(frozen=True)
class BudgetLineState:
    cost_code_id: UUID
    budgeted_amount: Decimal
    closed: bool = False


@dataclass(frozen=True)
class CommitmentLine:
    """A purchase-order line item as committed spend."""

    cost_code_id: UUID | None
    amount: Decimal
    po_status: str


@dataclass(frozen=True)
class AllocationFact:
    """An invoice-level allocation with the owning invoice's status."""

    cost_code_id: UUID | None
    amount: Decimal
    invoice_status: str
    has_po: bool = False


@dataclass(frozen=True)
class RollupFigures:
    cost_code_id: UUID
    budgeted_amount: Decimal
    committed_amount: Decimal
    billed_amount: Decimal
    paid_amount: Decimal
    pending_amount: Decimal
    projected_amount: Decimal
    closed: bool = False

    @property
    def variance(self) -> Decimal:
        """Budget minus projection; negative means a projected overrun."""
        return self.budgeted_amount - self.projected_amount

    @property
    def is_over_budget(self) -> bool:
        return self.billed_amount > self.budgeted_amount


def project(budgeted: Decimal, committed: Decimal, pending: Decimal, closed: bool) -> Decimal:
    actuals = committed + pending
    if closed:
        return round_money(actuals)
    return round_money(max(budgeted, actuals))


class BudgetRollupEngine:
    """
    Pure roll-up of budget figures.

    Usage:
        engine = BudgetRollupEngine()
        figures = engine.compute(lines=lines, commitments=po_lines, allocations=facts)
    """

    @traced_engine("budget_rollup", "1.0", fingerprint_fields=("lines", "commitments", "allocations"))
    def compute(
        self,
        *,
        lines: Sequence[BudgetLineState],
        commitments: Sequence[CommitmentLine],
        allocations: Sequence[AllocationFact],
        cost_code_ids: Sequence[UUID] | None = None,
    ) -> tuple[RollupFigures, ...]:
        """
        Compute figures for every cost code that has a budget line, a
        commitment or an allocation (or only ``cost_code_ids`` when given).
        Output is ordered by first appearance: budget lines, then
        commitments, then allocations.
        """
        by_code = {line.cost_code_id: line for line in lines}
        order: list[UUID] = list(by_code)
        for cc in [c.cost_code_id for c in commitments] + [a.cost_code_id for a in allocations]:
            if cc is not None and cc not in by_code and cc not in order:
                order.append(cc)
        if cost_code_ids is not None:
            wanted = set(cost_code_ids)
            order = [cc for cc in order if cc in wanted]
            order += [cc for cc in cost_code_ids if cc not in order]

        committed: dict[UUID, Decimal] = {}
        for c in commitments:
            if c.cost_code_id is not None and c.po_status in COMMITTED_PO_STATUSES:
                committed[c.cost_code_id] = committed.get(c.cost_code_id, ZERO) + c.amount

        billed: dict[UUID, Decimal] = {}
        paid: dict[UUID, Decimal] = {}
        pending: dict[UUID, Decimal] = {}
        for a in allocations:
            cc = a.cost_code_id
            if cc is None:
                continue
            if a.invoice_status in BILLED_STATUSES:
                billed[cc] = billed.get(cc, ZERO) + a.amount
            if a.invoice_status == InvoiceStatus.PAID.value:
                paid[cc] = paid.get(cc, ZERO) + a.amount
            if a.invoice_status in COMMITTED_INVOICE_STATUSES and not a.has_po:
                pending[cc] = pending.get(cc, ZERO) + a.amount

        results: list[RollupFigures] = []
        for cc in order:
            line = by_code.get(cc)
            budgeted = line.budgeted_amount if line else ZERO
            closed = line.closed if line else False
            c = round_money(committed.get(cc, ZERO))
            p = round_money(pending.get(cc, ZERO))
            results.append(RollupFigures(
                cost_code_id=cc,
                budgeted_amount=round_money(budgeted),
                committed_amount=c,
                billed_amount=round_money(billed.get(cc, ZERO)),
                paid_amount=round_money(paid.get(cc, ZERO)),
                pending_amount=p,
                projected_amount=project(budgeted, c, p, closed),
                closed=closed,
            ))

        logger.debug("budget_rollup_computed", extra={"line_count": len(results)})
        return tuple(results)
