"""
Budget Module Service (``billing_modules.budget.service``).

Loads purchase-order lines and invoice allocations for a job, runs the
pure ``BudgetRollupEngine`` and writes the committed / billed / paid
figures back onto the job's budget lines, creating lines lazily for cost
codes that show up in the ledgers.

Every invoice, draw or purchase-order mutation finishes with a call to
``recompute`` for the cost codes it touched, so stored figures always
match a fresh roll-up.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from billing_engines.rollup import (
    AllocationFact,
    BudgetLineState,
    BudgetRollupEngine,
    CommitmentLine,
    RollupFigures,
)
from billing_kernel.db.types import ZERO, round_money, to_money
from billing_kernel.exceptions import InvalidTransitionError, NotFoundError, ValidationFailedError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.job import JobModel
from billing_kernel.services.base import BaseService
from billing_modules.budget.models import BudgetLine, BudgetSummary
from billing_modules.budget.orm import BudgetLineModel
from billing_modules.invoices.orm import AllocationModel, InvoiceModel
from billing_modules.procurement.orm import POLineItemModel, PurchaseOrderModel

logger = get_logger("modules.budget.service")


class BudgetService(BaseService):

    def __init__(self, session, clock=None, config=None):
        super().__init__(session, clock, config)
        self._engine = BudgetRollupEngine()

    # =========================================================================
    # Roll-up
    # =========================================================================

    def recompute(
        self,
        job_id: UUID,
        cost_code_ids: Iterable[UUID | None] | None = None,
    ) -> tuple[BudgetLine, ...]:
        """
        Recompute and store figures for ``cost_code_ids`` (all codes when None).

        Idempotent: running it twice leaves the same stored figures.
        """
        wanted = None
        if cost_code_ids is not None:
            wanted = {cc for cc in cost_code_ids if cc is not None}
            if not wanted:
                return ()

        lines_by_code = self._lines_by_code(job_id)
        figures = self._compute(job_id, lines_by_code)

        written: list[tuple[BudgetLineModel, RollupFigures]] = []
        for fig in figures:
            if wanted is not None and fig.cost_code_id not in wanted:
                continue
            line = lines_by_code.get(fig.cost_code_id)
            if line is None:
                line = BudgetLineModel(
                    job_id=job_id,
                    cost_code_id=fig.cost_code_id,
                    budgeted_amount=ZERO,
                )
                self.session.add(line)
                lines_by_code[fig.cost_code_id] = line
            line.committed_amount = fig.committed_amount
            line.billed_amount = fig.billed_amount
            line.paid_amount = fig.paid_amount
            written.append((line, fig))

        self.session.flush()
        logger.debug("budget_recomputed", extra={
            "job_id": str(job_id),
            "line_count": len(written),
        })
        return tuple(self._to_dto(line, fig) for line, fig in written)

    def ensure_lines(self, job_id: UUID, cost_code_ids: Iterable[UUID | None]) -> None:
        """Create zero-budget lines for any of ``cost_code_ids`` the job lacks."""
        lines_by_code = self._lines_by_code(job_id)
        for cc in {c for c in cost_code_ids if c is not None}:
            if cc not in lines_by_code:
                self.session.add(BudgetLineModel(job_id=job_id, cost_code_id=cc, budgeted_amount=ZERO))
        self.session.flush()

    # =========================================================================
    # Line maintenance
    # =========================================================================

    def set_budgeted_amount(self, job_id: UUID, cost_code_id: UUID, amount: Decimal) -> BudgetLine:
        if self.session.get(JobModel, job_id) is None:
            raise NotFoundError("job", str(job_id))
        amount = to_money(amount, "budgeted_amount")
        if amount < ZERO:
            raise ValidationFailedError(
                f"Budgeted amount cannot be negative, got {amount}", field="budgeted_amount",
            )
        self.ensure_lines(job_id, [cost_code_id])
        line = self._lines_by_code(job_id)[cost_code_id]
        line.budgeted_amount = amount
        self.session.flush()
        logger.info("budget_amount_set", extra={
            "job_id": str(job_id),
            "cost_code_id": str(cost_code_id),
            "budgeted_amount": str(amount),
        })
        return self.get_line(job_id, cost_code_id)

    def close_line(self, job_id: UUID, cost_code_id: UUID, closed_by: str) -> BudgetLine:
        """Close a line; its projection becomes committed + pending."""
        line = self._load_line(job_id, cost_code_id)
        if line.is_closed:
            raise InvalidTransitionError("budget_line", str(line.id), "closed", "close")
        line.closed_at = self.clock.now()
        line.closed_by = closed_by
        self.session.flush()
        logger.info("budget_line_closed", extra={
            "job_id": str(job_id),
            "cost_code_id": str(cost_code_id),
            "closed_by": closed_by,
        })
        return self.get_line(job_id, cost_code_id)

    def reopen_line(self, job_id: UUID, cost_code_id: UUID) -> BudgetLine:
        line = self._load_line(job_id, cost_code_id)
        if not line.is_closed:
            raise InvalidTransitionError("budget_line", str(line.id), "open", "reopen")
        line.closed_at = None
        line.closed_by = None
        self.session.flush()
        logger.info("budget_line_reopened", extra={
            "job_id": str(job_id),
            "cost_code_id": str(cost_code_id),
        })
        return self.get_line(job_id, cost_code_id)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_line(self, job_id: UUID, cost_code_id: UUID) -> BudgetLine:
        line = self._load_line(job_id, cost_code_id)
        figures = {f.cost_code_id: f for f in self._compute(job_id, self._lines_by_code(job_id))}
        return self._to_dto(line, figures.get(cost_code_id))

    def summary(self, job_id: UUID) -> BudgetSummary:
        """All of a job's budget lines with derived figures, plus totals."""
        if self.session.get(JobModel, job_id) is None:
            raise NotFoundError("job", str(job_id))
        lines_by_code = self._lines_by_code(job_id)
        figures = {f.cost_code_id: f for f in self._compute(job_id, lines_by_code)}
        lines = tuple(
            self._to_dto(line, figures.get(cc)) for cc, line in lines_by_code.items()
        )

        def total(attr: str) -> Decimal:
            return round_money(sum((getattr(line, attr) for line in lines), ZERO))

        return BudgetSummary(
            job_id=job_id,
            lines=lines,
            total_budgeted=total("budgeted_amount"),
            total_committed=total("committed_amount"),
            total_billed=total("billed_amount"),
            total_paid=total("paid_amount"),
            total_projected=total("projected_amount"),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _compute(
        self,
        job_id: UUID,
        lines_by_code: dict[UUID, BudgetLineModel],
    ) -> tuple[RollupFigures, ...]:
        states = [
            BudgetLineState(cc, line.budgeted_amount, closed=line.is_closed)
            for cc, line in lines_by_code.items()
        ]
        commitments = [
            CommitmentLine(cost_code_id=item.cost_code_id, amount=item.amount, po_status=status)
            for item, status in self.session.execute(
                select(POLineItemModel, PurchaseOrderModel.status)
                .join(PurchaseOrderModel, POLineItemModel.purchase_order_id == PurchaseOrderModel.id)
                .where(PurchaseOrderModel.job_id == job_id)
                .order_by(POLineItemModel.created_at, POLineItemModel.id)
            )
        ]
        allocations = [
            AllocationFact(
                cost_code_id=alloc.cost_code_id,
                amount=alloc.amount,
                invoice_status=status,
                has_po=po_id is not None,
            )
            for alloc, status, po_id in self.session.execute(
                select(AllocationModel, InvoiceModel.status, InvoiceModel.po_id)
                .join(InvoiceModel, AllocationModel.invoice_id == InvoiceModel.id)
                .where(InvoiceModel.job_id == job_id, InvoiceModel.deleted_at.is_(None))
                .order_by(AllocationModel.created_at, AllocationModel.id)
            )
        ]
        return self._engine.compute(lines=states, commitments=commitments, allocations=allocations)

    def _lines_by_code(self, job_id: UUID) -> dict[UUID, BudgetLineModel]:
        rows = self.session.execute(
            select(BudgetLineModel)
            .where(BudgetLineModel.job_id == job_id)
            .order_by(BudgetLineModel.created_at, BudgetLineModel.id)
        ).scalars()
        return {row.cost_code_id: row for row in rows}

    def _load_line(self, job_id: UUID, cost_code_id: UUID) -> BudgetLineModel:
        line = self._lines_by_code(job_id).get(cost_code_id)
        if line is None:
            raise NotFoundError("budget_line", f"{job_id}/{cost_code_id}")
        return line

    @staticmethod
    def _to_dto(line: BudgetLineModel, fig: RollupFigures | None) -> BudgetLine:
        pending = fig.pending_amount if fig else ZERO
        projected = fig.projected_amount if fig else round_money(line.budgeted_amount)
        return BudgetLine(
            id=line.id,
            job_id=line.job_id,
            cost_code_id=line.cost_code_id,
            budgeted_amount=line.budgeted_amount,
            committed_amount=line.committed_amount,
            billed_amount=line.billed_amount,
            paid_amount=line.paid_amount,
            pending_amount=pending,
            projected_amount=projected,
            closed_at=line.closed_at,
            closed_by=line.closed_by,
        )
