"""
JobLedgerSelector -- read-only loader of a job's billing ledgers.

Builds the frozen ``JobLedgerSnapshot`` the pure
``ReconciliationChecker`` consumes.  Never adds, flushes or commits.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from billing_engines.reconciliation.types import (
    AllocationRecord,
    BudgetLineRecord,
    DrawAllocationRecord,
    DrawRecord,
    InvoiceRecord,
    JobLedgerSnapshot,
    PurchaseOrderRecord,
)
from billing_kernel.db.types import ZERO, round_money
from billing_kernel.exceptions import NotFoundError
from billing_kernel.models.job import CostCodeModel, JobModel
from billing_kernel.selectors.base import BaseSelector
from billing_modules.budget.orm import BudgetLineModel
from billing_modules.draws.orm import DrawModel
from billing_modules.invoices.orm import InvoiceModel
from billing_modules.procurement.orm import PurchaseOrderModel


class JobLedgerSelector(BaseSelector):

    def active_job_ids(self) -> list[UUID]:
        return list(self.session.execute(
            select(JobModel.id).where(JobModel.status == "active").order_by(JobModel.name)
        ).scalars())

    def snapshot(self, job_id: UUID) -> JobLedgerSnapshot:
        """
        Raises:
            NotFoundError: unknown job.
        """
        job = self.session.get(JobModel, job_id)
        if job is None:
            raise NotFoundError("job", str(job_id))

        invoices = self.session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.job_id == job_id, InvoiceModel.deleted_at.is_(None))
            .order_by(InvoiceModel.created_at, InvoiceModel.id)
        ).scalars().all()
        draws = self.session.execute(
            select(DrawModel).where(DrawModel.job_id == job_id).order_by(DrawModel.draw_number)
        ).scalars().all()
        purchase_orders = self.session.execute(
            select(PurchaseOrderModel)
            .where(PurchaseOrderModel.job_id == job_id)
            .order_by(PurchaseOrderModel.po_number)
        ).scalars().all()
        budget_lines = self.session.execute(
            select(BudgetLineModel)
            .where(BudgetLineModel.job_id == job_id)
            .order_by(BudgetLineModel.created_at, BudgetLineModel.id)
        ).scalars().all()

        cost_code_ids = {line.cost_code_id for line in budget_lines}
        for inv in invoices:
            cost_code_ids |= inv.cost_code_ids()
        labels: dict[UUID, str] = {}
        if cost_code_ids:
            for cc in self.session.execute(
                select(CostCodeModel).where(CostCodeModel.id.in_(sorted(cost_code_ids, key=str)))
            ).scalars():
                labels[cc.id] = f"{cc.code} {cc.name}"

        return JobLedgerSnapshot(
            job_id=job.id,
            job_name=job.name,
            invoices=tuple(
                InvoiceRecord(
                    id=inv.id,
                    invoice_number=inv.invoice_number,
                    amount=inv.amount,
                    status=inv.status,
                    billed_amount=inv.billed_amount,
                    paid_amount=inv.paid_amount,
                    po_id=inv.po_id,
                    fully_billed_at=inv.fully_billed_at,
                    allocations=tuple(
                        AllocationRecord(cost_code_id=a.cost_code_id, amount=a.amount)
                        for a in inv.allocations
                    ),
                )
                for inv in invoices
            ),
            draws=tuple(
                DrawRecord(
                    id=draw.id,
                    draw_number=draw.draw_number,
                    status=draw.status,
                    total_amount=draw.total_amount,
                    allocations=tuple(
                        DrawAllocationRecord(
                            invoice_id=a.invoice_id,
                            cost_code_id=a.cost_code_id,
                            amount=a.amount,
                        )
                        for a in sorted(draw.allocations, key=lambda r: r.position)
                    ),
                    change_order_billing_total=round_money(
                        sum((b.amount for b in draw.change_order_billings), ZERO)
                    ),
                )
                for draw in draws
            ),
            purchase_orders=tuple(
                PurchaseOrderRecord(
                    id=po.id,
                    po_number=po.po_number,
                    total_amount=po.total_amount,
                    status=po.status,
                )
                for po in purchase_orders
            ),
            budget_lines=tuple(
                BudgetLineRecord(
                    cost_code_id=line.cost_code_id,
                    budgeted_amount=line.budgeted_amount,
                    billed_amount=line.billed_amount,
                    closed=line.is_closed,
                )
                for line in budget_lines
            ),
            cost_code_labels=labels,
        )
