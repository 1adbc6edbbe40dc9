"""
Procurement Module Service (``billing_modules.procurement.service``).

Responsibility
--------------
Purchase orders, their line items and change orders, plus the side
effects invoices have on them:

* PO line ``invoiced_amount`` moves when an invoice enters or leaves the
  committed statuses (approved, in_draw, paid), floored at zero.
* Change order ``invoiced_amount`` is recomputed from the allocations
  tagged with it.
* The PO capacity guard blocks approvals that would invoice a purchase
  order beyond its total.

Architecture position
---------------------
**Modules layer**.  Flush-only: the caller owns the transaction.

Invariants enforced
-------------------
* PO line ``invoiced_amount`` is never negative.
* Change order ``invoiced_amount`` equals the sum of its tagged
  allocations after every call that touches them.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from billing_kernel.db.types import ZERO, round_money, to_money
from billing_kernel.domain.statuses import (
    COMMITTED_INVOICE_STATUSES,
    NON_INVOICED_STATUSES,
    PurchaseOrderStatus,
)
from billing_kernel.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    POOverageError,
    ValidationFailedError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.job import JobModel
from billing_kernel.services.base import BaseService
from billing_modules.budget.service import BudgetService
from billing_modules.invoices.orm import AllocationModel, InvoiceModel
from billing_modules.procurement.models import (
    ChangeOrder,
    POLineRequest,
    PurchaseOrder,
)
from billing_modules.procurement.orm import (
    ChangeOrderModel,
    POLineItemModel,
    PurchaseOrderModel,
)

logger = get_logger("modules.procurement.service")


class ProcurementService(BaseService):
    """
    Owns purchase orders, PO line commitments and change orders.

    Usage::

        procurement = ProcurementService(session, clock=clock)
        po = procurement.create_purchase_order(
            job_id, "PO-100", [POLineRequest(cost_code_id, Decimal("10000.00"))],
        )
    """

    def __init__(self, session, clock=None, config=None, budget: BudgetService | None = None):
        super().__init__(session, clock, config)
        self._budget = budget or BudgetService(session, self.clock, self.config)

    # =========================================================================
    # Purchase orders
    # =========================================================================

    def create_purchase_order(
        self,
        job_id: UUID,
        po_number: str,
        lines: Sequence[POLineRequest],
        vendor_id: UUID | None = None,
        status: PurchaseOrderStatus = PurchaseOrderStatus.OPEN,
    ) -> PurchaseOrder:
        """Create a PO whose total is the sum of its line amounts."""
        if self.session.get(JobModel, job_id) is None:
            raise NotFoundError("job", str(job_id))
        if not lines:
            raise ValidationFailedError("Purchase order needs at least one line", field="lines")

        po = PurchaseOrderModel(
            job_id=job_id,
            po_number=po_number,
            vendor_id=vendor_id,
            status=PurchaseOrderStatus(status).value,
        )
        total = ZERO
        for line in lines:
            amount = to_money(line.amount)
            if amount <= ZERO:
                raise ValidationFailedError(
                    f"PO line amount must be positive, got {amount}", field="amount",
                )
            po.line_items.append(POLineItemModel(
                cost_code_id=line.cost_code_id,
                description=line.description,
                amount=amount,
                invoiced_amount=ZERO,
            ))
            total += amount
        po.total_amount = round_money(total)
        self.session.add(po)
        self.session.flush()

        self._budget.recompute(job_id, [line.cost_code_id for line in lines])

        logger.info("purchase_order_created", extra={
            "po_id": str(po.id),
            "po_number": po_number,
            "job_id": str(job_id),
            "total_amount": str(po.total_amount),
            "line_count": len(lines),
        })
        return po.to_dto()

    def set_purchase_order_status(
        self,
        po_id: UUID,
        status: PurchaseOrderStatus,
    ) -> PurchaseOrder:
        """Move a PO between draft/open/active/closed/voided.

        Voided is final.  Committed budget figures follow the new status.
        """
        po = self._load_po(po_id)
        new_status = PurchaseOrderStatus(status)
        if po.status == PurchaseOrderStatus.VOIDED.value and new_status != PurchaseOrderStatus.VOIDED:
            raise InvalidTransitionError("purchase_order", str(po_id), po.status, new_status.value)

        previous = po.status
        po.status = new_status.value
        self.session.flush()
        self._budget.recompute(po.job_id, [line.cost_code_id for line in po.line_items])

        logger.info("purchase_order_status_changed", extra={
            "po_id": str(po_id),
            "from_status": previous,
            "to_status": po.status,
        })
        return po.to_dto()

    def get_purchase_order(self, po_id: UUID) -> PurchaseOrder:
        return self._load_po(po_id).to_dto()

    def invoiced_total(self, po_id: UUID, exclude_invoice_id: UUID | None = None) -> Decimal:
        """Sum of amounts of live invoices on this PO outside the non-invoiced statuses."""
        stmt = select(func.coalesce(func.sum(InvoiceModel.amount), 0)).where(
            InvoiceModel.po_id == po_id,
            InvoiceModel.deleted_at.is_(None),
            InvoiceModel.status.not_in(sorted(NON_INVOICED_STATUSES)),
        )
        if exclude_invoice_id is not None:
            stmt = stmt.where(InvoiceModel.id != exclude_invoice_id)
        return round_money(Decimal(str(self.session.execute(stmt).scalar_one())))

    def check_po_capacity(self, invoice: InvoiceModel) -> None:
        """
        Raise ``POOverageError`` if approving ``invoice`` would take its PO
        past the PO total.

        Only invoices already holding PO capacity (approved, in_draw, paid)
        count toward the projection.
        """
        if invoice.po_id is None:
            return
        po = self._load_po(invoice.po_id)
        held = self.session.execute(
            select(func.coalesce(func.sum(InvoiceModel.amount), 0)).where(
                InvoiceModel.po_id == po.id,
                InvoiceModel.id != invoice.id,
                InvoiceModel.deleted_at.is_(None),
                InvoiceModel.status.in_(sorted(COMMITTED_INVOICE_STATUSES)),
            )
        ).scalar_one()
        projected = round_money(Decimal(str(held)) + invoice.amount)
        if projected > po.total_amount + self.config.amount_tolerance:
            logger.warning("po_capacity_exceeded", extra={
                "po_id": str(po.id),
                "invoice_id": str(invoice.id),
                "po_total": str(po.total_amount),
                "projected": str(projected),
            })
            raise POOverageError(str(po.id), po.total_amount, projected)

    # =========================================================================
    # PO line commitments
    # =========================================================================

    def sync_invoice_commitment(self, invoice: InvoiceModel, previous_status: str) -> None:
        """
        Apply or reverse ``invoice``'s allocations on its PO lines when it
        crosses into or out of the committed statuses.

        Must run while ``invoice.allocations`` still holds the lines that
        were applied.
        """
        was_committed = previous_status in COMMITTED_INVOICE_STATUSES
        is_committed = invoice.status in COMMITTED_INVOICE_STATUSES
        if was_committed == is_committed or invoice.po_id is None:
            return
        self._apply_po_lines(invoice, 1 if is_committed else -1)

    def _apply_po_lines(self, invoice: InvoiceModel, sign: int) -> None:
        po = self.session.get(PurchaseOrderModel, invoice.po_id)
        if po is None:
            return
        for allocation in invoice.allocations:
            line = self._match_po_line(po, allocation)
            if line is None:
                continue
            updated = round_money(line.invoiced_amount + sign * allocation.amount)
            line.invoiced_amount = max(updated, ZERO)
        self.session.flush()

        logger.debug("po_lines_synced", extra={
            "po_id": str(po.id),
            "invoice_id": str(invoice.id),
            "direction": "apply" if sign > 0 else "reverse",
        })

    @staticmethod
    def _match_po_line(po: PurchaseOrderModel, allocation: AllocationModel) -> POLineItemModel | None:
        if allocation.po_line_item_id is not None:
            for line in po.line_items:
                if line.id == allocation.po_line_item_id:
                    return line
            return None
        for line in po.line_items:
            if line.cost_code_id is not None and line.cost_code_id == allocation.cost_code_id:
                return line
        return None

    # =========================================================================
    # Change orders
    # =========================================================================

    def create_change_order(
        self,
        job_id: UUID,
        change_order_number: str,
        amount: Decimal,
        title: str | None = None,
    ) -> ChangeOrder:
        if self.session.get(JobModel, job_id) is None:
            raise NotFoundError("job", str(job_id))
        co = ChangeOrderModel(
            job_id=job_id,
            change_order_number=change_order_number,
            title=title,
            amount=to_money(amount),
            invoiced_amount=ZERO,
        )
        self.session.add(co)
        self.session.flush()
        logger.info("change_order_created", extra={
            "change_order_id": str(co.id),
            "job_id": str(job_id),
            "amount": str(co.amount),
        })
        return co.to_dto()

    def get_change_order(self, change_order_id: UUID) -> ChangeOrder:
        co = self.session.get(ChangeOrderModel, change_order_id)
        if co is None:
            raise NotFoundError("change_order", str(change_order_id))
        return co.to_dto()

    def recompute_change_orders(self, change_order_ids: Iterable[UUID | None]) -> None:
        """Reset each change order's invoiced amount to its tagged-allocation sum."""
        for co_id in {c for c in change_order_ids if c is not None}:
            co = self.session.get(ChangeOrderModel, co_id)
            if co is None:
                continue
            total = self.session.execute(
                select(func.coalesce(func.sum(AllocationModel.amount), 0))
                .where(AllocationModel.change_order_id == co_id)
            ).scalar_one()
            co.invoiced_amount = round_money(Decimal(str(total)))
        self.session.flush()

    # =========================================================================
    # Internals
    # =========================================================================

    def _load_po(self, po_id: UUID) -> PurchaseOrderModel:
        po = self.session.get(PurchaseOrderModel, po_id)
        if po is None:
            raise NotFoundError("purchase_order", str(po_id))
        return po

    # =========================================================================
    # Repair
    # =========================================================================

    def rebuild_job_commitments(self, job_id: UUID) -> int:
        """
        Recompute every PO line's invoiced amount and every change order's
        invoiced amount for a job from the invoice allocations.

        Returns:
            The number of PO lines and change orders whose value changed.
        """
        changed = 0
        purchase_orders = self.session.execute(
            select(PurchaseOrderModel).where(PurchaseOrderModel.job_id == job_id)
        ).scalars().all()
        for po in purchase_orders:
            expected: dict[UUID, Decimal] = {line.id: ZERO for line in po.line_items}
            committed = self.session.execute(
                select(InvoiceModel).where(
                    InvoiceModel.po_id == po.id,
                    InvoiceModel.deleted_at.is_(None),
                    InvoiceModel.status.in_(sorted(COMMITTED_INVOICE_STATUSES)),
                )
            ).scalars()
            for invoice in committed:
                for allocation in invoice.allocations:
                    line = self._match_po_line(po, allocation)
                    if line is not None:
                        expected[line.id] += allocation.amount
            for line in po.line_items:
                value = round_money(expected[line.id])
                if line.invoiced_amount != value:
                    line.invoiced_amount = value
                    changed += 1

        change_orders = self.session.execute(
            select(ChangeOrderModel).where(ChangeOrderModel.job_id == job_id)
        ).scalars().all()
        before = {co.id: co.invoiced_amount for co in change_orders}
        self.recompute_change_orders(before)
        changed += sum(1 for co in change_orders if co.invoiced_amount != before[co.id])
        self.session.flush()
        return changed
