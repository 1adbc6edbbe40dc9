"""
Invoice Module Service (``billing_modules.invoices.service``).

Responsibility
--------------
Intake, coding, approval, denial and split handling for vendor invoices.
Each action checks ``INVOICE_WORKFLOW`` for a legal transition, validates
allocations through ``billing_engines.allocation``, captures an undo
snapshot, keeps PO lines / change orders / budget lines in step and
appends an activity row.

Architecture position
---------------------
**Modules layer**.  Flush-only; ``BillingLedger`` owns the transaction
and the advisory lock.

Invariants enforced
-------------------
* Approval requires allocations that are cost-coded, positive and within
  the invoice's remaining unbilled amount.
* A partial approval (allocations below remaining unbilled) must be
  confirmed explicitly.
* Split children sum to the parent amount; the parent leaves the billing
  flow until it is unsplit or reconciled.
* A reconciled parent reopens when a child is resubmitted or unpaid.
* Repay restores the paid marker only from draws that already funded the
  invoice.

Failure modes
-------------
* ``InvalidTransitionError`` -- action not legal from the current status.
* ``MissingCostCodeError`` / ``OverAllocatedError`` /
  ``PartialApprovalNotConfirmedError`` / ``POOverageError`` /
  ``ValidationFailedError`` -- approval or coding guards.
* ``NotFoundError`` -- unknown or soft-deleted invoice.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from billing_engines.allocation import (
    AllocationLine,
    remaining_unbilled,
    validate_allocations,
)
from billing_kernel.db.types import ZERO, round_money, to_money
from billing_kernel.domain.activity import (
    InvoiceApproved,
    InvoiceCoded,
    InvoiceDenied,
    InvoiceRepaid,
    InvoiceResubmitted,
    InvoiceSplit,
    InvoiceSplitReconciled,
    InvoiceSplitReopened,
    InvoiceUnapproved,
    InvoiceUnpaid,
    InvoiceUnsplit,
)
from billing_kernel.domain.statuses import (
    COMMITTED_INVOICE_STATUSES,
    FUNDED_DRAW_STATUSES,
    SETTLED_CHILD_STATUSES,
    InvoiceStatus,
    ReviewFlag,
)
from billing_kernel.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    OverAllocatedError,
    PartialApprovalNotConfirmedError,
    POOverageError,
    ValidationFailedError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.job import CostCodeModel, JobModel
from billing_kernel.services.activity_recorder import ActivityRecorder
from billing_kernel.services.base import BaseService
from billing_modules._workflow_helpers import require_transition
from billing_modules.budget.service import BudgetService
from billing_modules.draws.orm import DrawAllocationModel, DrawModel
from billing_modules.invoices.models import Invoice, SplitPart
from billing_modules.invoices.orm import AllocationModel, InvoiceModel
from billing_modules.invoices.workflows import INVOICE_WORKFLOW
from billing_modules.procurement.orm import ChangeOrderModel, POLineItemModel, PurchaseOrderModel
from billing_modules.procurement.service import ProcurementService
from billing_modules.undo.service import UndoService, capture_allocations, capture_invoice

logger = get_logger("modules.invoices.service")


class InvoiceService(BaseService):
    """
    Orchestrates invoice lifecycle actions.

    Contract
    --------
    * Every public mutator returns the invoice as a frozen ``Invoice``.
    * Every public mutator flushes; none commits.

    Usage::

        invoices = InvoiceService(session, clock=clock)
        inv = invoices.create_invoice(job_id, Decimal("10000.00"), invoice_number="INV-7")
        invoices.code_invoice(inv.id, [AllocationLine(cc_id, Decimal("10000.00"))], "pm@acme")
        invoices.approve_invoice(inv.id, approved_by="pm@acme")
    """

    def __init__(
        self,
        session,
        clock=None,
        config=None,
        budget: BudgetService | None = None,
        procurement: ProcurementService | None = None,
        undo: UndoService | None = None,
        activity: ActivityRecorder | None = None,
    ):
        super().__init__(session, clock, config)
        self._budget = budget or BudgetService(session, self.clock, self.config)
        self._procurement = procurement or ProcurementService(
            session, self.clock, self.config, budget=self._budget,
        )
        self._activity = activity or ActivityRecorder(session, self.clock, self.config)
        self._undo = undo or UndoService(
            session, self.clock, self.config,
            procurement=self._procurement, budget=self._budget, activity=self._activity,
        )

    # =========================================================================
    # Intake and queries
    # =========================================================================

    def create_invoice(
        self,
        job_id: UUID,
        amount: Decimal,
        invoice_number: str | None = None,
        vendor_id: UUID | None = None,
        po_id: UUID | None = None,
    ) -> Invoice:
        """Record a received invoice (status ``received``, nothing billed)."""
        if self.session.get(JobModel, job_id) is None:
            raise NotFoundError("job", str(job_id))
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationFailedError(f"Invoice amount must be positive, got {amount}", field="amount")
        if po_id is not None:
            self._require_po(job_id, po_id)

        invoice = InvoiceModel(
            job_id=job_id,
            vendor_id=vendor_id,
            invoice_number=invoice_number,
            po_id=po_id,
            amount=amount,
            status=InvoiceStatus.RECEIVED.value,
            billed_amount=ZERO,
            paid_amount=ZERO,
        )
        self.session.add(invoice)
        self.session.flush()

        logger.info("invoice_received", extra={
            "invoice_id": str(invoice.id),
            "job_id": str(job_id),
            "invoice_number": invoice_number,
            "amount": str(amount),
        })
        return invoice.to_dto()

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        return self.load(invoice_id).to_dto()

    def list_invoices(self, job_id: UUID, status: InvoiceStatus | None = None) -> tuple[Invoice, ...]:
        stmt = (
            select(InvoiceModel)
            .where(InvoiceModel.job_id == job_id, InvoiceModel.deleted_at.is_(None))
            .order_by(InvoiceModel.created_at, InvoiceModel.id)
        )
        if status is not None:
            stmt = stmt.where(InvoiceModel.status == InvoiceStatus(status).value)
        return tuple(row.to_dto() for row in self.session.execute(stmt).scalars())

    def load(self, invoice_id: UUID) -> InvoiceModel:
        invoice = self.session.get(InvoiceModel, invoice_id)
        if invoice is None or invoice.deleted_at is not None:
            raise NotFoundError("invoice", str(invoice_id))
        LogContext.set(job_id=invoice.job_id)
        return invoice

    # =========================================================================
    # Coding
    # =========================================================================

    def code_invoice(
        self,
        invoice_id: UUID,
        allocations: Sequence[AllocationLine],
        performed_by: str,
    ) -> Invoice:
        """
        Replace the invoice's allocations.

        A received invoice with a positive allocation total moves to
        needs_approval.  Recoding is undoable within the undo window.
        """
        invoice = self.load(invoice_id)
        transition = require_transition(
            INVOICE_WORKFLOW, "invoice", invoice.id, invoice.status, "code",
        )
        lines = [
            AllocationLine(
                cost_code_id=a.cost_code_id,
                amount=to_money(a.amount),
                change_order_id=a.change_order_id,
                po_line_item_id=a.po_line_item_id,
            )
            for a in allocations
        ]
        total = validate_allocations(invoice.amounts(), lines, self.config.amount_tolerance)
        remaining = remaining_unbilled(invoice.amounts())
        if total > remaining + self.config.amount_tolerance:
            raise OverAllocatedError(str(invoice.id), total, remaining)
        self._check_references(invoice, lines)

        self._undo.create_snapshot(
            "allocation", invoice.id, "coded", capture_allocations(invoice), performed_by,
        )

        previous_status = invoice.status
        touched_codes = invoice.cost_code_ids()
        touched_cos = invoice.change_order_ids()

        invoice.allocations.clear()
        self.session.flush()
        for position, line in enumerate(lines):
            invoice.allocations.append(AllocationModel(
                position=position,
                cost_code_id=line.cost_code_id,
                amount=line.amount,
                change_order_id=line.change_order_id,
                po_line_item_id=line.po_line_item_id,
            ))
        if total > ZERO:
            invoice.status = transition.to_state
        self.session.flush()

        touched_codes |= invoice.cost_code_ids()
        touched_cos |= invoice.change_order_ids()
        self._procurement.recompute_change_orders(touched_cos)
        self._budget.ensure_lines(invoice.job_id, invoice.cost_code_ids())
        self._budget.recompute(invoice.job_id, touched_codes)

        self._activity.record_invoice(invoice.id, performed_by, InvoiceCoded(
            allocated_total=total,
            line_count=len(lines),
            previous_status=previous_status,
        ))
        logger.info("invoice_coded", extra={
            "invoice_id": str(invoice.id),
            "allocated_total": str(total),
            "line_count": len(lines),
            "from_status": previous_status,
            "to_status": invoice.status,
        })
        return invoice.to_dto()

    # =========================================================================
    # Approval
    # =========================================================================

    def approve_invoice(
        self,
        invoice_id: UUID,
        approved_by: str,
        partial: bool = False,
        override_po_overage: bool = False,
    ) -> Invoice:
        """
        Approve an invoice for billing.

        Args:
            partial: confirms approval of allocations below remaining unbilled.
            override_po_overage: approve even if the PO would be exceeded;
                the invoice is flagged ``po_overage``.
        """
        invoice = self.load(invoice_id)
        transition = require_transition(
            INVOICE_WORKFLOW, "invoice", invoice.id, invoice.status, "approve",
        )

        lines = invoice.allocation_lines()
        if not lines:
            raise ValidationFailedError(
                f"Invoice {invoice.id} has no allocations to approve", field="allocations",
            )
        tolerance = self.config.amount_tolerance
        total = validate_allocations(invoice.amounts(), lines, tolerance)
        remaining = remaining_unbilled(invoice.amounts())
        if total > remaining + tolerance:
            raise OverAllocatedError(str(invoice.id), total, remaining)
        is_partial = total < remaining - tolerance
        if is_partial and not partial:
            raise PartialApprovalNotConfirmedError(str(invoice.id), total, remaining)

        overridden = False
        if invoice.po_id is not None and self.config.enforce_po_capacity:
            if override_po_overage:
                overridden = self._exceeds_po(invoice)
            else:
                self._procurement.check_po_capacity(invoice)

        self._undo.create_snapshot(
            "invoice", invoice.id, "approved", capture_invoice(invoice), approved_by,
        )

        previous_status = invoice.status
        invoice.status = transition.to_state
        invoice.approved_at = self.clock.now()
        invoice.approved_by = approved_by
        if overridden:
            invoice.add_review_flag(ReviewFlag.PO_OVERAGE)
        self.session.flush()

        self._procurement.sync_invoice_commitment(invoice, previous_status)
        self._budget.recompute(invoice.job_id, invoice.cost_code_ids())

        self._activity.record_invoice(invoice.id, approved_by, InvoiceApproved(
            allocated_total=total,
            remaining_unbilled=remaining,
            partial=is_partial,
            po_overage_overridden=overridden,
        ))
        logger.info("invoice_approved", extra={
            "invoice_id": str(invoice.id),
            "approved_by": approved_by,
            "allocated_total": str(total),
            "remaining_unbilled": str(remaining),
            "partial": is_partial,
            "po_overage_overridden": overridden,
        })
        return invoice.to_dto()

    def unapprove_invoice(self, invoice_id: UUID, performed_by: str, reason: str | None = None) -> Invoice:
        """Send an approved (not yet drawn) invoice back to needs_approval."""
        invoice = self.load(invoice_id)
        transition = require_transition(
            INVOICE_WORKFLOW, "invoice", invoice.id, invoice.status, "unapprove",
        )
        self._undo.create_snapshot(
            "invoice", invoice.id, "unapproved", capture_invoice(invoice), performed_by,
        )

        previous_status = invoice.status
        invoice.status = transition.to_state
        invoice.approved_at = None
        invoice.approved_by = None
        self.session.flush()

        self._procurement.sync_invoice_commitment(invoice, previous_status)
        self._budget.recompute(invoice.job_id, invoice.cost_code_ids())
        self._activity.record_invoice(invoice.id, performed_by, InvoiceUnapproved(reason=reason))
        logger.info("invoice_unapproved", extra={
            "invoice_id": str(invoice.id),
            "performed_by": performed_by,
        })
        return invoice.to_dto()

    def deny_invoice(self, invoice_id: UUID, reason: str, performed_by: str) -> Invoice:
        """Deny an invoice.  Allocations are kept for a possible resubmit."""
        if not reason or not reason.strip():
            raise ValidationFailedError("A denial reason is required", field="reason")
        invoice = self.load(invoice_id)
        transition = require_transition(
            INVOICE_WORKFLOW, "invoice", invoice.id, invoice.status, "deny",
        )
        self._undo.create_snapshot(
            "invoice", invoice.id, "denied", capture_invoice(invoice), performed_by,
        )

        previous_status = invoice.status
        invoice.status = transition.to_state
        invoice.denied_at = self.clock.now()
        invoice.denial_reason = reason.strip()
        invoice.approved_at = None
        invoice.approved_by = None
        self.session.flush()

        self._procurement.sync_invoice_commitment(invoice, previous_status)
        self._budget.recompute(invoice.job_id, invoice.cost_code_ids())
        self._activity.record_invoice(invoice.id, performed_by, InvoiceDenied(
            reason=invoice.denial_reason,
            previous_status=previous_status,
        ))
        logger.info("invoice_denied", extra={
            "invoice_id": str(invoice.id),
            "from_status": previous_status,
            "reason": invoice.denial_reason,
        })

        if invoice.parent_invoice_id is not None:
            self.reconcile_split(invoice.parent_invoice_id, performed_by)
        return invoice.to_dto()

    def resubmit_invoice(self, invoice_id: UUID, performed_by: str) -> Invoice:
        """Return a denied invoice to needs_approval."""
        invoice = self.load(invoice_id)
        transition = require_transition(
            INVOICE_WORKFLOW, "invoice", invoice.id, invoice.status, "resubmit",
        )
        self._undo.create_snapshot(
            "invoice", invoice.id, "resubmitted", capture_invoice(invoice), performed_by,
        )

        previous_reason = invoice.denial_reason
        invoice.status = transition.to_state
        invoice.denied_at = None
        invoice.denial_reason = None
        self.session.flush()

        self._activity.record_invoice(invoice.id, performed_by, InvoiceResubmitted(
            previous_denial_reason=previous_reason,
        ))
        logger.info("invoice_resubmitted", extra={"invoice_id": str(invoice.id)})

        if invoice.parent_invoice_id is not None:
            self.reopen_split(invoice.parent_invoice_id, invoice.id, performed_by)
        return invoice.to_dto()

    def unpay_invoice(self, invoice_id: UUID, performed_by: str, reason: str | None = None) -> Invoice:
        """Reverse a paid marker: back to in_draw with nothing paid."""
        invoice = self.load(invoice_id)
        transition = require_transition(
            INVOICE_WORKFLOW, "invoice", invoice.id, invoice.status, "unpay",
        )
        self._undo.create_snapshot(
            "invoice", invoice.id, "unpaid", capture_invoice(invoice), performed_by,
        )

        reversed_amount = invoice.paid_amount
        invoice.status = transition.to_state
        invoice.paid_amount = ZERO
        self.session.flush()

        self._budget.recompute(invoice.job_id, invoice.cost_code_ids())
        self._activity.record_invoice(invoice.id, performed_by, InvoiceUnpaid(
            reversed_paid_amount=reversed_amount,
            reason=reason,
        ))
        logger.info("invoice_unpaid", extra={
            "invoice_id": str(invoice.id),
            "reversed_paid_amount": str(reversed_amount),
        })

        if invoice.parent_invoice_id is not None:
            self.reopen_split(invoice.parent_invoice_id, invoice.id, performed_by)
        return invoice.to_dto()

    def repay_invoice(self, invoice_id: UUID, performed_by: str) -> Invoice:
        """
        Mark an unpaid invoice paid again from the draws that already funded it.

        Only an in_draw invoice that is fully billed, with every draw holding
        its slices funded, qualifies.  ``paid_amount`` is credited the sum of
        those slices, capped at the invoice amount.
        """
        invoice = self.load(invoice_id)
        transition = require_transition(
            INVOICE_WORKFLOW, "invoice", invoice.id, invoice.status, "repay",
        )
        rows = self.session.execute(
            select(DrawModel.id, DrawModel.status, DrawAllocationModel.amount)
            .join(DrawAllocationModel, DrawAllocationModel.draw_id == DrawModel.id)
            .where(DrawAllocationModel.invoice_id == invoice.id)
        ).all()
        billed = round_money(sum((r.amount for r in rows), ZERO))
        fully_billed = bool(rows) and billed >= invoice.amount - self.config.amount_tolerance
        if not fully_billed or any(r.status not in FUNDED_DRAW_STATUSES for r in rows):
            raise InvalidTransitionError("invoice", str(invoice.id), invoice.status, "repay")

        self._undo.create_snapshot(
            "invoice", invoice.id, "repaid", capture_invoice(invoice), performed_by,
        )
        draw_ids = tuple(dict.fromkeys(r.id for r in rows))
        invoice.status = transition.to_state
        invoice.paid_amount = min(billed, invoice.amount)
        self.session.flush()

        self._budget.recompute(invoice.job_id, invoice.cost_code_ids())
        self._activity.record_invoice(invoice.id, performed_by, InvoiceRepaid(
            paid_amount=invoice.paid_amount,
            draw_ids=draw_ids,
        ))
        logger.info("invoice_repaid", extra={
            "invoice_id": str(invoice.id),
            "paid_amount": str(invoice.paid_amount),
            "draw_count": len(draw_ids),
        })

        if invoice.parent_invoice_id is not None:
            self.reconcile_split(invoice.parent_invoice_id, performed_by)
        return invoice.to_dto()

    # =========================================================================
    # Splits
    # =========================================================================

    def split_invoice(
        self,
        invoice_id: UUID,
        parts: Sequence[SplitPart],
        performed_by: str,
    ) -> tuple[Invoice, ...]:
        """
        Split an unbilled invoice into received children whose amounts sum
        to the parent.  Children may target another job or PO.

        Returns:
            The children, in ``parts`` order.
        """
        parent = self.load(invoice_id)
        transition = require_transition(
            INVOICE_WORKFLOW, "invoice", parent.id, parent.status, "split",
        )
        if len(parts) < 2:
            raise ValidationFailedError("A split needs at least two parts", field="parts")
        amounts = [to_money(p.amount) for p in parts]
        if any(a <= ZERO for a in amounts):
            raise ValidationFailedError("Split amounts must be positive", field="parts")
        split_total = round_money(sum(amounts, ZERO))
        if abs(split_total - parent.amount) > self.config.amount_tolerance:
            raise ValidationFailedError(
                f"Split parts total {split_total} does not match invoice amount {parent.amount}",
                field="parts",
            )
        if parent.billed_amount > ZERO or parent.paid_amount > ZERO:
            raise ValidationFailedError(
                f"Invoice {parent.id} has already been billed and cannot be split",
            )

        children: list[InvoiceModel] = []
        for index, (part, amount) in enumerate(zip(parts, amounts), start=1):
            job_id = part.job_id or parent.job_id
            if self.session.get(JobModel, job_id) is None:
                raise NotFoundError("job", str(job_id))
            po_id = part.po_id if part.po_id is not None else (
                parent.po_id if job_id == parent.job_id else None
            )
            if po_id is not None:
                self._require_po(job_id, po_id)
            child = InvoiceModel(
                job_id=job_id,
                vendor_id=parent.vendor_id,
                invoice_number=part.invoice_number or f"{parent.invoice_number or 'SPLIT'}-{index}",
                po_id=po_id,
                amount=amount,
                status=InvoiceStatus.RECEIVED.value,
                billed_amount=ZERO,
                paid_amount=ZERO,
                parent_invoice_id=parent.id,
            )
            child.review_flags = (ReviewFlag.SPLIT_CHILD,)
            self.session.add(child)
            children.append(child)

        touched_codes = parent.cost_code_ids()
        touched_cos = parent.change_order_ids()
        parent.allocations.clear()
        parent.status = transition.to_state
        parent.is_split_parent = True
        self.session.flush()

        self._procurement.recompute_change_orders(touched_cos)
        self._budget.recompute(parent.job_id, touched_codes)
        self._activity.record_invoice(parent.id, performed_by, InvoiceSplit(
            child_ids=tuple(c.id for c in children),
            child_amounts=tuple(c.amount for c in children),
        ))
        logger.info("invoice_split", extra={
            "invoice_id": str(parent.id),
            "child_count": len(children),
        })
        return tuple(c.to_dto() for c in children)

    def unsplit_invoice(self, invoice_id: UUID, performed_by: str) -> Invoice:
        """Soft-delete the children and return the parent to received."""
        parent = self.load(invoice_id)
        transition = require_transition(
            INVOICE_WORKFLOW, "invoice", parent.id, parent.status, "unsplit",
        )
        children = self._children(parent.id)
        for child in children:
            if child.status in COMMITTED_INVOICE_STATUSES:
                raise InvalidTransitionError("invoice", str(child.id), child.status, "unsplit")

        now = self.clock.now()
        touched: dict[UUID, tuple[set, set]] = {}
        for child in children:
            codes, cos = touched.setdefault(child.job_id, (set(), set()))
            codes |= child.cost_code_ids()
            cos |= child.change_order_ids()
            child.allocations.clear()
            child.deleted_at = now
            self._undo.invalidate(child.id)

        parent.status = transition.to_state
        parent.is_split_parent = False
        self.session.flush()

        for job_id, (codes, cos) in touched.items():
            self._procurement.recompute_change_orders(cos)
            self._budget.recompute(job_id, codes)
        self._activity.record_invoice(parent.id, performed_by, InvoiceUnsplit(
            removed_child_ids=tuple(c.id for c in children),
        ))
        logger.info("invoice_unsplit", extra={
            "invoice_id": str(parent.id),
            "removed_child_count": len(children),
        })
        return parent.to_dto()

    def reconcile_split(self, parent_id: UUID, performed_by: str) -> bool:
        """
        Mark a split parent reconciled once every child is paid or denied.

        Returns:
            True if the parent was reconciled by this call.
        """
        parent = self.session.get(InvoiceModel, parent_id)
        if parent is None or parent.status != InvoiceStatus.SPLIT.value:
            return False
        children = self._children(parent.id)
        if not children or any(c.status not in SETTLED_CHILD_STATUSES for c in children):
            return False

        transition = require_transition(
            INVOICE_WORKFLOW, "invoice", parent.id, parent.status, "reconcile_split",
        )
        parent.status = transition.to_state
        self.session.flush()
        self._activity.record_invoice(parent.id, performed_by, InvoiceSplitReconciled(
            child_count=len(children),
        ))
        logger.info("invoice_split_reconciled", extra={
            "invoice_id": str(parent.id),
            "child_count": len(children),
        })
        return True

    def reopen_split(self, parent_id: UUID, child_id: UUID, performed_by: str) -> bool:
        """Return a reconciled parent to split when one of its children reopens."""
        parent = self.session.get(InvoiceModel, parent_id)
        if parent is None or parent.status != InvoiceStatus.RECONCILED.value:
            return False

        transition = require_transition(
            INVOICE_WORKFLOW, "invoice", parent.id, parent.status, "reopen_split",
        )
        parent.status = transition.to_state
        self.session.flush()
        self._activity.record_invoice(parent.id, performed_by, InvoiceSplitReopened(child_id=child_id))
        logger.info("invoice_split_reopened", extra={
            "invoice_id": str(parent.id),
            "child_invoice_id": str(child_id),
        })
        return True

    # =========================================================================
    # Internals
    # =========================================================================

    def _children(self, parent_id: UUID) -> list[InvoiceModel]:
        return list(self.session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.parent_invoice_id == parent_id, InvoiceModel.deleted_at.is_(None))
            .order_by(InvoiceModel.created_at, InvoiceModel.id)
        ).scalars())

    def _require_po(self, job_id: UUID, po_id: UUID) -> PurchaseOrderModel:
        po = self.session.get(PurchaseOrderModel, po_id)
        if po is None:
            raise NotFoundError("purchase_order", str(po_id))
        if po.job_id != job_id:
            raise ValidationFailedError(
                f"Purchase order {po_id} belongs to another job", field="po_id",
            )
        return po

    def _check_references(self, invoice: InvoiceModel, lines: Sequence[AllocationLine]) -> None:
        for line in lines:
            if self.session.get(CostCodeModel, line.cost_code_id) is None:
                raise NotFoundError("cost_code", str(line.cost_code_id))
            if line.change_order_id is not None:
                co = self.session.get(ChangeOrderModel, line.change_order_id)
                if co is None:
                    raise NotFoundError("change_order", str(line.change_order_id))
                if co.job_id != invoice.job_id:
                    raise ValidationFailedError(
                        f"Change order {co.id} belongs to another job", field="change_order_id",
                    )
            if line.po_line_item_id is not None:
                po_line = self.session.get(POLineItemModel, line.po_line_item_id)
                if po_line is None:
                    raise NotFoundError("po_line_item", str(line.po_line_item_id))
                if po_line.purchase_order_id != invoice.po_id:
                    raise ValidationFailedError(
                        f"PO line {po_line.id} is not on the invoice's purchase order",
                        field="po_line_item_id",
                    )

    def _exceeds_po(self, invoice: InvoiceModel) -> bool:
        try:
            self._procurement.check_po_capacity(invoice)
        except POOverageError:
            return True
        return False
