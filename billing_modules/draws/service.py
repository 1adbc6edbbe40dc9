"""
Draw Module Service (``billing_modules.draws.service``).

Responsibility
--------------
The draw sub-ledger.  Approved invoices are sliced into a job's current
draft draw per cost code; submitting a draw settles partially billed
invoices (kick-back to needs_approval); funding marks fully billed
invoices paid.

Architecture position
---------------------
**Modules layer**.  Flush-only; ``BillingLedger`` owns the transaction
and the advisory lock on the draw.

Invariants enforced
-------------------
* One current draft draw per job.
* Draw total = sum of draw-allocation rows + change-order billings.
* An invoice is never billed beyond its amount across all draws: each
  add bills ``min(remaining unbilled, allocation total)``.
* Adding an invoice to a draw invalidates its pending undo entry.

Failure modes
-------------
* ``InvalidTransitionError`` -- draw or invoice in the wrong status.
* ``DuplicateDraftDrawError`` -- a second draft for the same job.
* ``ValidationFailedError`` -- cross-job invoice, nothing left to bill,
  negative funding.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from billing_engines.allocation import (
    allocation_total,
    compute_draw_slices,
    remaining_unbilled,
)
from billing_kernel.db.types import ZERO, round_money, to_money
from billing_kernel.domain.activity import (
    DrawChangeOrderBilled,
    DrawCreated,
    DrawFunded,
    DrawInvoiceRemoved,
    DrawInvoicesAdded,
    DrawSubmitted,
    DrawUnsubmitted,
    InvoiceAddedToDraw,
    InvoicePaid,
    InvoicePartialBilled,
    InvoiceRemovedFromDraw,
)
from billing_kernel.domain.statuses import DrawStatus, InvoiceStatus, ReviewFlag
from billing_kernel.exceptions import (
    DuplicateDraftDrawError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.job import JobModel
from billing_kernel.services.activity_recorder import ActivityRecorder
from billing_kernel.services.base import BaseService
from billing_modules._workflow_helpers import require_transition
from billing_modules.budget.service import BudgetService
from billing_modules.draws.models import Draw
from billing_modules.draws.orm import (
    ChangeOrderDrawBillingModel,
    DrawAllocationModel,
    DrawModel,
)
from billing_modules.draws.workflows import DRAW_WORKFLOW
from billing_modules.invoices.orm import InvoiceModel
from billing_modules.invoices.service import InvoiceService
from billing_modules.invoices.workflows import INVOICE_WORKFLOW
from billing_modules.procurement.orm import ChangeOrderModel
from billing_modules.procurement.service import ProcurementService
from billing_modules.undo.service import UndoService

logger = get_logger("modules.draws.service")


class DrawService(BaseService):
    """
    Orchestrates the draw lifecycle.

    Usage::

        draws = DrawService(session, clock=clock)
        draft = draws.get_or_create_draft_draw(job_id, "pm@acme")
        draws.add_invoices_to_draw(draft.id, [inv.id], "pm@acme")
        draws.submit_draw(draft.id, "pm@acme")
        draws.fund_draw(draft.id, Decimal("6000.00"), "pm@acme")
    """

    def __init__(
        self,
        session,
        clock=None,
        config=None,
        invoices: InvoiceService | None = None,
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
        self._invoices = invoices or InvoiceService(
            session, self.clock, self.config,
            budget=self._budget, procurement=self._procurement,
            undo=self._undo, activity=self._activity,
        )

    # =========================================================================
    # Draft management
    # =========================================================================

    def create_draft_draw(self, job_id: UUID, performed_by: str) -> Draw:
        """Open the job's next draft draw.

        Raises:
            DuplicateDraftDrawError: the job already has a current draft.
        """
        if self.session.get(JobModel, job_id) is None:
            raise NotFoundError("job", str(job_id))
        existing = self._current_draft(job_id)
        if existing is not None:
            raise DuplicateDraftDrawError(str(job_id), str(existing.id))

        last_number = self.session.execute(
            select(func.coalesce(func.max(DrawModel.draw_number), 0))
            .where(DrawModel.job_id == job_id)
        ).scalar_one()
        draw = DrawModel(
            job_id=job_id,
            draw_number=int(last_number) + 1,
            status=DrawStatus.DRAFT.value,
            total_amount=ZERO,
            is_current_draft=True,
        )
        self.session.add(draw)
        self.session.flush()

        self._activity.record_draw(draw.id, performed_by, DrawCreated(draw_number=draw.draw_number))
        logger.info("draw_created", extra={
            "draw_id": str(draw.id),
            "job_id": str(job_id),
            "draw_number": draw.draw_number,
        })
        return draw.to_dto()

    def get_or_create_draft_draw(self, job_id: UUID, performed_by: str) -> Draw:
        existing = self._current_draft(job_id)
        if existing is not None:
            return existing.to_dto()
        return self.create_draft_draw(job_id, performed_by)

    def get_draw(self, draw_id: UUID) -> Draw:
        return self.load(draw_id).to_dto()

    def list_draws(self, job_id: UUID) -> tuple[Draw, ...]:
        rows = self.session.execute(
            select(DrawModel).where(DrawModel.job_id == job_id).order_by(DrawModel.draw_number)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def load(self, draw_id: UUID) -> DrawModel:
        draw = self.session.get(DrawModel, draw_id)
        if draw is None:
            raise NotFoundError("draw", str(draw_id))
        LogContext.set(job_id=draw.job_id)
        return draw

    # =========================================================================
    # Invoices on a draft
    # =========================================================================

    def add_invoices_to_draw(
        self,
        draw_id: UUID,
        invoice_ids: Sequence[UUID],
        performed_by: str,
    ) -> Draw:
        """
        Bill each approved invoice's remaining amount into a draft draw.

        Each invoice bills ``min(remaining unbilled, allocation total)``,
        split across its cost codes in proportion to its allocations.
        """
        draw = self._load_draft(draw_id, "add_invoices")
        tolerance = self.config.amount_tolerance
        touched_codes: set[UUID] = set()

        for invoice_id in invoice_ids:
            invoice = self._invoices.load(invoice_id)
            transition = require_transition(
                INVOICE_WORKFLOW, "invoice", invoice.id, invoice.status, "add_to_draw",
            )
            if invoice.job_id != draw.job_id:
                raise ValidationFailedError(
                    f"Invoice {invoice.id} belongs to another job than draw {draw.id}",
                    field="invoice_ids",
                )
            lines = invoice.allocation_lines()
            target = min(remaining_unbilled(invoice.amounts()), allocation_total(lines))
            if target <= ZERO:
                raise ValidationFailedError(
                    f"Invoice {invoice.id} has nothing left to bill", field="invoice_ids",
                )

            for draw_slice in compute_draw_slices(allocations=lines, target=target):
                if draw_slice.amount <= ZERO:
                    continue
                self._upsert_draw_line(draw, invoice.id, draw_slice.cost_code_id, draw_slice.amount)

            invoice.billed_amount = min(round_money(invoice.billed_amount + target), invoice.amount)
            if invoice.first_draw_id is None:
                invoice.first_draw_id = draw.id
            if invoice.billed_amount >= invoice.amount - tolerance and invoice.fully_billed_at is None:
                invoice.fully_billed_at = self.clock.now()
            invoice.status = transition.to_state
            self._undo.invalidate(invoice.id)
            touched_codes |= invoice.cost_code_ids()
            self.session.flush()

            self._activity.record_invoice(invoice.id, performed_by, InvoiceAddedToDraw(
                draw_id=draw.id,
                draw_number=draw.draw_number,
                billed_this_draw=target,
                billed_to_date=invoice.billed_amount,
            ))

        self._recalculate_total(draw)
        self._budget.recompute(draw.job_id, touched_codes)
        self._activity.record_draw(draw.id, performed_by, DrawInvoicesAdded(
            invoice_ids=tuple(invoice_ids),
            total_after=draw.total_amount,
        ))
        logger.info("draw_invoices_added", extra={
            "draw_id": str(draw.id),
            "invoice_count": len(invoice_ids),
            "total_amount": str(draw.total_amount),
        })
        return draw.to_dto()

    def remove_invoice_from_draw(self, draw_id: UUID, invoice_id: UUID, performed_by: str) -> Draw:
        """Release an invoice's slices from a draft draw."""
        draw = self._load_draft(draw_id, "remove_invoice")
        invoice = self._invoices.load(invoice_id)
        rows = [a for a in draw.allocations if a.invoice_id == invoice.id]
        if not rows:
            raise NotFoundError("draw_invoice", f"{draw.id}/{invoice.id}")

        released = round_money(sum((a.amount for a in rows), ZERO))
        for row in rows:
            draw.allocations.remove(row)

        invoice.billed_amount = max(round_money(invoice.billed_amount - released), ZERO)
        if invoice.fully_billed_at is not None and (
            invoice.billed_amount < invoice.amount - self.config.amount_tolerance
        ):
            invoice.fully_billed_at = None
        self.session.flush()
        if invoice.first_draw_id == draw.id:
            invoice.first_draw_id = self._first_draw_with(invoice.id)
        if invoice.status == InvoiceStatus.IN_DRAW.value:
            transition = require_transition(
                INVOICE_WORKFLOW, "invoice", invoice.id, invoice.status, "remove_from_draw",
            )
            invoice.status = transition.to_state
        self._undo.invalidate(invoice.id)
        self.session.flush()

        self._recalculate_total(draw)
        self._budget.recompute(draw.job_id, invoice.cost_code_ids())
        self._activity.record_invoice(invoice.id, performed_by, InvoiceRemovedFromDraw(
            draw_id=draw.id,
            draw_number=draw.draw_number,
            released_amount=released,
        ))
        self._activity.record_draw(draw.id, performed_by, DrawInvoiceRemoved(
            invoice_id=invoice.id,
            total_after=draw.total_amount,
        ))
        logger.info("draw_invoice_removed", extra={
            "draw_id": str(draw.id),
            "invoice_id": str(invoice.id),
            "released_amount": str(released),
        })
        return draw.to_dto()

    def add_change_order_billing(
        self,
        draw_id: UUID,
        change_order_id: UUID,
        amount: Decimal,
        performed_by: str,
    ) -> Draw:
        """Bill a change-order amount directly on a draft draw (replaces any prior amount)."""
        draw = self._load_draft(draw_id, "add_change_order")
        co = self.session.get(ChangeOrderModel, change_order_id)
        if co is None:
            raise NotFoundError("change_order", str(change_order_id))
        if co.job_id != draw.job_id:
            raise ValidationFailedError(
                f"Change order {co.id} belongs to another job", field="change_order_id",
            )
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationFailedError(
                f"Change order billing must be positive, got {amount}", field="amount",
            )

        existing = next(
            (b for b in draw.change_order_billings if b.change_order_id == co.id), None,
        )
        if existing is not None:
            existing.amount = amount
        else:
            draw.change_order_billings.append(
                ChangeOrderDrawBillingModel(change_order_id=co.id, amount=amount)
            )
        self.session.flush()

        self._recalculate_total(draw)
        self._activity.record_draw(draw.id, performed_by, DrawChangeOrderBilled(
            change_order_id=co.id,
            amount=amount,
        ))
        logger.info("draw_change_order_billed", extra={
            "draw_id": str(draw.id),
            "change_order_id": str(co.id),
            "amount": str(amount),
        })
        return draw.to_dto()

    def recalculate_draw_total(self, draw_id: UUID) -> Draw:
        draw = self.load(draw_id)
        self._recalculate_total(draw)
        return draw.to_dto()

    # =========================================================================
    # Submit / unsubmit
    # =========================================================================

    def submit_draw(self, draw_id: UUID, performed_by: str) -> Draw:
        """
        Lock the draft and settle its invoices.

        Fully billed invoices get ``fully_billed_at``.  Partially billed
        in-draw invoices are kicked back to needs_approval: their
        allocations are cleared so the remainder can be recoded, and they
        release their PO line and change-order effects.
        """
        draw = self.load(draw_id)
        transition = require_transition(DRAW_WORKFLOW, "draw", draw.id, draw.status, "submit")
        now = self.clock.now()
        tolerance = self.config.amount_tolerance

        draw.status = transition.to_state
        draw.is_current_draft = False
        draw.submitted_at = now
        draw.locked_at = now
        self.session.flush()

        kicked_back: list[UUID] = []
        touched_codes: set[UUID] = set()
        touched_cos: set[UUID] = set()
        invoice_ids = draw.invoice_ids()
        for invoice_id in invoice_ids:
            invoice = self.session.get(InvoiceModel, invoice_id)
            if invoice is None or invoice.deleted_at is not None:
                continue
            cumulative = self._cumulative_billed(invoice.id)
            if cumulative >= invoice.amount - tolerance:
                if invoice.fully_billed_at is None:
                    invoice.fully_billed_at = now
                continue
            if invoice.status != InvoiceStatus.IN_DRAW.value:
                continue

            kick = require_transition(
                INVOICE_WORKFLOW, "invoice", invoice.id, invoice.status, "kick_back",
            )
            previous_status = invoice.status
            invoice.status = kick.to_state
            self._procurement.sync_invoice_commitment(invoice, previous_status)
            touched_codes |= invoice.cost_code_ids()
            touched_cos |= invoice.change_order_ids()
            invoice.allocations.clear()
            invoice.approved_at = None
            invoice.approved_by = None
            invoice.add_review_flag(ReviewFlag.PARTIAL_BILLED)
            self._undo.invalidate(invoice.id)
            self.session.flush()

            self._activity.record_invoice(invoice.id, performed_by, InvoicePartialBilled(
                draw_id=draw.id,
                billed_to_date=cumulative,
                remaining=round_money(invoice.amount - cumulative),
            ))
            kicked_back.append(invoice.id)

        self._procurement.recompute_change_orders(touched_cos)
        self._recalculate_total(draw)
        self._budget.recompute(draw.job_id, touched_codes | {a.cost_code_id for a in draw.allocations})

        self._activity.record_draw(draw.id, performed_by, DrawSubmitted(
            total_amount=draw.total_amount,
            invoice_count=len(invoice_ids),
            kicked_back_invoice_ids=tuple(kicked_back),
        ))
        logger.info("draw_submitted", extra={
            "draw_id": str(draw.id),
            "total_amount": str(draw.total_amount),
            "invoice_count": len(invoice_ids),
            "kicked_back_count": len(kicked_back),
        })
        return draw.to_dto()

    def unsubmit_draw(self, draw_id: UUID, performed_by: str, reason: str | None = None) -> Draw:
        """Reopen a submitted draw as the job's draft.

        Invoices kicked back at submit stay in needs_approval.
        """
        draw = self.load(draw_id)
        transition = require_transition(DRAW_WORKFLOW, "draw", draw.id, draw.status, "unsubmit")
        existing = self._current_draft(draw.job_id)
        if existing is not None and existing.id != draw.id:
            raise DuplicateDraftDrawError(str(draw.job_id), str(existing.id))

        draw.status = transition.to_state
        draw.is_current_draft = True
        draw.submitted_at = None
        draw.locked_at = None
        self.session.flush()

        self._activity.record_draw(draw.id, performed_by, DrawUnsubmitted(reason=reason))
        logger.info("draw_unsubmitted", extra={"draw_id": str(draw.id)})
        return draw.to_dto()

    # =========================================================================
    # Funding
    # =========================================================================

    def fund_draw(self, draw_id: UUID, funded_amount: Decimal, performed_by: str) -> Draw:
        """
        Record lender funding.

        Status is funded when the amount is within tolerance of the total,
        otherwise partially_funded or overfunded.  Each invoice on the draw
        is credited its slice as paid; invoices billed in full become paid.
        """
        draw = self.load(draw_id)
        funded = to_money(funded_amount, "funded_amount")
        if funded < ZERO:
            raise ValidationFailedError(
                f"Funded amount cannot be negative, got {funded}", field="funded_amount",
            )
        tolerance = self.config.amount_tolerance
        difference = round_money(funded - draw.total_amount)
        if abs(difference) <= tolerance:
            action = "fund"
        elif difference < ZERO:
            action = "fund_short"
        else:
            action = "fund_over"
        transition = require_transition(DRAW_WORKFLOW, "draw", draw.id, draw.status, action)

        now = self.clock.now()
        draw.status = transition.to_state
        draw.funded_amount = funded
        draw.funding_difference = difference
        draw.funded_at = now
        self.session.flush()

        paid_ids: list[UUID] = []
        split_parents: set[UUID] = set()
        touched_codes: set[UUID] = set()
        for invoice_id in draw.invoice_ids():
            invoice = self.session.get(InvoiceModel, invoice_id)
            if invoice is None or invoice.deleted_at is not None:
                continue
            paid_this_draw = round_money(draw.billed_for(invoice.id))
            invoice.paid_amount = min(round_money(invoice.paid_amount + paid_this_draw), invoice.amount)
            touched_codes |= invoice.cost_code_ids()

            if (
                invoice.status == InvoiceStatus.IN_DRAW.value
                and invoice.billed_amount >= invoice.amount - tolerance
            ):
                pay = require_transition(
                    INVOICE_WORKFLOW, "invoice", invoice.id, invoice.status, "pay",
                )
                invoice.status = pay.to_state
                self._undo.invalidate(invoice.id)
                paid_ids.append(invoice.id)
                self._activity.record_invoice(invoice.id, performed_by, InvoicePaid(
                    draw_id=draw.id,
                    paid_this_draw=paid_this_draw,
                    paid_to_date=invoice.paid_amount,
                ))
                if invoice.parent_invoice_id is not None:
                    split_parents.add(invoice.parent_invoice_id)
        self.session.flush()

        for parent_id in split_parents:
            self._invoices.reconcile_split(parent_id, performed_by)
        self._budget.recompute(draw.job_id, touched_codes)

        self._activity.record_draw(draw.id, performed_by, DrawFunded(
            funded_amount=funded,
            funding_difference=difference,
            status=draw.status,
            paid_invoice_ids=tuple(paid_ids),
        ))
        logger.info("draw_funded", extra={
            "draw_id": str(draw.id),
            "status": draw.status,
            "funded_amount": str(funded),
            "funding_difference": str(difference),
            "paid_invoice_count": len(paid_ids),
        })
        return draw.to_dto()

    # =========================================================================
    # Internals
    # =========================================================================

    def _current_draft(self, job_id: UUID) -> DrawModel | None:
        return self.session.execute(
            select(DrawModel).where(DrawModel.job_id == job_id, DrawModel.is_current_draft.is_(True))
        ).scalar_one_or_none()

    def _load_draft(self, draw_id: UUID, action: str) -> DrawModel:
        draw = self.load(draw_id)
        if draw.status != DrawStatus.DRAFT.value:
            raise InvalidTransitionError("draw", str(draw.id), draw.status, action)
        return draw

    def _upsert_draw_line(
        self,
        draw: DrawModel,
        invoice_id: UUID,
        cost_code_id: UUID,
        amount: Decimal,
    ) -> None:
        for row in draw.allocations:
            if row.invoice_id == invoice_id and row.cost_code_id == cost_code_id:
                row.amount = round_money(row.amount + amount)
                return
        draw.allocations.append(DrawAllocationModel(
            invoice_id=invoice_id,
            cost_code_id=cost_code_id,
            amount=amount,
            position=len(draw.allocations),
        ))

    def _recalculate_total(self, draw: DrawModel) -> None:
        lines = sum((a.amount for a in draw.allocations), ZERO)
        change_orders = sum((b.amount for b in draw.change_order_billings), ZERO)
        draw.total_amount = round_money(lines + change_orders)
        self.session.flush()

    def _cumulative_billed(self, invoice_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(DrawAllocationModel.amount), 0))
            .where(DrawAllocationModel.invoice_id == invoice_id)
        ).scalar_one()
        return round_money(Decimal(str(total)))

    def _first_draw_with(self, invoice_id: UUID) -> UUID | None:
        return self.session.execute(
            select(DrawModel.id)
            .join(DrawAllocationModel, DrawAllocationModel.draw_id == DrawModel.id)
            .where(DrawAllocationModel.invoice_id == invoice_id)
            .order_by(DrawModel.draw_number)
            .limit(1)
        ).scalar_one_or_none()
