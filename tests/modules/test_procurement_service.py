"""
Tests for ProcurementService.

Validates:
- purchase order creation and status changes (voided is final)
- PO line commitments follow committed invoice statuses, floored at zero
- direct PO-line allocation matching
- change orders and commitment rebuilds
"""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest

from billing_engines.allocation import AllocationLine
from billing_kernel.domain.statuses import PurchaseOrderStatus
from billing_kernel.exceptions import InvalidTransitionError, NotFoundError, ValidationFailedError
from billing_modules.procurement.models import POLineRequest
from billing_modules.procurement.orm import POLineItemModel

ACTOR = "pm@acme"


@pytest.fixture
def procurement(orchestrator):
    return orchestrator.procurement


# =============================================================================
# Purchase orders
# =============================================================================


class TestPurchaseOrders:

    def test_total_is_sum_of_lines(self, make_purchase_order, cost_codes):
        po = make_purchase_order([(cost_codes[0], "6000.00"), (cost_codes[1], "4000.00")])
        assert po.total_amount == Decimal("10000.00")
        assert po.status == PurchaseOrderStatus.OPEN
        assert all(line.invoiced_amount == Decimal("0.00") for line in po.line_items)

    def test_needs_lines(self, procurement, job):
        with pytest.raises(ValidationFailedError):
            procurement.create_purchase_order(job.id, "PO-EMPTY", [])

    def test_line_amount_positive(self, procurement, job, cost_codes):
        with pytest.raises(ValidationFailedError):
            procurement.create_purchase_order(
                job.id, "PO-BAD", [POLineRequest(cost_codes[0].id, Decimal("0.00"))],
            )

    def test_voided_is_final(self, procurement, make_purchase_order, cost_codes):
        po = make_purchase_order([(cost_codes[0], "100.00")])
        procurement.set_purchase_order_status(po.id, PurchaseOrderStatus.VOIDED)
        with pytest.raises(InvalidTransitionError):
            procurement.set_purchase_order_status(po.id, PurchaseOrderStatus.OPEN)

    def test_unknown_po(self, procurement):
        with pytest.raises(NotFoundError):
            procurement.get_purchase_order(uuid4())


# =============================================================================
# Commitments
# =============================================================================


class TestCommitments:

    def test_paid_cycle_keeps_po_line_invoiced(self, orchestrator, procurement, job, cost_codes,
                                               make_purchase_order, make_approved_invoice):
        po = make_purchase_order([(cost_codes[0], "10000.00")])
        inv = make_approved_invoice("10000.00", [(cost_codes[0], "10000.00")], po_id=po.id)
        draft = orchestrator.draws.create_draft_draw(job.id, ACTOR)
        orchestrator.draws.add_invoices_to_draw(draft.id, [inv.id], ACTOR)
        orchestrator.draws.submit_draw(draft.id, ACTOR)
        orchestrator.draws.fund_draw(draft.id, Decimal("10000.00"), ACTOR)

        line = procurement.get_purchase_order(po.id).line_items[0]
        assert line.invoiced_amount == Decimal("10000.00")

    def test_denial_after_approval_reverses(self, orchestrator, procurement, cost_codes,
                                           make_purchase_order, make_approved_invoice):
        po = make_purchase_order([(cost_codes[0], "10000.00")])
        inv = make_approved_invoice("3000.00", [(cost_codes[0], "3000.00")], po_id=po.id)
        orchestrator.invoices.deny_invoice(inv.id, "wrong vendor", ACTOR)
        assert procurement.get_purchase_order(po.id).line_items[0].invoiced_amount == Decimal("0.00")

    def test_direct_po_line_match(self, orchestrator, procurement, job, cost_codes, make_purchase_order):
        po = make_purchase_order([(cost_codes[0], "5000.00"), (cost_codes[0], "5000.00")])
        second_line = po.line_items[1]
        inv = orchestrator.invoices.create_invoice(job.id, Decimal("2000.00"), po_id=po.id)
        orchestrator.invoices.code_invoice(
            inv.id,
            [AllocationLine(cost_codes[0].id, Decimal("2000.00"), po_line_item_id=second_line.id)],
            ACTOR,
        )
        orchestrator.invoices.approve_invoice(inv.id, ACTOR)
        lines = {line.id: line for line in procurement.get_purchase_order(po.id).line_items}
        assert lines[second_line.id].invoiced_amount == Decimal("2000.00")
        assert lines[po.line_items[0].id].invoiced_amount == Decimal("0.00")

    def test_po_line_from_other_po_rejected(self, orchestrator, job, cost_codes, make_purchase_order):
        po = make_purchase_order([(cost_codes[0], "5000.00")])
        other = make_purchase_order([(cost_codes[0], "5000.00")])
        inv = orchestrator.invoices.create_invoice(job.id, Decimal("100.00"), po_id=po.id)
        with pytest.raises(ValidationFailedError):
            orchestrator.invoices.code_invoice(
                inv.id,
                [AllocationLine(cost_codes[0].id, Decimal("100.00"), po_line_item_id=other.line_items[0].id)],
                ACTOR,
            )

    def test_invoiced_total_excludes_denied(self, orchestrator, procurement, cost_codes,
                                            make_purchase_order, make_coded_invoice):
        po = make_purchase_order([(cost_codes[0], "10000.00")])
        keep = make_coded_invoice("1000.00", [(cost_codes[0], "1000.00")], po_id=po.id)
        drop = make_coded_invoice("2000.00", [(cost_codes[0], "2000.00")], po_id=po.id)
        orchestrator.invoices.deny_invoice(drop.id, "duplicate", ACTOR)
        assert procurement.invoiced_total(po.id) == Decimal("1000.00")
        assert procurement.invoiced_total(po.id, exclude_invoice_id=keep.id) == Decimal("0.00")

    def test_rebuild_repairs_drift(self, session, procurement, job, cost_codes,
                                   make_purchase_order, make_approved_invoice):
        po = make_purchase_order([(cost_codes[0], "10000.00")])
        make_approved_invoice("2500.00", [(cost_codes[0], "2500.00")], po_id=po.id)
        row = session.get(POLineItemModel, po.line_items[0].id)
        row.invoiced_amount = Decimal("999.00")
        session.flush()

        assert procurement.rebuild_job_commitments(job.id) == 1
        assert procurement.get_purchase_order(po.id).line_items[0].invoiced_amount == Decimal("2500.00")
        assert procurement.rebuild_job_commitments(job.id) == 0


# =============================================================================
# Change orders
# =============================================================================


class TestChangeOrders:

    def test_create(self, procurement, job):
        co = procurement.create_change_order(job.id, "CO-1", Decimal("2500.00"), title="Added footing")
        assert co.invoiced_amount == Decimal("0.00")
        assert co.title == "Added footing"

    def test_unknown_change_order(self, procurement):
        with pytest.raises(NotFoundError):
            procurement.get_change_order(uuid4())

    def test_change_order_from_other_job_rejected(self, orchestrator, procurement, make_invoice, cost_codes):
        other = orchestrator.jobs.create_job("Annex")
        co = procurement.create_change_order(other.id, "CO-9", Decimal("100.00"))
        inv = make_invoice("100.00")
        with pytest.raises(ValidationFailedError):
            orchestrator.invoices.code_invoice(
                inv.id, [AllocationLine(cost_codes[0].id, Decimal("100.00"), change_order_id=co.id)], ACTOR,
            )
