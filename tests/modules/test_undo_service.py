"""
Tests for UndoService.

Validates:
- status actions and recodes restore the captured state within the window
- expiry at created_at + undo_window_seconds, purge and double-execute
- one live entry per invoice; billing invalidates pending entries
"""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest

from billing_engines.allocation import AllocationLine
from billing_kernel.domain.statuses import InvoiceStatus
from billing_kernel.exceptions import UndoExpiredError, UndoNotFoundError
from billing_modules.invoices.models import SplitPart

ACTOR = "pm@acme"


@pytest.fixture
def undo(orchestrator):
    return orchestrator.undo


# =============================================================================
# Execution
# =============================================================================


class TestExecuteUndo:

    def test_undo_approval_restores_needs_approval(self, orchestrator, undo, cost_codes,
                                                   make_purchase_order, make_approved_invoice):
        po = make_purchase_order([(cost_codes[0], "10000.00")])
        inv = make_approved_invoice("3000.00", [(cost_codes[0], "3000.00")], po_id=po.id)
        assert orchestrator.procurement.get_purchase_order(po.id).line_items[0].invoiced_amount == Decimal("3000.00")

        entry = undo.get_available("invoice", inv.id)
        assert entry.action == "approved"

        result = undo.execute(entry.id, ACTOR)
        assert result.restored_status == InvoiceStatus.NEEDS_APPROVAL.value

        restored = orchestrator.invoices.get_invoice(inv.id)
        assert restored.status == InvoiceStatus.NEEDS_APPROVAL
        assert restored.approved_by is None
        assert orchestrator.procurement.get_purchase_order(po.id).line_items[0].invoiced_amount == Decimal("0.00")

    def test_undo_denial_restores_approval(self, orchestrator, undo, cost_codes, make_approved_invoice):
        inv = make_approved_invoice("500.00", [(cost_codes[0], "500.00")])
        orchestrator.invoices.deny_invoice(inv.id, "duplicate", ACTOR)

        entry = undo.get_available("invoice", inv.id)
        undo.execute(entry.id, ACTOR)

        restored = orchestrator.invoices.get_invoice(inv.id)
        assert restored.status == InvoiceStatus.APPROVED
        assert restored.denial_reason is None
        assert restored.approved_by == ACTOR

    def test_undo_first_coding_returns_to_received(self, orchestrator, undo, cost_codes, make_coded_invoice):
        inv = make_coded_invoice("1000.00", [(cost_codes[0], "1000.00")])

        entry = undo.get_available("allocation", inv.id)
        assert entry.action == "coded"
        undo.execute(entry.id, ACTOR)

        restored = orchestrator.invoices.get_invoice(inv.id)
        assert restored.status == InvoiceStatus.RECEIVED
        assert restored.allocations == ()

    def test_undo_recode_restores_previous_lines(self, orchestrator, undo, cost_codes, make_coded_invoice):
        inv = make_coded_invoice("1000.00", [(cost_codes[0], "1000.00")])
        orchestrator.invoices.code_invoice(
            inv.id, [AllocationLine(cost_codes[1].id, Decimal("1000.00"))], ACTOR,
        )

        entry = undo.get_available("allocation", inv.id)
        undo.execute(entry.id, ACTOR)

        restored = orchestrator.invoices.get_invoice(inv.id)
        assert [a.cost_code_id for a in restored.allocations] == [cost_codes[0].id]
        assert restored.allocated_total == Decimal("1000.00")

    def test_undo_is_recorded_in_history(self, orchestrator, undo, deterministic_clock, cost_codes,
                                         make_approved_invoice):
        inv = make_approved_invoice("500.00", [(cost_codes[0], "500.00")])
        deterministic_clock.advance(1)
        undo.execute(undo.get_available("invoice", inv.id).id, ACTOR)

        history = orchestrator.activity.invoice_history(inv.id)
        assert history[-1].action == "undone"

    def test_undo_child_denial_reopens_split_parent(self, orchestrator, undo, make_invoice):
        parent = make_invoice("1000.00")
        first, second = orchestrator.invoices.split_invoice(
            parent.id, [SplitPart(Decimal("500.00")), SplitPart(Decimal("500.00"))], ACTOR,
        )
        orchestrator.invoices.deny_invoice(first.id, "duplicate", ACTOR)
        orchestrator.invoices.deny_invoice(second.id, "duplicate", ACTOR)
        assert orchestrator.invoices.get_invoice(parent.id).status == InvoiceStatus.RECONCILED

        undo.execute(undo.get_available("invoice", second.id).id, ACTOR)

        assert orchestrator.invoices.get_invoice(second.id).status == InvoiceStatus.RECEIVED
        assert orchestrator.invoices.get_invoice(parent.id).status == InvoiceStatus.SPLIT
        assert "split_reopened" in [e.action for e in orchestrator.activity.invoice_history(parent.id)]

    def test_undo_child_resubmit_reconciles_split_parent(self, orchestrator, undo, make_invoice):
        parent = make_invoice("1000.00")
        first, second = orchestrator.invoices.split_invoice(
            parent.id, [SplitPart(Decimal("500.00")), SplitPart(Decimal("500.00"))], ACTOR,
        )
        orchestrator.invoices.deny_invoice(first.id, "duplicate", ACTOR)
        orchestrator.invoices.deny_invoice(second.id, "duplicate", ACTOR)
        orchestrator.invoices.resubmit_invoice(second.id, ACTOR)
        assert orchestrator.invoices.get_invoice(parent.id).status == InvoiceStatus.SPLIT

        undo.execute(undo.get_available("invoice", second.id).id, ACTOR)

        assert orchestrator.invoices.get_invoice(second.id).status == InvoiceStatus.DENIED
        assert orchestrator.invoices.get_invoice(parent.id).status == InvoiceStatus.RECONCILED


# =============================================================================
# Window and lifecycle
# =============================================================================


class TestUndoWindow:

    def test_last_second_of_window_still_works(self, undo, deterministic_clock, cost_codes,
                                               make_approved_invoice):
        inv = make_approved_invoice("500.00", [(cost_codes[0], "500.00")])
        entry = undo.get_available("invoice", inv.id)
        deterministic_clock.advance(30)
        assert undo.execute(entry.id, ACTOR).action == "approved"

    def test_expired_entry_rejected(self, undo, deterministic_clock, cost_codes, make_approved_invoice):
        inv = make_approved_invoice("500.00", [(cost_codes[0], "500.00")])
        entry = undo.get_available("invoice", inv.id)
        deterministic_clock.advance(31)
        with pytest.raises(UndoExpiredError):
            undo.execute(entry.id, ACTOR)

    def test_purged_entry_not_found(self, undo, deterministic_clock, cost_codes, make_approved_invoice):
        inv = make_approved_invoice("500.00", [(cost_codes[0], "500.00")])
        entry = undo.get_available("invoice", inv.id)
        deterministic_clock.advance(31)
        # coding entry plus approval entry
        assert undo.cleanup_expired() == 2
        with pytest.raises(UndoNotFoundError):
            undo.execute(entry.id, ACTOR)

    def test_second_execute_not_found(self, undo, cost_codes, make_approved_invoice):
        inv = make_approved_invoice("500.00", [(cost_codes[0], "500.00")])
        entry = undo.get_available("invoice", inv.id)
        undo.execute(entry.id, ACTOR)
        with pytest.raises(UndoNotFoundError):
            undo.execute(entry.id, ACTOR)

    def test_unknown_entry(self, undo):
        with pytest.raises(UndoNotFoundError):
            undo.get_entry(uuid4())

    def test_seconds_remaining(self, undo, deterministic_clock, cost_codes, make_approved_invoice):
        inv = make_approved_invoice("500.00", [(cost_codes[0], "500.00")])
        entry = undo.get_available("invoice", inv.id)
        deterministic_clock.advance(12)
        assert entry.seconds_remaining(deterministic_clock.now()) == 18


# =============================================================================
# Supersession and invalidation
# =============================================================================


class TestSupersession:

    def test_new_action_supersedes_previous_entry(self, undo, cost_codes, make_approved_invoice):
        inv = make_approved_invoice("500.00", [(cost_codes[0], "500.00")])
        # the approval replaced the coding entry
        assert undo.get_available("allocation", inv.id) is None
        assert undo.get_available("invoice", inv.id).action == "approved"

    def test_adding_to_draw_invalidates(self, orchestrator, undo, job, cost_codes, make_approved_invoice):
        inv = make_approved_invoice("500.00", [(cost_codes[0], "500.00")])
        draft = orchestrator.draws.create_draft_draw(job.id, ACTOR)
        orchestrator.draws.add_invoices_to_draw(draft.id, [inv.id], ACTOR)
        assert undo.get_available("invoice", inv.id) is None

    def test_recent_for_is_newest_first(self, undo, deterministic_clock, cost_codes, make_approved_invoice):
        first = make_approved_invoice("500.00", [(cost_codes[0], "500.00")])
        deterministic_clock.advance(1)
        second = make_approved_invoice("700.00", [(cost_codes[0], "700.00")])

        recent = undo.recent_for(ACTOR)
        assert [e.entity_id for e in recent] == [second.id, first.id]
        assert undo.recent_for("someone@else") == ()

    def test_snapshot_kind_must_match_entity_type(self, undo, cost_codes, make_approved_invoice):
        inv = make_approved_invoice("500.00", [(cost_codes[0], "500.00")])
        invoice_state = undo.get_available("invoice", inv.id).previous_state
        with pytest.raises(ValueError):
            undo.create_snapshot("allocation", inv.id, "coded", invoice_state, ACTOR)
