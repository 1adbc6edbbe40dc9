"""
Tests for the BillingLedger transactional facade.

Every call runs in its own transaction, so these tests use only the
ledger's own methods for setup and assertions.
"""

from decimal import Decimal

import pytest
from sqlalchemy import text

from billing_engines.allocation import AllocationLine
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.domain.statuses import DrawStatus, InvoiceStatus
from billing_kernel.exceptions import EntityLockedError, OverAllocatedError, PersistenceError
from billing_services.billing_ledger import BillingLedger

ACTOR = "pm@acme"


@pytest.fixture
def setup(ledger):
    job = ledger.create_job("Harbor View Residences")
    concrete = ledger.create_cost_code("03-300", "Cast-in-place Concrete")
    invoice = ledger.create_invoice(job.id, Decimal("10000.00"), invoice_number="INV-100")
    return job, concrete, invoice


# =============================================================================
# Transactions
# =============================================================================


class TestUnitOfWork:

    def test_committed_work_is_visible_to_later_calls(self, ledger, setup):
        job, _, invoice = setup
        assert [inv.id for inv in ledger.list_invoices(job.id)] == [invoice.id]
        assert ledger.get_invoice(invoice.id).status == InvoiceStatus.RECEIVED

    def test_failed_operation_leaves_no_trace(self, ledger, setup):
        _, concrete, invoice = setup
        with pytest.raises(OverAllocatedError):
            ledger.code_invoice(invoice.id, [AllocationLine(concrete.id, Decimal("12000.00"))], ACTOR)

        unchanged = ledger.get_invoice(invoice.id)
        assert unchanged.status == InvoiceStatus.RECEIVED
        assert unchanged.allocations == ()
        assert ledger.check_lock("invoice", invoice.id) is None

    def test_store_errors_become_persistence_errors(self, ledger, setup):
        with pytest.raises(PersistenceError) as exc_info:
            ledger._run("broken_query", lambda o: o.session.execute(text("SELECT * FROM no_such_table")))
        assert exc_info.value.retryable

    def test_from_url(self):
        standalone = BillingLedger.from_url("sqlite://", clock=DeterministicClock())
        job = standalone.create_job("Standalone")
        assert standalone.reconcile_job(job.id).summary.is_clean


# =============================================================================
# Locking
# =============================================================================


class TestLocking:

    def test_lock_released_after_operation(self, ledger, setup):
        _, concrete, invoice = setup
        ledger.code_invoice(invoice.id, [AllocationLine(concrete.id, Decimal("10000.00"))], ACTOR)
        assert ledger.check_lock("invoice", invoice.id) is None

    def test_other_owner_blocks_mutation(self, ledger, setup):
        _, concrete, invoice = setup
        ledger.acquire_lock("invoice", invoice.id, "super@acme")

        with pytest.raises(EntityLockedError) as exc_info:
            ledger.code_invoice(invoice.id, [AllocationLine(concrete.id, Decimal("10000.00"))], ACTOR)
        assert exc_info.value.locked_by == "super@acme"
        assert ledger.get_invoice(invoice.id).status == InvoiceStatus.RECEIVED

    def test_locked_invoice_cannot_join_draw(self, ledger, setup):
        job, concrete, invoice = setup
        ledger.code_invoice(invoice.id, [AllocationLine(concrete.id, Decimal("10000.00"))], ACTOR)
        ledger.approve_invoice(invoice.id, ACTOR)
        draft = ledger.get_or_create_draft_draw(job.id, ACTOR)
        ledger.acquire_lock("invoice", invoice.id, "super@acme")

        with pytest.raises(EntityLockedError) as exc_info:
            ledger.add_invoices_to_draw(draft.id, [invoice.id], ACTOR)
        assert exc_info.value.locked_by == "super@acme"
        assert ledger.get_invoice(invoice.id).status == InvoiceStatus.APPROVED
        assert ledger.get_draw(draft.id).total_amount == Decimal("0.00")
        assert ledger.check_lock("draw", draft.id) is None

    def test_locked_invoice_blocks_funding(self, ledger, setup):
        job, concrete, invoice = setup
        ledger.code_invoice(invoice.id, [AllocationLine(concrete.id, Decimal("10000.00"))], ACTOR)
        ledger.approve_invoice(invoice.id, ACTOR)
        draft = ledger.get_or_create_draft_draw(job.id, ACTOR)
        ledger.add_invoices_to_draw(draft.id, [invoice.id], ACTOR)
        ledger.submit_draw(draft.id, ACTOR)
        ledger.acquire_lock("invoice", invoice.id, "super@acme")

        with pytest.raises(EntityLockedError):
            ledger.fund_draw(draft.id, Decimal("10000.00"), ACTOR)
        assert ledger.get_draw(draft.id).status == DrawStatus.SUBMITTED
        assert ledger.get_invoice(invoice.id).status == InvoiceStatus.IN_DRAW
        assert ledger.check_lock("draw", draft.id) is None

        ledger.release_lock("invoice", invoice.id, "super@acme")
        assert ledger.fund_draw(draft.id, Decimal("10000.00"), ACTOR).status == DrawStatus.FUNDED

    def test_own_lock_survives_operation(self, ledger, setup):
        _, concrete, invoice = setup
        ledger.acquire_lock("invoice", invoice.id, ACTOR)
        ledger.code_invoice(invoice.id, [AllocationLine(concrete.id, Decimal("10000.00"))], ACTOR)

        grant = ledger.check_lock("invoice", invoice.id)
        assert grant is not None
        assert grant.locked_by == ACTOR
        assert ledger.release_lock("invoice", invoice.id, ACTOR)

    def test_force_release(self, ledger, setup):
        _, _, invoice = setup
        ledger.acquire_lock("invoice", invoice.id, "super@acme")
        assert ledger.force_release_lock("invoice", invoice.id)
        assert ledger.check_lock("invoice", invoice.id) is None


# =============================================================================
# End to end
# =============================================================================


class TestBillingFlow:

    def test_invoice_to_paid(self, ledger, setup, deterministic_clock):
        job, concrete, invoice = setup
        ledger.code_invoice(invoice.id, [AllocationLine(concrete.id, Decimal("10000.00"))], ACTOR)
        deterministic_clock.advance(1)
        ledger.approve_invoice(invoice.id, ACTOR)
        deterministic_clock.advance(1)

        draft = ledger.get_or_create_draft_draw(job.id, ACTOR)
        ledger.add_invoices_to_draw(draft.id, [invoice.id], ACTOR)
        ledger.submit_draw(draft.id, ACTOR)
        funded = ledger.fund_draw(draft.id, Decimal("10000.00"), ACTOR)

        assert funded.status == DrawStatus.FUNDED
        paid = ledger.get_invoice(invoice.id)
        assert paid.status == InvoiceStatus.PAID
        assert paid.paid_amount == Decimal("10000.00")
        assert ledger.reconcile_job(job.id).summary.is_clean
        assert [e.action for e in ledger.invoice_history(invoice.id)][:2] == ["coded", "approved"]

    def test_undo_through_facade(self, ledger, setup):
        _, concrete, invoice = setup
        ledger.code_invoice(invoice.id, [AllocationLine(concrete.id, Decimal("10000.00"))], ACTOR)
        ledger.approve_invoice(invoice.id, ACTOR)

        entry = ledger.get_available_undo("invoice", invoice.id)
        assert [e.id for e in ledger.recent_undos(ACTOR)] == [entry.id]

        result = ledger.execute_undo(entry.id, ACTOR)
        assert result.restored_status == InvoiceStatus.NEEDS_APPROVAL.value
        assert ledger.get_invoice(invoice.id).status == InvoiceStatus.NEEDS_APPROVAL
        assert ledger.get_available_undo("invoice", invoice.id) is None

    def test_budget_summary(self, ledger, setup):
        job, concrete, _ = setup
        ledger.set_budgeted_amount(job.id, concrete.id, Decimal("25000.00"), ACTOR)
        summary = ledger.budget_summary(job.id)
        assert summary.total_budgeted == Decimal("25000.00")
