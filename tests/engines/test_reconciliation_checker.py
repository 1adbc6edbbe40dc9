"""
Tests for ReconciliationChecker.

Covers the five check categories plus run_all_checks aggregation.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_engines.reconciliation.checker import ReconciliationChecker
from billing_engines.reconciliation.types import (
    AllocationRecord,
    BudgetLineRecord,
    CheckCategory,
    DrawAllocationRecord,
    DrawRecord,
    FindingStatus,
    InvoiceRecord,
    JobLedgerSnapshot,
    PurchaseOrderRecord,
)

CHECKED_AT = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
CC_A = uuid4()
CC_B = uuid4()


# =============================================================================
# Helpers
# =============================================================================


def _invoice(
    amount="10000.00",
    status="approved",
    billed="0.00",
    allocations=(("A", "10000.00"),),
    po_id=None,
    fully_billed_at=None,
    number="INV-1",
) -> InvoiceRecord:
    codes = {"A": CC_A, "B": CC_B, None: None}
    return InvoiceRecord(
        id=uuid4(),
        invoice_number=number,
        amount=Decimal(amount),
        status=status,
        billed_amount=Decimal(billed),
        paid_amount=Decimal("0.00"),
        po_id=po_id,
        fully_billed_at=fully_billed_at,
        allocations=tuple(AllocationRecord(codes[cc], Decimal(a)) for cc, a in allocations),
    )


def _draw(invoice, amount, number=1, total=None, co_total="0.00", cost_code=CC_A,
          status="submitted") -> DrawRecord:
    return DrawRecord(
        id=uuid4(),
        draw_number=number,
        status=status,
        total_amount=Decimal(total if total is not None else amount),
        allocations=(DrawAllocationRecord(invoice.id, cost_code, Decimal(amount)),),
        change_order_billing_total=Decimal(co_total),
    )


def _snapshot(**kwargs) -> JobLedgerSnapshot:
    return JobLedgerSnapshot(job_id=uuid4(), job_name="Harbor View", **kwargs)


def _non_pass(findings):
    return [f for f in findings if f.status != FindingStatus.PASS]


@pytest.fixture
def checker():
    return ReconciliationChecker()


# =============================================================================
# Invoice allocations
# =============================================================================


class TestInvoiceAllocations:

    def test_clean_invoices_single_pass(self, checker):
        findings = checker.check_invoice_allocations(_snapshot(invoices=(_invoice(),)))
        assert len(findings) == 1
        assert findings[0].status == FindingStatus.PASS
        assert findings[0].type == CheckCategory.INVOICE_ALLOCATIONS.value

    def test_over_allocated_by_fifty_cents_fails(self, checker):
        inv = _invoice(allocations=(("A", "10000.50"),))
        findings = checker.check_invoice_allocations(_snapshot(invoices=(inv,)))
        assert [f.type for f in findings] == ["INVOICE_OVER_ALLOCATED"]
        assert findings[0].status == FindingStatus.FAIL
        assert findings[0].difference == Decimal("0.50")

    def test_one_cent_over_is_within_tolerance(self, checker):
        inv = _invoice(allocations=(("A", "10000.01"),))
        findings = checker.check_invoice_allocations(_snapshot(invoices=(inv,)))
        assert _non_pass(findings) == []

    def test_missing_cost_code_fails(self, checker):
        inv = _invoice(allocations=(("A", "5000.00"), (None, "5000.00")))
        findings = checker.check_invoice_allocations(_snapshot(invoices=(inv,)))
        assert [f.type for f in findings] == ["INVOICE_MISSING_COST_CODE"]
        assert findings[0].details == {"count": 1}

    def test_billed_mismatch_uses_latest_draw_slice(self, checker):
        inv = _invoice(status="in_draw", billed="10000.00", allocations=(("A", "4000.00"),))
        first = _draw(inv, "6000.00", number=1)
        second = _draw(inv, "4000.00", number=2)
        findings = checker.check_invoice_allocations(_snapshot(invoices=(inv,), draws=(first, second)))
        assert _non_pass(findings) == []

    def test_billed_mismatch_warns(self, checker):
        inv = _invoice(status="in_draw", billed="10000.00", allocations=(("A", "9000.00"),))
        draw = _draw(inv, "10000.00")
        findings = checker.check_invoice_allocations(_snapshot(invoices=(inv,), draws=(draw,)))
        assert [f.type for f in findings] == ["INVOICE_BILLED_MISMATCH"]
        assert findings[0].status == FindingStatus.WARNING


# =============================================================================
# Draw totals
# =============================================================================


class TestDrawTotals:

    def test_matching_total_passes(self, checker):
        inv = _invoice(status="in_draw", billed="10000.00")
        draw = _draw(inv, "10000.00", total="10500.00", co_total="500.00")
        findings = checker.check_draw_totals(_snapshot(invoices=(inv,), draws=(draw,)))
        assert _non_pass(findings) == []

    def test_total_mismatch_fails(self, checker):
        inv = _invoice(status="in_draw", billed="10000.00")
        draw = _draw(inv, "10000.00", total="9000.00")
        findings = checker.check_draw_totals(_snapshot(invoices=(inv,), draws=(draw,)))
        assert [f.type for f in findings] == ["DRAW_TOTAL_MISMATCH"]
        assert findings[0].expected == Decimal("10000.00")
        assert findings[0].actual == Decimal("9000.00")

    def test_unexpected_invoice_status_warns(self, checker):
        inv = _invoice(status="denied", billed="10000.00")
        draw = _draw(inv, "10000.00")
        findings = checker.check_draw_totals(_snapshot(invoices=(inv,), draws=(draw,)))
        assert [f.type for f in findings] == ["DRAW_INVOICE_STATUS_MISMATCH"]
        assert findings[0].details["status"] == "denied"

    def test_partially_billed_invoice_awaiting_next_cycle_is_exempt(self, checker):
        inv = _invoice(status="needs_approval", billed="6000.00", allocations=())
        draw = _draw(inv, "6000.00")
        findings = checker.check_draw_totals(_snapshot(invoices=(inv,), draws=(draw,)))
        assert _non_pass(findings) == []

    def test_missing_invoice_warns(self, checker):
        ghost = _invoice()
        draw = _draw(ghost, "100.00")
        findings = checker.check_draw_totals(_snapshot(draws=(draw,)))
        assert [f.details["status"] for f in findings] == ["missing"]


# =============================================================================
# PO balances
# =============================================================================


class TestPOBalances:

    def _po_snapshot(self, invoiced: str):
        po = PurchaseOrderRecord(uuid4(), "PO-100", Decimal("10000.00"), "open")
        inv = _invoice(amount=invoiced, allocations=(("A", invoiced),), po_id=po.id)
        return _snapshot(invoices=(inv,), purchase_orders=(po,))

    def test_within_total_passes(self, checker):
        assert _non_pass(checker.check_po_balances(self._po_snapshot("10000.00"))) == []

    def test_nine_percent_over_warns(self, checker):
        findings = checker.check_po_balances(self._po_snapshot("10900.00"))
        assert [(f.type, f.status) for f in findings] == [("PO_SLIGHT_OVERAGE", FindingStatus.WARNING)]

    def test_fifteen_percent_over_fails(self, checker):
        findings = checker.check_po_balances(self._po_snapshot("11500.00"))
        assert [(f.type, f.status) for f in findings] == [("PO_OVER_INVOICED", FindingStatus.FAIL)]

    def test_denied_invoices_excluded(self, checker):
        po = PurchaseOrderRecord(uuid4(), "PO-100", Decimal("10000.00"), "open")
        inv = _invoice(amount="50000.00", status="denied", allocations=(), po_id=po.id)
        findings = checker.check_po_balances(_snapshot(invoices=(inv,), purchase_orders=(po,)))
        assert _non_pass(findings) == []


# =============================================================================
# Budget actuals
# =============================================================================


class TestBudgetActuals:

    def test_stored_billed_matches(self, checker):
        inv = _invoice(status="in_draw", billed="10000.00")
        line = BudgetLineRecord(CC_A, Decimal("20000.00"), Decimal("10000.00"))
        findings = checker.check_budget_actuals(_snapshot(invoices=(inv,), budget_lines=(line,)))
        assert _non_pass(findings) == []

    def test_stale_billed_warns(self, checker):
        inv = _invoice(status="paid", billed="10000.00")
        line = BudgetLineRecord(CC_A, Decimal("20000.00"), Decimal("0.00"))
        findings = checker.check_budget_actuals(_snapshot(
            invoices=(inv,), budget_lines=(line,), cost_code_labels={CC_A: "03-300"},
        ))
        assert [f.type for f in findings] == ["BUDGET_BILLED_MISMATCH"]
        assert "03-300" in findings[0].message

    def test_over_budget_warns(self, checker):
        inv = _invoice(status="in_draw", billed="10000.00")
        line = BudgetLineRecord(CC_A, Decimal("8000.00"), Decimal("10000.00"))
        findings = checker.check_budget_actuals(_snapshot(invoices=(inv,), budget_lines=(line,)))
        assert [f.type for f in findings] == ["BUDGET_EXCEEDED"]

    def test_zero_budget_is_not_exceeded(self, checker):
        inv = _invoice(status="in_draw", billed="10000.00")
        line = BudgetLineRecord(CC_A, Decimal("0.00"), Decimal("10000.00"))
        findings = checker.check_budget_actuals(_snapshot(invoices=(inv,), budget_lines=(line,)))
        assert _non_pass(findings) == []


# =============================================================================
# Billing integrity
# =============================================================================


class TestBillingIntegrity:

    def test_billed_amount_mismatch_fails(self, checker):
        inv = _invoice(status="in_draw", billed="10000.00", fully_billed_at=CHECKED_AT)
        draw = _draw(inv, "6000.00")
        findings = checker.check_billing_integrity(_snapshot(invoices=(inv,), draws=(draw,)))
        assert [f.type for f in findings] == ["BILLING_AMOUNT_MISMATCH"]
        assert findings[0].expected == Decimal("6000.00")

    def test_missing_fully_billed_flag_warns(self, checker):
        inv = _invoice(status="in_draw", billed="10000.00")
        draw = _draw(inv, "10000.00")
        findings = checker.check_billing_integrity(_snapshot(invoices=(inv,), draws=(draw,)))
        assert [f.type for f in findings] == ["MISSING_FULLY_BILLED_FLAG"]

    def test_unpaid_invoice_on_funded_draw_warns(self, checker):
        inv = _invoice(status="in_draw", billed="10000.00", fully_billed_at=CHECKED_AT)
        draw = _draw(inv, "10000.00", status="funded")
        findings = checker.check_billing_integrity(_snapshot(invoices=(inv,), draws=(draw,)))
        assert [f.type for f in findings] == ["UNPAID_ON_FUNDED_DRAW"]
        assert findings[0].status == FindingStatus.WARNING
        assert findings[0].actual == Decimal("0.00")

    def test_in_draw_invoice_on_submitted_draw_is_expected(self, checker):
        inv = _invoice(status="in_draw", billed="10000.00", fully_billed_at=CHECKED_AT)
        draw = _draw(inv, "10000.00")
        findings = checker.check_billing_integrity(_snapshot(invoices=(inv,), draws=(draw,)))
        assert _non_pass(findings) == []


# =============================================================================
# Aggregate
# =============================================================================


class TestRunAllChecks:

    def test_clean_job_yields_five_passes(self, checker):
        inv = _invoice(status="paid", billed="10000.00", fully_billed_at=CHECKED_AT)
        draw = _draw(inv, "10000.00")
        line = BudgetLineRecord(CC_A, Decimal("10000.00"), Decimal("10000.00"))
        report = checker.run_all_checks(
            snapshot=_snapshot(invoices=(inv,), draws=(draw,), budget_lines=(line,)),
            checked_at=CHECKED_AT,
        )
        assert report.summary.passed == 5
        assert report.summary.is_clean
        assert report.status == FindingStatus.PASS
        assert {f.category for f in report.checks} == set(CheckCategory)

    def test_single_failure(self, checker):
        inv = _invoice(allocations=(("A", "10000.50"),))
        report = checker.run_all_checks(snapshot=_snapshot(invoices=(inv,)), checked_at=CHECKED_AT)
        assert report.summary.failed == 1
        assert report.summary.warnings == 0
        assert report.status == FindingStatus.FAIL
        assert len(report.of_type("INVOICE_OVER_ALLOCATED")) == 1
