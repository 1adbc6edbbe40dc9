"""
Tests for BudgetRollupEngine.

Validates:
- committed from open/active PO lines only
- billed / paid / pending by invoice status
- projected for open and closed lines
- idempotence and output ordering
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from billing_engines.rollup import (
    AllocationFact,
    BudgetLineState,
    BudgetRollupEngine,
    CommitmentLine,
    project,
)

CC_A = uuid4()
CC_B = uuid4()


@pytest.fixture
def engine():
    return BudgetRollupEngine()


def _by_code(figures):
    return {f.cost_code_id: f for f in figures}


# =============================================================================
# Committed
# =============================================================================


class TestCommitted:

    @pytest.mark.parametrize("status,expected", [
        ("open", "5000.00"),
        ("active", "5000.00"),
        ("draft", "0.00"),
        ("closed", "0.00"),
        ("voided", "0.00"),
    ])
    def test_only_open_and_active_pos_commit(self, engine, status, expected):
        figures = engine.compute(
            lines=[BudgetLineState(CC_A, Decimal("10000.00"))],
            commitments=[CommitmentLine(CC_A, Decimal("5000.00"), status)],
            allocations=[],
        )
        assert figures[0].committed_amount == Decimal(expected)


# =============================================================================
# Billed / paid / pending
# =============================================================================


class TestInvoiceFigures:

    def test_status_buckets(self, engine):
        allocations = [
            AllocationFact(CC_A, Decimal("100.00"), "received"),
            AllocationFact(CC_A, Decimal("200.00"), "needs_approval"),
            AllocationFact(CC_A, Decimal("300.00"), "approved"),
            AllocationFact(CC_A, Decimal("400.00"), "in_draw"),
            AllocationFact(CC_A, Decimal("500.00"), "paid"),
            AllocationFact(CC_A, Decimal("600.00"), "denied"),
        ]
        fig = engine.compute(lines=[], commitments=[], allocations=allocations)[0]
        assert fig.billed_amount == Decimal("900.00")
        assert fig.paid_amount == Decimal("500.00")
        assert fig.pending_amount == Decimal("1200.00")

    def test_po_backed_allocations_not_pending(self, engine):
        allocations = [
            AllocationFact(CC_A, Decimal("1000.00"), "approved", has_po=True),
            AllocationFact(CC_A, Decimal("250.00"), "approved", has_po=False),
        ]
        fig = engine.compute(lines=[], commitments=[], allocations=allocations)[0]
        assert fig.pending_amount == Decimal("250.00")

    def test_allocations_without_cost_code_ignored(self, engine):
        allocations = [AllocationFact(None, Decimal("1000.00"), "paid")]
        assert engine.compute(lines=[], commitments=[], allocations=allocations) == ()


# =============================================================================
# Projection
# =============================================================================


class TestProjection:

    def test_open_line_projects_at_least_budget(self):
        assert project(Decimal("10000"), Decimal("2000"), Decimal("500"), closed=False) == Decimal("10000.00")

    def test_open_line_projects_overrun(self):
        assert project(Decimal("1000"), Decimal("2000"), Decimal("500"), closed=False) == Decimal("2500.00")

    def test_closed_line_projects_actuals(self):
        assert project(Decimal("10000"), Decimal("2000"), Decimal("500"), closed=True) == Decimal("2500.00")

    def test_variance_and_over_budget(self, engine):
        figures = engine.compute(
            lines=[BudgetLineState(CC_A, Decimal("1000.00"))],
            commitments=[],
            allocations=[AllocationFact(CC_A, Decimal("1500.00"), "in_draw")],
        )
        fig = figures[0]
        assert fig.projected_amount == Decimal("1500.00")
        assert fig.variance == Decimal("-500.00")
        assert fig.is_over_budget


# =============================================================================
# Determinism
# =============================================================================


class TestDeterminism:

    def test_idempotent(self, engine):
        kwargs = dict(
            lines=[BudgetLineState(CC_A, Decimal("5000.00"), closed=True)],
            commitments=[CommitmentLine(CC_B, Decimal("800.00"), "open")],
            allocations=[AllocationFact(CC_A, Decimal("300.00"), "paid")],
        )
        assert engine.compute(**kwargs) == engine.compute(**kwargs)

    def test_order_lines_then_commitments_then_allocations(self, engine):
        cc_c = uuid4()
        figures = engine.compute(
            lines=[BudgetLineState(CC_B, Decimal("1.00"))],
            commitments=[CommitmentLine(cc_c, Decimal("1.00"), "open")],
            allocations=[AllocationFact(CC_A, Decimal("1.00"), "paid")],
        )
        assert [f.cost_code_id for f in figures] == [CC_B, cc_c, CC_A]

    def test_cost_code_filter_includes_unknown_codes(self, engine):
        unknown = uuid4()
        figures = engine.compute(
            lines=[BudgetLineState(CC_A, Decimal("10.00"))],
            commitments=[],
            allocations=[],
            cost_code_ids=[unknown],
        )
        by_code = _by_code(figures)
        assert list(by_code) == [unknown]
        assert by_code[unknown].billed_amount == Decimal("0.00")
