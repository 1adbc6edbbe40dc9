"""
Hypothesis-based property tests for the pure billing engines.

Properties:
- Draw slices always sum exactly to the target and never exceed a code's share
- Allocation validation accepts exactly the sets within invoice + tolerance
- Budget roll-up is a pure function of its inputs
- The invoice workflow answers every (status, action) pair without crashing
"""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from billing_engines.allocation import (
    AllocationLine,
    InvoiceAmounts,
    compute_draw_slices,
    merge_by_cost_code,
    validate_allocations,
)
from billing_engines.rollup import AllocationFact, BudgetLineState, BudgetRollupEngine, CommitmentLine
from billing_kernel.domain.statuses import InvoiceStatus, PurchaseOrderStatus
from billing_kernel.exceptions import InvalidTransitionError, OverAllocatedError
from billing_modules._workflow_helpers import require_transition
from billing_modules.invoices.workflows import INVOICE_WORKFLOW

COST_CODES = [uuid4() for _ in range(4)]
TOLERANCE = Decimal("0.01")

FUZZ_SETTINGS = settings(
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

cents = st.integers(min_value=1, max_value=100_000_000).map(lambda c: Decimal(c).scaleb(-2))

allocation_lines = st.lists(
    st.builds(AllocationLine, cost_code_id=st.sampled_from(COST_CODES), amount=cents),
    min_size=1,
    max_size=8,
)


# =============================================================================
# Draw slicing
# =============================================================================


class TestDrawSliceProperties:

    @FUZZ_SETTINGS
    @given(lines=allocation_lines, data=st.data())
    def test_slices_sum_to_target(self, lines, data):
        total_cents = int(sum(line.amount for line in lines) * 100)
        target = Decimal(data.draw(st.integers(min_value=0, max_value=total_cents))).scaleb(-2)

        slices = compute_draw_slices(allocations=lines, target=target)

        assert sum((s.amount for s in slices), Decimal("0")) == target
        shares = {s.cost_code_id: s.amount for s in merge_by_cost_code(lines)}
        assert [s.cost_code_id for s in slices] == list(shares)
        for s in slices:
            assert Decimal("0") <= s.amount <= shares[s.cost_code_id]
            assert s.amount == s.amount.quantize(Decimal("0.01"))

    @FUZZ_SETTINGS
    @given(lines=allocation_lines, extra=cents)
    def test_target_above_total_rejected(self, lines, extra):
        total = sum((line.amount for line in lines), Decimal("0"))
        with pytest.raises(ValueError):
            compute_draw_slices(allocations=lines, target=total + extra)


# =============================================================================
# Allocation validation
# =============================================================================


class TestValidationProperties:

    @FUZZ_SETTINGS
    @given(lines=allocation_lines, invoice_amount=cents)
    def test_accepts_exactly_within_tolerance(self, lines, invoice_amount):
        invoice = InvoiceAmounts(invoice_id=uuid4(), amount=invoice_amount)
        total = sum((line.amount for line in lines), Decimal("0"))

        if total > invoice_amount + TOLERANCE:
            with pytest.raises(OverAllocatedError):
                validate_allocations(invoice, lines, TOLERANCE)
        else:
            assert validate_allocations(invoice, lines, TOLERANCE) == total


# =============================================================================
# Budget roll-up
# =============================================================================


budget_lines = st.lists(
    st.builds(
        BudgetLineState,
        cost_code_id=st.sampled_from(COST_CODES),
        budgeted_amount=cents,
        closed=st.booleans(),
    ),
    max_size=4,
    unique_by=lambda line: line.cost_code_id,
)

commitments = st.lists(
    st.builds(
        CommitmentLine,
        cost_code_id=st.sampled_from(COST_CODES),
        amount=cents,
        po_status=st.sampled_from([s.value for s in PurchaseOrderStatus]),
    ),
    max_size=6,
)

facts = st.lists(
    st.builds(
        AllocationFact,
        cost_code_id=st.sampled_from(COST_CODES),
        amount=cents,
        invoice_status=st.sampled_from([s.value for s in InvoiceStatus]),
        has_po=st.booleans(),
    ),
    max_size=10,
)


class TestRollupProperties:

    @FUZZ_SETTINGS
    @given(lines=budget_lines, po_lines=commitments, allocations=facts)
    def test_rollup_is_deterministic(self, lines, po_lines, allocations):
        engine = BudgetRollupEngine()
        first = engine.compute(lines=lines, commitments=po_lines, allocations=allocations)
        second = engine.compute(lines=lines, commitments=po_lines, allocations=allocations)
        assert first == second

    @FUZZ_SETTINGS
    @given(lines=budget_lines, po_lines=commitments, allocations=facts)
    def test_paid_never_exceeds_billed(self, lines, po_lines, allocations):
        figures = BudgetRollupEngine().compute(lines=lines, commitments=po_lines, allocations=allocations)
        for f in figures:
            assert f.paid_amount <= f.billed_amount
            if not f.closed:
                assert f.projected_amount >= f.budgeted_amount


# =============================================================================
# Invoice workflow
# =============================================================================


ACTIONS = sorted({t.action for t in INVOICE_WORKFLOW.transitions} | {"bogus"})


class TestInvoiceWorkflowProperties:

    @FUZZ_SETTINGS
    @given(
        status=st.sampled_from(INVOICE_WORKFLOW.states),
        action=st.sampled_from(ACTIONS),
    )
    def test_every_pair_is_answered(self, status, action):
        allowed = action in INVOICE_WORKFLOW.actions_from(status)
        entity_id = uuid4()
        if allowed:
            transition = require_transition(INVOICE_WORKFLOW, "invoice", entity_id, status, action)
            assert transition.to_state in INVOICE_WORKFLOW.states
        else:
            with pytest.raises(InvalidTransitionError) as exc_info:
                require_transition(INVOICE_WORKFLOW, "invoice", entity_id, status, action)
            assert exc_info.value.current_status == status
