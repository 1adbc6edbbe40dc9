"""
Module: billing_engines
Responsibility:
    Pure calculation engines of the billing core: the Allocation Validator
    and draw slicing, the Budget Rollup Engine and the Reconciliation
    Checker.

Architecture position:
    Engines -- zero I/O.  May import billing_kernel config, db.types,
    domain and logging only.  MUST NOT import billing_modules or
    billing_services.

Invariants enforced:
    - Decimal-only arithmetic; floats are never used for money.
    - Engines never read the clock; callers pass timestamps in.
    - Identical inputs always produce identical outputs.
"""

from billing_engines.allocation import (
    AllocationLine,
    DrawSlice,
    InvoiceAmounts,
    allocation_total,
    compute_draw_slices,
    remaining_unbilled,
    validate_allocations,
)
from billing_engines.rollup import (
    AllocationFact,
    BudgetLineState,
    BudgetRollupEngine,
    CommitmentLine,
    RollupFigures,
)

__all__ = [
    "AllocationLine",
    "DrawSlice",
    "InvoiceAmounts",
    "allocation_total",
    "compute_draw_slices",
    "remaining_unbilled",
    "validate_allocations",
    "AllocationFact",
    "BudgetLineState",
    "BudgetRollupEngine",
    "CommitmentLine",
    "RollupFigures",
]
