"""
Budget Module (``billing_modules.budget``).

Per-cost-code budget lines whose committed / billed / paid figures are
recomputed from purchase-order lines and invoice allocations after every
billing mutation.
"""

from billing_modules.budget.models import BudgetLine, BudgetSummary

__all__ = ["BudgetLine", "BudgetSummary"]
