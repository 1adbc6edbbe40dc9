"""
Draws Module (``billing_modules.draws``).

The draw sub-ledger: per-cost-code slices of approved invoices grouped
into periodic lender draw requests, with submit, unsubmit and funding.
"""

from billing_modules.draws.models import ChangeOrderBilling, Draw, DrawLine
from billing_modules.draws.workflows import DRAW_WORKFLOW

__all__ = ["ChangeOrderBilling", "Draw", "DrawLine", "DRAW_WORKFLOW"]
