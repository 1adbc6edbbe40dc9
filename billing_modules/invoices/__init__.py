"""
Invoices Module (``billing_modules.invoices``).

Vendor invoices and their cost-code allocations: intake, coding,
approval (full or confirmed partial), denial, resubmission, splits.
Draw billing of approved invoices lives in ``billing_modules.draws``.
"""

from billing_modules.invoices.models import Allocation, AllocationLine, Invoice, SplitPart
from billing_modules.invoices.workflows import INVOICE_WORKFLOW

__all__ = [
    "Allocation",
    "AllocationLine",
    "Invoice",
    "SplitPart",
    "INVOICE_WORKFLOW",
]
