"""Billing reconciliation: snapshot/finding types and the pure checker."""

from billing_engines.reconciliation.checker import ReconciliationChecker
from billing_engines.reconciliation.types import (
    AllJobsReport,
    AllJobsSummary,
    AllocationRecord,
    BudgetLineRecord,
    CheckCategory,
    DrawAllocationRecord,
    DrawRecord,
    FindingStatus,
    InvoiceRecord,
    JobLedgerSnapshot,
    PurchaseOrderRecord,
    ReconciliationFinding,
    ReconciliationReport,
    ReconciliationSummary,
)

__all__ = [
    "ReconciliationChecker",
    "AllJobsReport",
    "AllJobsSummary",
    "AllocationRecord",
    "BudgetLineRecord",
    "CheckCategory",
    "DrawAllocationRecord",
    "DrawRecord",
    "FindingStatus",
    "InvoiceRecord",
    "JobLedgerSnapshot",
    "PurchaseOrderRecord",
    "ReconciliationFinding",
    "ReconciliationReport",
    "ReconciliationSummary",
]
