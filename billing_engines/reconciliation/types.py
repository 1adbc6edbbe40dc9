"""
Reconciliation domain types.

Pure frozen dataclasses and enums consumed by ``ReconciliationChecker``
(pure engine) and produced by ``ReconciliationService`` (imperative shell).
The snapshot types are a read-only picture of one job's ledgers; the
output types are the findings and the per-job report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from billing_kernel.db.types import ZERO


# =============================================================================
# Enums
# =============================================================================


class FindingStatus(str, Enum):
    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"


class CheckCategory(str, Enum):
    """The five reconciliation categories; the value is the pass-finding type."""

    INVOICE_ALLOCATIONS = "INVOICE_ALLOCATIONS"
    DRAW_TOTALS = "DRAW_TOTALS"
    PO_BALANCES = "PO_BALANCES"
    BUDGET_ACTUALS = "BUDGET_ACTUALS"
    BILLING_INTEGRITY = "BILLING_INTEGRITY"


# =============================================================================
# Input types (populated by service, consumed by engine)
# =============================================================================


@dataclass(frozen=True)
class AllocationRecord:
    cost_code_id: UUID | None
    amount: Decimal


@dataclass(frozen=True)
class InvoiceRecord:
    id: UUID
    invoice_number: str | None
    amount: Decimal
    status: str
    billed_amount: Decimal
    paid_amount: Decimal
    po_id: UUID | None = None
    fully_billed_at: datetime | None = None
    allocations: tuple[AllocationRecord, ...] = ()

    @property
    def allocation_total(self) -> Decimal:
        return sum((a.amount for a in self.allocations), ZERO)

    @property
    def label(self) -> str:
        return self.invoice_number or str(self.id)


@dataclass(frozen=True)
class DrawAllocationRecord:
    invoice_id: UUID
    cost_code_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class DrawRecord:
    id: UUID
    draw_number: int
    status: str
    total_amount: Decimal
    allocations: tuple[DrawAllocationRecord, ...] = ()
    change_order_billing_total: Decimal = ZERO

    @property
    def invoice_ids(self) -> tuple[UUID, ...]:
        seen: list[UUID] = []
        for a in self.allocations:
            if a.invoice_id not in seen:
                seen.append(a.invoice_id)
        return tuple(seen)

    def billed_for(self, invoice_id: UUID) -> Decimal:
        return sum((a.amount for a in self.allocations if a.invoice_id == invoice_id), ZERO)


@dataclass(frozen=True)
class PurchaseOrderRecord:
    id: UUID
    po_number: str | None
    total_amount: Decimal
    status: str


@dataclass(frozen=True)
class BudgetLineRecord:
    cost_code_id: UUID
    budgeted_amount: Decimal
    billed_amount: Decimal
    closed: bool = False


@dataclass(frozen=True)
class JobLedgerSnapshot:
    """Everything the checker reads for one job."""

    job_id: UUID
    job_name: str
    invoices: tuple[InvoiceRecord, ...] = ()
    draws: tuple[DrawRecord, ...] = ()
    purchase_orders: tuple[PurchaseOrderRecord, ...] = ()
    budget_lines: tuple[BudgetLineRecord, ...] = ()
    cost_code_labels: dict[UUID, str] = field(default_factory=dict)

    def cost_code_label(self, cost_code_id: UUID | None) -> str:
        if cost_code_id is None:
            return "(none)"
        return self.cost_code_labels.get(cost_code_id, str(cost_code_id))


# =============================================================================
# Output types
# =============================================================================


@dataclass(frozen=True)
class ReconciliationFinding:
    """One result of one check.

    ``type`` is machine-readable (e.g. INVOICE_OVER_ALLOCATED, or the
    category name for a pass finding).
    """

    type: str
    status: FindingStatus
    category: CheckCategory
    message: str
    entity: str | None = None
    entity_id: UUID | None = None
    entity_ref: str | None = None
    expected: Decimal | None = None
    actual: Decimal | None = None
    details: dict[str, Any] | None = None

    @property
    def difference(self) -> Decimal | None:
        if self.expected is None or self.actual is None:
            return None
        return self.actual - self.expected


@dataclass(frozen=True)
class ReconciliationSummary:
    total: int
    passed: int
    warnings: int
    failed: int

    @property
    def is_clean(self) -> bool:
        return self.failed == 0 and self.warnings == 0


@dataclass(frozen=True)
class ReconciliationReport:
    """All findings for one job."""

    job_id: UUID
    job_name: str
    checked_at: datetime
    checks: tuple[ReconciliationFinding, ...] = ()

    @property
    def summary(self) -> ReconciliationSummary:
        return ReconciliationSummary(
            total=len(self.checks),
            passed=sum(1 for c in self.checks if c.status == FindingStatus.PASS),
            warnings=sum(1 for c in self.checks if c.status == FindingStatus.WARNING),
            failed=sum(1 for c in self.checks if c.status == FindingStatus.FAIL),
        )

    @property
    def status(self) -> FindingStatus:
        summary = self.summary
        if summary.failed:
            return FindingStatus.FAIL
        if summary.warnings:
            return FindingStatus.WARNING
        return FindingStatus.PASS

    def of_type(self, finding_type: str) -> tuple[ReconciliationFinding, ...]:
        return tuple(c for c in self.checks if c.type == finding_type)


@dataclass(frozen=True)
class AllJobsSummary:
    job_count: int
    total_errors: int
    total_warnings: int
    jobs_with_issues: int


@dataclass(frozen=True)
class AllJobsReport:
    checked_at: datetime
    results: tuple[ReconciliationReport, ...] = ()

    @property
    def summary(self) -> AllJobsSummary:
        return AllJobsSummary(
            job_count=len(self.results),
            total_errors=sum(r.summary.failed for r in self.results),
            total_warnings=sum(r.summary.warnings for r in self.results),
            jobs_with_issues=sum(1 for r in self.results if not r.summary.is_clean),
        )
