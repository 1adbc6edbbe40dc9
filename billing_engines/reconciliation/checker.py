"""
ReconciliationChecker -- pure engine auditing one job's billing ledgers.

Compares recorded totals against totals recomputed from the primary
ledgers and reports drift as findings.  It never raises for drift and
never writes.

Architecture: billing_engines -- pure calculation, zero I/O, zero DB access.
All inputs are frozen dataclasses populated by the service layer.

Categories (each collapses to a single pass finding when clean):
    INVOICE_ALLOCATIONS  allocation sums, billed-vs-coding drift, missing cost codes
    DRAW_TOTALS          stored draw totals, statuses of linked invoices
    PO_BALANCES          invoiced totals against PO totals with change-order headroom
    BUDGET_ACTUALS       stored billed figures, over-budget lines
    BILLING_INTEGRITY    invoice billed amounts against the per-draw sub-ledger
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from billing_engines.reconciliation.types import (
    CheckCategory,
    DrawRecord,
    FindingStatus,
    JobLedgerSnapshot,
    ReconciliationFinding,
    ReconciliationReport,
)
from billing_engines.tracer import traced_engine
from billing_kernel.config import AMOUNT_TOLERANCE, PO_OVERAGE_TOLERANCE
from billing_kernel.db.types import ZERO, round_money
from billing_kernel.domain.statuses import (
    BILLED_STATUSES,
    FUNDED_DRAW_STATUSES,
    NON_INVOICED_STATUSES,
    InvoiceStatus,
)
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.reconciliation.checker")

# Kicked back after a partial billing cycle; linked to an earlier draw legitimately.
_AWAITING_NEXT_CYCLE = frozenset({
    InvoiceStatus.NEEDS_APPROVAL.value,
    InvoiceStatus.APPROVED.value,
})


class ReconciliationChecker:
    """Pure engine for per-job billing reconciliation.

    Usage:
        checker = ReconciliationChecker()
        report = checker.run_all_checks(snapshot=snapshot, checked_at=clock.now())
    """

    def __init__(
        self,
        amount_tolerance: Decimal = AMOUNT_TOLERANCE,
        po_overage_tolerance: Decimal = PO_OVERAGE_TOLERANCE,
    ):
        self.tolerance = amount_tolerance
        self.po_overage_tolerance = po_overage_tolerance

    def _differs(self, a: Decimal, b: Decimal) -> bool:
        return abs(a - b) > self.tolerance

    @staticmethod
    def _pass(category: CheckCategory, message: str) -> ReconciliationFinding:
        return ReconciliationFinding(
            type=category.value,
            status=FindingStatus.PASS,
            category=category,
            message=message,
        )

    # -----------------------------------------------------------------
    # Invoice / allocation balance
    # -----------------------------------------------------------------

    def check_invoice_allocations(
        self, snapshot: JobLedgerSnapshot,
    ) -> tuple[ReconciliationFinding, ...]:
        category = CheckCategory.INVOICE_ALLOCATIONS
        findings: list[ReconciliationFinding] = []
        latest_slice = _latest_draw_billing(snapshot.draws)

        for inv in snapshot.invoices:
            alloc_sum = round_money(inv.allocation_total)

            if alloc_sum > inv.amount + self.tolerance:
                findings.append(ReconciliationFinding(
                    type="INVOICE_OVER_ALLOCATED",
                    status=FindingStatus.FAIL,
                    category=category,
                    message=(
                        f"Invoice #{inv.label} over-allocated: {alloc_sum} allocated "
                        f"vs {inv.amount} invoice amount"
                    ),
                    entity="invoice",
                    entity_id=inv.id,
                    entity_ref=inv.invoice_number,
                    expected=inv.amount,
                    actual=alloc_sum,
                ))

            if inv.status in BILLED_STATUSES:
                # Billing attributable to the current coding: the invoice's slice
                # in its most recent draw (earlier cycles were coded separately).
                cycle_billed = latest_slice.get(inv.id, inv.billed_amount)
                if self._differs(cycle_billed, alloc_sum):
                    findings.append(ReconciliationFinding(
                        type="INVOICE_BILLED_MISMATCH",
                        status=FindingStatus.WARNING,
                        category=category,
                        message=(
                            f"Invoice #{inv.label} billed amount mismatch: {cycle_billed} "
                            f"billed vs {alloc_sum} current allocations"
                        ),
                        entity="invoice",
                        entity_id=inv.id,
                        entity_ref=inv.invoice_number,
                        expected=cycle_billed,
                        actual=alloc_sum,
                    ))

            missing = sum(1 for a in inv.allocations if a.cost_code_id is None)
            if missing:
                findings.append(ReconciliationFinding(
                    type="INVOICE_MISSING_COST_CODE",
                    status=FindingStatus.FAIL,
                    category=category,
                    message=(
                        f"Invoice #{inv.label} has {missing} allocation(s) without cost codes"
                    ),
                    entity="invoice",
                    entity_id=inv.id,
                    entity_ref=inv.invoice_number,
                    details={"count": missing},
                ))

        if not findings:
            findings.append(self._pass(
                category, f"All {len(snapshot.invoices)} invoices have valid allocations",
            ))
        return tuple(findings)

    # -----------------------------------------------------------------
    # Draw totals
    # -----------------------------------------------------------------

    def check_draw_totals(
        self, snapshot: JobLedgerSnapshot,
    ) -> tuple[ReconciliationFinding, ...]:
        category = CheckCategory.DRAW_TOTALS
        findings: list[ReconciliationFinding] = []
        invoices = {inv.id: inv for inv in snapshot.invoices}

        for draw in snapshot.draws:
            invoice_total = round_money(sum((a.amount for a in draw.allocations), ZERO))
            recomputed = round_money(invoice_total + draw.change_order_billing_total)

            if self._differs(recomputed, draw.total_amount):
                findings.append(ReconciliationFinding(
                    type="DRAW_TOTAL_MISMATCH",
                    status=FindingStatus.FAIL,
                    category=category,
                    message=(
                        f"Draw #{draw.draw_number} total mismatch: stored "
                        f"{draw.total_amount} vs calculated {recomputed}"
                    ),
                    entity="draw",
                    entity_id=draw.id,
                    entity_ref=str(draw.draw_number),
                    expected=recomputed,
                    actual=draw.total_amount,
                    details={
                        "invoice_total": str(invoice_total),
                        "change_order_total": str(draw.change_order_billing_total),
                    },
                ))

            for invoice_id in draw.invoice_ids:
                inv = invoices.get(invoice_id)
                status = inv.status if inv is not None else "missing"
                if status in BILLED_STATUSES:
                    continue
                if (
                    inv is not None
                    and status in _AWAITING_NEXT_CYCLE
                    and inv.billed_amount < inv.amount - self.tolerance
                ):
                    continue
                label = inv.label if inv is not None else str(invoice_id)
                findings.append(ReconciliationFinding(
                    type="DRAW_INVOICE_STATUS_MISMATCH",
                    status=FindingStatus.WARNING,
                    category=category,
                    message=(
                        f"Invoice #{label} in Draw #{draw.draw_number} has "
                        f"unexpected status: {status}"
                    ),
                    entity="invoice",
                    entity_id=invoice_id,
                    entity_ref=inv.invoice_number if inv is not None else None,
                    details={"draw_id": str(draw.id), "status": status},
                ))

        if not findings:
            findings.append(self._pass(
                category, f"All {len(snapshot.draws)} draws have correct totals",
            ))
        return tuple(findings)

    # -----------------------------------------------------------------
    # Purchase order balances
    # -----------------------------------------------------------------

    def check_po_balances(
        self, snapshot: JobLedgerSnapshot,
    ) -> tuple[ReconciliationFinding, ...]:
        category = CheckCategory.PO_BALANCES
        findings: list[ReconciliationFinding] = []

        for po in snapshot.purchase_orders:
            invoiced = round_money(sum(
                (
                    inv.amount for inv in snapshot.invoices
                    if inv.po_id == po.id and inv.status not in NON_INVOICED_STATUSES
                ),
                ZERO,
            ))
            ceiling = round_money(po.total_amount * (1 + self.po_overage_tolerance))
            label = po.po_number or str(po.id)

            if invoiced > ceiling + self.tolerance:
                findings.append(ReconciliationFinding(
                    type="PO_OVER_INVOICED",
                    status=FindingStatus.FAIL,
                    category=category,
                    message=(
                        f"PO {label} over-invoiced beyond tolerance: {invoiced} invoiced "
                        f"vs {po.total_amount} PO total"
                    ),
                    entity="purchase_order",
                    entity_id=po.id,
                    entity_ref=po.po_number,
                    expected=po.total_amount,
                    actual=invoiced,
                ))
            elif invoiced > po.total_amount + self.tolerance:
                findings.append(ReconciliationFinding(
                    type="PO_SLIGHT_OVERAGE",
                    status=FindingStatus.WARNING,
                    category=category,
                    message=(
                        f"PO {label} slightly over: {invoiced} invoiced vs "
                        f"{po.total_amount} PO total (within change-order tolerance)"
                    ),
                    entity="purchase_order",
                    entity_id=po.id,
                    entity_ref=po.po_number,
                    expected=po.total_amount,
                    actual=invoiced,
                ))

        if not findings:
            findings.append(self._pass(
                category, f"All {len(snapshot.purchase_orders)} POs are within budget",
            ))
        return tuple(findings)

    # -----------------------------------------------------------------
    # Budget vs actuals
    # -----------------------------------------------------------------

    def check_budget_actuals(
        self, snapshot: JobLedgerSnapshot,
    ) -> tuple[ReconciliationFinding, ...]:
        category = CheckCategory.BUDGET_ACTUALS
        findings: list[ReconciliationFinding] = []

        recomputed: dict[UUID, Decimal] = {}
        for inv in snapshot.invoices:
            if inv.status not in BILLED_STATUSES:
                continue
            for a in inv.allocations:
                if a.cost_code_id is not None:
                    recomputed[a.cost_code_id] = recomputed.get(a.cost_code_id, ZERO) + a.amount

        lines = {line.cost_code_id: line for line in snapshot.budget_lines}
        codes = list(lines) + [cc for cc in recomputed if cc not in lines]

        for cc in codes:
            line = lines.get(cc)
            stored = line.billed_amount if line is not None else ZERO
            budgeted = line.budgeted_amount if line is not None else ZERO
            actual = round_money(recomputed.get(cc, ZERO))
            label = snapshot.cost_code_label(cc)

            if self._differs(actual, stored):
                findings.append(ReconciliationFinding(
                    type="BUDGET_BILLED_MISMATCH",
                    status=FindingStatus.WARNING,
                    category=category,
                    message=(
                        f"Cost code {label} billed mismatch: stored {stored} vs "
                        f"calculated {actual}"
                    ),
                    entity="budget_line",
                    entity_id=cc,
                    entity_ref=label,
                    expected=actual,
                    actual=stored,
                ))

            if budgeted > ZERO and actual > budgeted + self.tolerance:
                findings.append(ReconciliationFinding(
                    type="BUDGET_EXCEEDED",
                    status=FindingStatus.WARNING,
                    category=category,
                    message=(
                        f"Cost code {label} over budget: {actual} billed vs "
                        f"{budgeted} budgeted"
                    ),
                    entity="budget_line",
                    entity_id=cc,
                    entity_ref=label,
                    expected=budgeted,
                    actual=actual,
                ))

        if not findings:
            findings.append(self._pass(
                category, f"All {len(codes)} budget lines match allocations",
            ))
        return tuple(findings)

    # -----------------------------------------------------------------
    # Billing integrity
    # -----------------------------------------------------------------

    def check_billing_integrity(
        self, snapshot: JobLedgerSnapshot,
    ) -> tuple[ReconciliationFinding, ...]:
        category = CheckCategory.BILLING_INTEGRITY
        findings: list[ReconciliationFinding] = []

        sub_ledger: dict[UUID, Decimal] = {}
        draw_statuses: dict[UUID, set[str]] = {}
        for draw in snapshot.draws:
            for a in draw.allocations:
                sub_ledger[a.invoice_id] = sub_ledger.get(a.invoice_id, ZERO) + a.amount
                draw_statuses.setdefault(a.invoice_id, set()).add(draw.status)

        for inv in snapshot.invoices:
            actual = round_money(sub_ledger.get(inv.id, ZERO))

            if self._differs(inv.billed_amount, actual):
                findings.append(ReconciliationFinding(
                    type="BILLING_AMOUNT_MISMATCH",
                    status=FindingStatus.FAIL,
                    category=category,
                    message=(
                        f"Invoice #{inv.label} billing mismatch: recorded "
                        f"{inv.billed_amount} vs {actual} across draws"
                    ),
                    entity="invoice",
                    entity_id=inv.id,
                    entity_ref=inv.invoice_number,
                    expected=actual,
                    actual=inv.billed_amount,
                ))

            fully_billed = inv.amount > ZERO and actual >= inv.amount - self.tolerance
            if fully_billed and inv.status in BILLED_STATUSES and inv.fully_billed_at is None:
                findings.append(ReconciliationFinding(
                    type="MISSING_FULLY_BILLED_FLAG",
                    status=FindingStatus.WARNING,
                    category=category,
                    message=(
                        f"Invoice #{inv.label} is fully billed but not marked as such"
                    ),
                    entity="invoice",
                    entity_id=inv.id,
                    entity_ref=inv.invoice_number,
                ))

            settled_draws = draw_statuses.get(inv.id, set()) <= FUNDED_DRAW_STATUSES
            if fully_billed and inv.status == InvoiceStatus.IN_DRAW.value and settled_draws:
                findings.append(ReconciliationFinding(
                    type="UNPAID_ON_FUNDED_DRAW",
                    status=FindingStatus.WARNING,
                    category=category,
                    message=(
                        f"Invoice #{inv.label} is fully billed on funded draws "
                        f"but not marked paid"
                    ),
                    entity="invoice",
                    entity_id=inv.id,
                    entity_ref=inv.invoice_number,
                    expected=inv.amount,
                    actual=inv.paid_amount,
                ))

        if not findings:
            findings.append(self._pass(category, "All billing amounts are consistent"))
        return tuple(findings)

    # -----------------------------------------------------------------
    # Aggregate
    # -----------------------------------------------------------------

    @traced_engine("billing_reconciliation", "1.0", fingerprint_fields=("snapshot",))
    def run_all_checks(
        self,
        *,
        snapshot: JobLedgerSnapshot,
        checked_at: datetime,
    ) -> ReconciliationReport:
        checks: list[Callable[[JobLedgerSnapshot], tuple[ReconciliationFinding, ...]]] = [
            self.check_invoice_allocations,
            self.check_draw_totals,
            self.check_po_balances,
            self.check_budget_actuals,
            self.check_billing_integrity,
        ]
        findings: list[ReconciliationFinding] = []
        for check in checks:
            findings.extend(check(snapshot))

        report = ReconciliationReport(
            job_id=snapshot.job_id,
            job_name=snapshot.job_name,
            checked_at=checked_at,
            checks=tuple(findings),
        )
        summary = report.summary
        logger.info("reconciliation_checked", extra={
            "job_id": str(snapshot.job_id),
            "passed": summary.passed,
            "warnings": summary.warnings,
            "failed": summary.failed,
        })
        return report


def _latest_draw_billing(draws: tuple[DrawRecord, ...]) -> dict[UUID, Decimal]:
    """Each invoice's billed amount in the highest-numbered draw it appears in."""
    latest: dict[UUID, tuple[int, Decimal]] = {}
    for draw in draws:
        for invoice_id in draw.invoice_ids:
            current = latest.get(invoice_id)
            if current is None or draw.draw_number > current[0]:
                latest[invoice_id] = (draw.draw_number, round_money(draw.billed_for(invoice_id)))
    return {invoice_id: amount for invoice_id, (_, amount) in latest.items()}
