"""
BillingReconciliationService -- imperative shell around the checker.

Architecture: billing_services -- imperative shell.
    ``JobLedgerSelector`` loads a job's ledgers into a frozen snapshot;
    the pure ``ReconciliationChecker`` turns it into findings.  Checks are
    read-only and never raise for data drift.

    ``repair_job`` is the separate write path: it recomputes every derived
    figure from the primary ledgers (draw allocations, invoice
    allocations, PO lines).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from billing_engines.reconciliation.checker import ReconciliationChecker
from billing_engines.reconciliation.types import AllJobsReport, ReconciliationReport
from billing_kernel.config import BillingConfig
from billing_kernel.db.types import ZERO, round_money
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.statuses import BILLED_STATUSES
from billing_kernel.exceptions import NotFoundError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.job import JobModel
from billing_modules.budget.service import BudgetService
from billing_modules.draws.orm import DrawAllocationModel, DrawModel
from billing_modules.invoices.orm import InvoiceModel
from billing_modules.procurement.service import ProcurementService
from billing_services.ledger_selector import JobLedgerSelector

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class RepairReport:
    job_id: UUID
    invoices_fixed: int = 0
    fully_billed_flags_set: int = 0
    draws_fixed: int = 0
    commitments_fixed: int = 0
    budget_lines_recomputed: int = 0

    @property
    def total_fixes(self) -> int:
        return (
            self.invoices_fixed
            + self.fully_billed_flags_set
            + self.draws_fixed
            + self.commitments_fixed
        )


class BillingReconciliationService:
    """Runs reconciliation checks per job or across all active jobs.

    Contract:
        - ``reconcile_job`` / ``reconcile_all`` are read-only.
        - ``repair_job`` flushes; the caller commits.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        checker: ReconciliationChecker | None = None,
        budget: BudgetService | None = None,
        procurement: ProcurementService | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or BillingConfig.with_defaults()
        self._selector = JobLedgerSelector(session)
        self._checker = checker or ReconciliationChecker(
            amount_tolerance=self._config.amount_tolerance,
            po_overage_tolerance=self._config.po_overage_tolerance,
        )
        self._budget = budget or BudgetService(session, self._clock, self._config)
        self._procurement = procurement or ProcurementService(
            session, self._clock, self._config, budget=self._budget,
        )

    # -----------------------------------------------------------------
    # Checks
    # -----------------------------------------------------------------

    def reconcile_job(self, job_id: UUID) -> ReconciliationReport:
        snapshot = self._selector.snapshot(job_id)
        return self._checker.run_all_checks(snapshot=snapshot, checked_at=self._clock.now())

    def reconcile_all(self) -> AllJobsReport:
        checked_at = self._clock.now()
        results = tuple(
            self._checker.run_all_checks(
                snapshot=self._selector.snapshot(job_id), checked_at=checked_at,
            )
            for job_id in self._selector.active_job_ids()
        )
        report = AllJobsReport(checked_at=checked_at, results=results)
        summary = report.summary
        logger.info("reconciliation_all_jobs_checked", extra={
            "job_count": summary.job_count,
            "total_errors": summary.total_errors,
            "total_warnings": summary.total_warnings,
            "jobs_with_issues": summary.jobs_with_issues,
        })
        return report

    # -----------------------------------------------------------------
    # Repair
    # -----------------------------------------------------------------

    def repair_job(self, job_id: UUID) -> RepairReport:
        """Recompute derived figures for one job from its primary ledgers."""
        if self._session.get(JobModel, job_id) is None:
            raise NotFoundError("job", str(job_id))
        tolerance = self._config.amount_tolerance
        now = self._clock.now()

        billed_by_invoice: dict[UUID, Decimal] = {
            invoice_id: round_money(Decimal(str(total)))
            for invoice_id, total in self._session.execute(
                select(DrawAllocationModel.invoice_id, func.sum(DrawAllocationModel.amount))
                .join(DrawModel, DrawAllocationModel.draw_id == DrawModel.id)
                .where(DrawModel.job_id == job_id)
                .group_by(DrawAllocationModel.invoice_id)
            )
        }

        invoices_fixed = 0
        flags_set = 0
        invoices = self._session.execute(
            select(InvoiceModel).where(InvoiceModel.job_id == job_id, InvoiceModel.deleted_at.is_(None))
        ).scalars().all()
        for invoice in invoices:
            expected = min(billed_by_invoice.get(invoice.id, ZERO), invoice.amount)
            if invoice.billed_amount != expected:
                invoice.billed_amount = expected
                invoices_fixed += 1
            if (
                invoice.status in BILLED_STATUSES
                and expected >= invoice.amount - tolerance
                and invoice.fully_billed_at is None
            ):
                invoice.fully_billed_at = now
                flags_set += 1

        draws_fixed = 0
        draws = self._session.execute(
            select(DrawModel).where(DrawModel.job_id == job_id)
        ).scalars().all()
        for draw in draws:
            total = round_money(
                sum((a.amount for a in draw.allocations), ZERO)
                + sum((b.amount for b in draw.change_order_billings), ZERO)
            )
            if draw.total_amount != total:
                draw.total_amount = total
                draws_fixed += 1
        self._session.flush()

        commitments_fixed = self._procurement.rebuild_job_commitments(job_id)
        lines = self._budget.recompute(job_id)

        report = RepairReport(
            job_id=job_id,
            invoices_fixed=invoices_fixed,
            fully_billed_flags_set=flags_set,
            draws_fixed=draws_fixed,
            commitments_fixed=commitments_fixed,
            budget_lines_recomputed=len(lines),
        )
        logger.info("job_repaired", extra={
            "job_id": str(job_id),
            "invoices_fixed": invoices_fixed,
            "fully_billed_flags_set": flags_set,
            "draws_fixed": draws_fixed,
            "commitments_fixed": commitments_fixed,
            "budget_lines_recomputed": len(lines),
        })
        return report
