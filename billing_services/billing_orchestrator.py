"""
billing_services.billing_orchestrator -- per-session DI container.

Responsibility:
    Creates every billing service exactly once for one session and wires
    them together, so one operation's budget, PO, undo and activity writes
    all go through the same instances and the same transaction.

Usage:
    orchestrator = BillingOrchestrator(session, clock=clock, config=config)
    orchestrator.invoices.approve_invoice(invoice_id, approved_by="pm@acme")
    orchestrator.draws.submit_draw(draw_id, "pm@acme")
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from billing_kernel.config import BillingConfig
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.services.activity_recorder import ActivityRecorder
from billing_kernel.services.job_service import JobService
from billing_kernel.services.lock_service import LockService
from billing_modules.budget.service import BudgetService
from billing_modules.draws.service import DrawService
from billing_modules.invoices.service import InvoiceService
from billing_modules.procurement.service import ProcurementService
from billing_modules.undo.service import UndoService
from billing_services.reconciliation_service import BillingReconciliationService


class BillingOrchestrator:
    """All billing services bound to one session."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
    ) -> None:
        self.session = session
        self.clock = clock or SystemClock()
        self.config = config or BillingConfig.with_defaults()

        self.jobs = JobService(session, self.clock, self.config)
        self.locks = LockService(session, self.clock, self.config)
        self.activity = ActivityRecorder(session, self.clock, self.config)
        self.budget = BudgetService(session, self.clock, self.config)
        self.procurement = ProcurementService(session, self.clock, self.config, budget=self.budget)
        self.undo = UndoService(
            session, self.clock, self.config,
            procurement=self.procurement,
            budget=self.budget,
            activity=self.activity,
        )
        self.invoices = InvoiceService(
            session, self.clock, self.config,
            budget=self.budget,
            procurement=self.procurement,
            undo=self.undo,
            activity=self.activity,
        )
        self.draws = DrawService(
            session, self.clock, self.config,
            invoices=self.invoices,
            budget=self.budget,
            procurement=self.procurement,
            undo=self.undo,
            activity=self.activity,
        )
        self.reconciliation = BillingReconciliationService(
            session, self.clock, self.config,
            budget=self.budget,
            procurement=self.procurement,
        )
