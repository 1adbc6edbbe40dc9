"""
billing_services.billing_ledger -- the public operation surface.

Responsibility:
    One method per billing operation.  Each mutating call:

    1. takes the advisory lock on the entity it mutates, then on every
       invoice a draw operation settles (each in its own transaction, so
       other writers see it; refused immediately if another owner holds
       it),
    2. runs the operation in a single ``session_scope`` transaction -- every
       write (invoice, allocations, draw, budget lines, PO lines, undo,
       activity) commits together or not at all,
    3. releases the locks this call created.

Failure modes:
    - Typed ``BillingError`` subclasses propagate unchanged after rollback.
    - ``SQLAlchemyError`` is rolled back and re-raised as ``PersistenceError``.

Usage:
    ledger = BillingLedger.from_url("sqlite://")
    job = ledger.create_job("Harbor View")
    inv = ledger.create_invoice(job.id, Decimal("10000.00"), invoice_number="INV-1")
    ledger.code_invoice(inv.id, [AllocationLine(cc.id, Decimal("10000.00"))], "pm@acme")
    ledger.approve_invoice(inv.id, "pm@acme")
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from decimal import Decimal
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from billing_engines.allocation import AllocationLine
from billing_engines.reconciliation.types import AllJobsReport, ReconciliationReport
from billing_kernel.config import BillingConfig
from billing_kernel.db.engine import build_engine, create_tables, session_scope
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.snapshots import UndoSnapshot
from billing_kernel.domain.statuses import PurchaseOrderStatus
from billing_kernel.exceptions import PersistenceError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.activity import ActivityEntry
from billing_kernel.models.job import CostCode, Job
from billing_kernel.services.lock_service import LockGrant
from billing_modules.budget.models import BudgetLine, BudgetSummary
from billing_modules.draws.models import Draw
from billing_modules.invoices.models import Invoice, SplitPart
from billing_modules.procurement.models import ChangeOrder, POLineRequest, PurchaseOrder
from billing_modules.undo.models import UndoEntry, UndoResult
from billing_services.billing_orchestrator import BillingOrchestrator
from billing_services.reconciliation_service import RepairReport

logger = get_logger("services.billing_ledger")

T = TypeVar("T")

LockTarget = tuple[str, UUID]


class BillingLedger:
    """Transactional facade over the billing services."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        config: BillingConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.clock = clock or SystemClock()
        self.config = config or BillingConfig.with_defaults()

    @classmethod
    def from_url(
        cls,
        database_url: str | None = None,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        create_schema: bool = True,
    ) -> BillingLedger:
        config = config or BillingConfig.with_defaults()
        engine = build_engine(database_url or config.database_url)
        if create_schema:
            create_tables(engine)
        return cls(sessionmaker(bind=engine, expire_on_commit=False), clock=clock, config=config)

    # =========================================================================
    # Unit of work
    # =========================================================================

    def _run(
        self,
        operation: str,
        fn: Callable[[BillingOrchestrator], T],
        *,
        actor: str | None = None,
        lock: LockTarget | None = None,
        related: Callable[[], Iterable[LockTarget]] | None = None,
    ) -> T:
        """
        Run ``fn`` in one transaction under advisory locks.

        ``lock`` is taken first.  ``related`` is evaluated after that, so
        the set of dependent entities cannot change under it, and its
        targets are taken in sorted order.  Every lease this call created
        is released on the way out, including when a later acquire fails.
        """
        entity_type, entity_id = lock if lock is not None else (None, None)
        with LogContext.bind(
            correlation_id=uuid4(),
            operation=operation,
            actor_id=actor,
            job_id=entity_id if entity_type == "job" else None,
            entity_type=entity_type,
            entity_id=entity_id,
        ):
            try:
                grants: list[LockGrant] = []
                try:
                    if lock is not None:
                        grants.append(self._acquire(lock, actor))
                    if related is not None:
                        targets = {t for t in related() if t != lock}
                        for target in sorted(targets, key=lambda t: (t[0], str(t[1]))):
                            grants.append(self._acquire(target, actor))
                    with session_scope(self._session_factory) as session:
                        result = fn(BillingOrchestrator(session, self.clock, self.config))
                finally:
                    for grant in reversed(grants):
                        if not grant.refreshed:
                            self._release(grant)
            except SQLAlchemyError as exc:
                logger.error("billing_operation_failed", extra={"error": type(exc).__name__})
                raise PersistenceError(operation, str(exc)) from exc

            logger.debug("billing_operation_completed")
            return result

    def _acquire(self, lock: LockTarget, actor: str | None) -> LockGrant:
        entity_type, entity_id = lock
        with session_scope(self._session_factory) as session:
            return BillingOrchestrator(session, self.clock, self.config).locks.acquire(
                entity_type, entity_id, actor or "system",
            )

    def _release(self, grant: LockGrant) -> None:
        with session_scope(self._session_factory) as session:
            BillingOrchestrator(session, self.clock, self.config).locks.release(
                grant.entity_type, grant.entity_id, grant.locked_by,
            )

    def _invoices_on_draw(self, draw_id: UUID) -> list[LockTarget]:
        with session_scope(self._session_factory) as session:
            draw = BillingOrchestrator(session, self.clock, self.config).draws.load(draw_id)
            return [("invoice", invoice_id) for invoice_id in draw.invoice_ids()]

    # =========================================================================
    # Setup
    # =========================================================================

    def create_job(self, name: str) -> Job:
        return self._run("create_job", lambda o: o.jobs.create_job(name))

    def set_job_status(self, job_id: UUID, status: str) -> Job:
        return self._run("set_job_status", lambda o: o.jobs.set_job_status(job_id, status))

    def create_cost_code(self, code: str, name: str) -> CostCode:
        return self._run("create_cost_code", lambda o: o.jobs.create_cost_code(code, name))

    def create_purchase_order(
        self,
        job_id: UUID,
        po_number: str,
        lines: Sequence[POLineRequest],
        vendor_id: UUID | None = None,
        status: PurchaseOrderStatus = PurchaseOrderStatus.OPEN,
    ) -> PurchaseOrder:
        return self._run(
            "create_purchase_order",
            lambda o: o.procurement.create_purchase_order(job_id, po_number, lines, vendor_id, status),
        )

    def set_purchase_order_status(
        self,
        po_id: UUID,
        status: PurchaseOrderStatus,
        performed_by: str,
    ) -> PurchaseOrder:
        return self._run(
            "set_purchase_order_status",
            lambda o: o.procurement.set_purchase_order_status(po_id, status),
            actor=performed_by,
            lock=("purchase_order", po_id),
        )

    def create_change_order(
        self,
        job_id: UUID,
        change_order_number: str,
        amount: Decimal,
        title: str | None = None,
    ) -> ChangeOrder:
        return self._run(
            "create_change_order",
            lambda o: o.procurement.create_change_order(job_id, change_order_number, amount, title),
        )

    def get_change_order(self, change_order_id: UUID) -> ChangeOrder:
        return self._run("get_change_order", lambda o: o.procurement.get_change_order(change_order_id))

    def get_purchase_order(self, po_id: UUID) -> PurchaseOrder:
        return self._run("get_purchase_order", lambda o: o.procurement.get_purchase_order(po_id))

    # =========================================================================
    # Invoices
    # =========================================================================

    def create_invoice(
        self,
        job_id: UUID,
        amount: Decimal,
        invoice_number: str | None = None,
        vendor_id: UUID | None = None,
        po_id: UUID | None = None,
    ) -> Invoice:
        return self._run(
            "create_invoice",
            lambda o: o.invoices.create_invoice(job_id, amount, invoice_number, vendor_id, po_id),
        )

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        return self._run("get_invoice", lambda o: o.invoices.get_invoice(invoice_id))

    def list_invoices(self, job_id: UUID) -> tuple[Invoice, ...]:
        return self._run("list_invoices", lambda o: o.invoices.list_invoices(job_id))

    def code_invoice(
        self,
        invoice_id: UUID,
        allocations: Sequence[AllocationLine],
        performed_by: str,
    ) -> Invoice:
        return self._run(
            "code_invoice",
            lambda o: o.invoices.code_invoice(invoice_id, allocations, performed_by),
            actor=performed_by,
            lock=("invoice", invoice_id),
        )

    def approve_invoice(
        self,
        invoice_id: UUID,
        approved_by: str,
        partial: bool = False,
        override_po_overage: bool = False,
    ) -> Invoice:
        return self._run(
            "approve_invoice",
            lambda o: o.invoices.approve_invoice(
                invoice_id, approved_by, partial=partial, override_po_overage=override_po_overage,
            ),
            actor=approved_by,
            lock=("invoice", invoice_id),
        )

    def deny_invoice(self, invoice_id: UUID, reason: str, performed_by: str) -> Invoice:
        return self._run(
            "deny_invoice",
            lambda o: o.invoices.deny_invoice(invoice_id, reason, performed_by),
            actor=performed_by,
            lock=("invoice", invoice_id),
        )

    def unapprove_invoice(self, invoice_id: UUID, performed_by: str, reason: str | None = None) -> Invoice:
        return self._run(
            "unapprove_invoice",
            lambda o: o.invoices.unapprove_invoice(invoice_id, performed_by, reason),
            actor=performed_by,
            lock=("invoice", invoice_id),
        )

    def resubmit_invoice(self, invoice_id: UUID, performed_by: str) -> Invoice:
        return self._run(
            "resubmit_invoice",
            lambda o: o.invoices.resubmit_invoice(invoice_id, performed_by),
            actor=performed_by,
            lock=("invoice", invoice_id),
        )

    def unpay_invoice(self, invoice_id: UUID, performed_by: str, reason: str | None = None) -> Invoice:
        return self._run(
            "unpay_invoice",
            lambda o: o.invoices.unpay_invoice(invoice_id, performed_by, reason),
            actor=performed_by,
            lock=("invoice", invoice_id),
        )

    def repay_invoice(self, invoice_id: UUID, performed_by: str) -> Invoice:
        return self._run(
            "repay_invoice",
            lambda o: o.invoices.repay_invoice(invoice_id, performed_by),
            actor=performed_by,
            lock=("invoice", invoice_id),
        )

    def split_invoice(
        self,
        invoice_id: UUID,
        parts: Sequence[SplitPart],
        performed_by: str,
    ) -> tuple[Invoice, ...]:
        return self._run(
            "split_invoice",
            lambda o: o.invoices.split_invoice(invoice_id, parts, performed_by),
            actor=performed_by,
            lock=("invoice", invoice_id),
        )

    def unsplit_invoice(self, invoice_id: UUID, performed_by: str) -> Invoice:
        return self._run(
            "unsplit_invoice",
            lambda o: o.invoices.unsplit_invoice(invoice_id, performed_by),
            actor=performed_by,
            lock=("invoice", invoice_id),
        )

    def invoice_history(self, invoice_id: UUID) -> tuple[ActivityEntry, ...]:
        return self._run(
            "invoice_history",
            lambda o: tuple(row.to_dto() for row in o.activity.invoice_history(invoice_id)),
        )

    # =========================================================================
    # Draws
    # =========================================================================

    def create_draft_draw(self, job_id: UUID, performed_by: str) -> Draw:
        return self._run(
            "create_draft_draw",
            lambda o: o.draws.create_draft_draw(job_id, performed_by),
            actor=performed_by,
            lock=("job", job_id),
        )

    def get_or_create_draft_draw(self, job_id: UUID, performed_by: str) -> Draw:
        return self._run(
            "get_or_create_draft_draw",
            lambda o: o.draws.get_or_create_draft_draw(job_id, performed_by),
            actor=performed_by,
            lock=("job", job_id),
        )

    def get_draw(self, draw_id: UUID) -> Draw:
        return self._run("get_draw", lambda o: o.draws.get_draw(draw_id))

    def list_draws(self, job_id: UUID) -> tuple[Draw, ...]:
        return self._run("list_draws", lambda o: o.draws.list_draws(job_id))

    def add_invoices_to_draw(self, draw_id: UUID, invoice_ids: Sequence[UUID], performed_by: str) -> Draw:
        return self._run(
            "add_invoices_to_draw",
            lambda o: o.draws.add_invoices_to_draw(draw_id, invoice_ids, performed_by),
            actor=performed_by,
            lock=("draw", draw_id),
            related=lambda: [("invoice", invoice_id) for invoice_id in invoice_ids],
        )

    def remove_invoice_from_draw(self, draw_id: UUID, invoice_id: UUID, performed_by: str) -> Draw:
        return self._run(
            "remove_invoice_from_draw",
            lambda o: o.draws.remove_invoice_from_draw(draw_id, invoice_id, performed_by),
            actor=performed_by,
            lock=("draw", draw_id),
            related=lambda: [("invoice", invoice_id)],
        )

    def add_change_order_billing(
        self,
        draw_id: UUID,
        change_order_id: UUID,
        amount: Decimal,
        performed_by: str,
    ) -> Draw:
        return self._run(
            "add_change_order_billing",
            lambda o: o.draws.add_change_order_billing(draw_id, change_order_id, amount, performed_by),
            actor=performed_by,
            lock=("draw", draw_id),
        )

    def submit_draw(self, draw_id: UUID, performed_by: str) -> Draw:
        return self._run(
            "submit_draw",
            lambda o: o.draws.submit_draw(draw_id, performed_by),
            actor=performed_by,
            lock=("draw", draw_id),
            related=lambda: self._invoices_on_draw(draw_id),
        )

    def unsubmit_draw(self, draw_id: UUID, performed_by: str, reason: str | None = None) -> Draw:
        return self._run(
            "unsubmit_draw",
            lambda o: o.draws.unsubmit_draw(draw_id, performed_by, reason),
            actor=performed_by,
            lock=("draw", draw_id),
        )

    def fund_draw(self, draw_id: UUID, funded_amount: Decimal, performed_by: str) -> Draw:
        return self._run(
            "fund_draw",
            lambda o: o.draws.fund_draw(draw_id, funded_amount, performed_by),
            actor=performed_by,
            lock=("draw", draw_id),
            related=lambda: self._invoices_on_draw(draw_id),
        )

    def draw_history(self, draw_id: UUID) -> tuple[ActivityEntry, ...]:
        return self._run(
            "draw_history",
            lambda o: tuple(row.to_dto() for row in o.activity.draw_history(draw_id)),
        )

    # =========================================================================
    # Budget
    # =========================================================================

    def set_budgeted_amount(
        self,
        job_id: UUID,
        cost_code_id: UUID,
        amount: Decimal,
        performed_by: str,
    ) -> BudgetLine:
        return self._run(
            "set_budgeted_amount",
            lambda o: o.budget.set_budgeted_amount(job_id, cost_code_id, amount),
            actor=performed_by,
            lock=("job", job_id),
        )

    def close_budget_line(self, job_id: UUID, cost_code_id: UUID, closed_by: str) -> BudgetLine:
        return self._run(
            "close_budget_line",
            lambda o: o.budget.close_line(job_id, cost_code_id, closed_by),
            actor=closed_by,
            lock=("job", job_id),
        )

    def reopen_budget_line(self, job_id: UUID, cost_code_id: UUID, performed_by: str) -> BudgetLine:
        return self._run(
            "reopen_budget_line",
            lambda o: o.budget.reopen_line(job_id, cost_code_id),
            actor=performed_by,
            lock=("job", job_id),
        )

    def recompute_budget(self, job_id: UUID) -> tuple[BudgetLine, ...]:
        return self._run(
            "recompute_budget",
            lambda o: o.budget.recompute(job_id),
            lock=("job", job_id),
        )

    def budget_summary(self, job_id: UUID) -> BudgetSummary:
        return self._run("budget_summary", lambda o: o.budget.summary(job_id))

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def reconcile_job(self, job_id: UUID) -> ReconciliationReport:
        return self._run("reconcile_job", lambda o: o.reconciliation.reconcile_job(job_id))

    def reconcile_all(self) -> AllJobsReport:
        return self._run("reconcile_all", lambda o: o.reconciliation.reconcile_all())

    def repair_job(self, job_id: UUID, performed_by: str) -> RepairReport:
        return self._run(
            "repair_job",
            lambda o: o.reconciliation.repair_job(job_id),
            actor=performed_by,
            lock=("job", job_id),
        )

    # =========================================================================
    # Undo
    # =========================================================================

    def create_undo_snapshot(
        self,
        entity_type: str,
        entity_id: UUID,
        action: str,
        previous_state: UndoSnapshot,
        performed_by: str,
    ) -> UndoEntry:
        return self._run(
            "create_undo_snapshot",
            lambda o: o.undo.create_snapshot(entity_type, entity_id, action, previous_state, performed_by),
            actor=performed_by,
        )

    def get_available_undo(self, entity_type: str, entity_id: UUID) -> UndoEntry | None:
        return self._run(
            "get_available_undo",
            lambda o: o.undo.get_available(entity_type, entity_id),
        )

    def execute_undo(self, undo_id: UUID, performed_by: str) -> UndoResult:
        entry = self._run("get_undo_entry", lambda o: o.undo.get_entry(undo_id))
        return self._run(
            "execute_undo",
            lambda o: o.undo.execute(undo_id, performed_by),
            actor=performed_by,
            lock=("invoice", entry.entity_id),
        )

    def cleanup_expired_undo(self) -> int:
        return self._run("cleanup_expired_undo", lambda o: o.undo.cleanup_expired())

    def recent_undos(self, performed_by: str, limit: int = 10) -> tuple[UndoEntry, ...]:
        return self._run("recent_undos", lambda o: o.undo.recent_for(performed_by, limit))

    # =========================================================================
    # Advisory locks
    # =========================================================================

    def acquire_lock(self, entity_type: str, entity_id: UUID, locked_by: str) -> LockGrant:
        return self._run(
            "acquire_lock",
            lambda o: o.locks.acquire(entity_type, entity_id, locked_by),
            actor=locked_by,
        )

    def release_lock(self, entity_type: str, entity_id: UUID, locked_by: str) -> bool:
        return self._run(
            "release_lock",
            lambda o: o.locks.release(entity_type, entity_id, locked_by),
            actor=locked_by,
        )

    def check_lock(self, entity_type: str, entity_id: UUID) -> LockGrant | None:
        return self._run("check_lock", lambda o: o.locks.check(entity_type, entity_id))

    def force_release_lock(self, entity_type: str, entity_id: UUID) -> bool:
        return self._run("force_release_lock", lambda o: o.locks.force_release(entity_type, entity_id))
