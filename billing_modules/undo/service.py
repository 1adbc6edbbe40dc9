"""
Undo Module Service (``billing_modules.undo.service``).

Responsibility
--------------
Captures an invoice's prior state immediately before a mutating status
action or recode, and restores it on request within the undo window.

Invariants enforced
-------------------
* At most one live (not undone, not expired) entry per entity: creating
  a new entry marks earlier live entries for the same entity undone.
* ``expires_at = created_at + undo_window_seconds``; execution after
  ``expires_at`` raises ``UndoExpiredError``.
* Executing an undo re-derives PO line commitments (floored at zero),
  change-order invoiced totals and budget figures for the restored state.
* Restoring a split child re-derives the parent: reconciled only while
  every child is paid or denied.

Failure modes
-------------
* ``UndoNotFoundError`` -- unknown, purged or already-undone entry.
* ``UndoExpiredError``  -- the window has closed.
"""

from __future__ import annotations

from datetime import timedelta
from uuid import UUID

from sqlalchemy import delete, select, update

from billing_kernel.domain.activity import InvoiceSplitReconciled, InvoiceSplitReopened, InvoiceUndone
from billing_kernel.domain.snapshots import (
    AllocationLineSnapshot,
    AllocationSnapshot,
    InvoiceSnapshot,
    UndoSnapshot,
    serialize_snapshot,
)
from billing_kernel.domain.statuses import SETTLED_CHILD_STATUSES, InvoiceStatus
from billing_kernel.exceptions import NotFoundError, UndoExpiredError, UndoNotFoundError
from billing_kernel.logging_config import get_logger
from billing_kernel.services.activity_recorder import ActivityRecorder
from billing_kernel.services.base import BaseService
from billing_modules.budget.service import BudgetService
from billing_modules.invoices.orm import AllocationModel, InvoiceModel
from billing_modules.procurement.service import ProcurementService
from billing_modules.undo.models import UndoEntry, UndoResult
from billing_modules.undo.orm import UndoEntryModel

logger = get_logger("modules.undo.service")


def capture_invoice(invoice: InvoiceModel) -> InvoiceSnapshot:
    return InvoiceSnapshot(
        status=invoice.status,
        po_id=invoice.po_id,
        billed_amount=invoice.billed_amount,
        paid_amount=invoice.paid_amount,
        fully_billed_at=invoice.fully_billed_at,
        approved_at=invoice.approved_at,
        approved_by=invoice.approved_by,
        denied_at=invoice.denied_at,
        denial_reason=invoice.denial_reason,
        review_flags=tuple(f.value for f in invoice.review_flags),
    )


def capture_allocations(invoice: InvoiceModel) -> AllocationSnapshot:
    return AllocationSnapshot(
        invoice_status=invoice.status,
        lines=tuple(
            AllocationLineSnapshot(
                cost_code_id=a.cost_code_id,
                amount=a.amount,
                change_order_id=a.change_order_id,
                po_line_item_id=a.po_line_item_id,
            )
            for a in invoice.allocations
        ),
    )


class UndoService(BaseService):
    """
    Records and executes undo entries.

    Usage::

        undo = UndoService(session, clock=clock)
        undo.create_snapshot("invoice", inv.id, "approved", capture_invoice(inv), "pm@acme")
        ...
        result = undo.execute(entry.id, performed_by="pm@acme")
    """

    def __init__(
        self,
        session,
        clock=None,
        config=None,
        procurement: ProcurementService | None = None,
        budget: BudgetService | None = None,
        activity: ActivityRecorder | None = None,
    ):
        super().__init__(session, clock, config)
        self._budget = budget or BudgetService(session, self.clock, self.config)
        self._procurement = procurement or ProcurementService(
            session, self.clock, self.config, budget=self._budget,
        )
        self._activity = activity or ActivityRecorder(session, self.clock, self.config)

    # =========================================================================
    # Recording
    # =========================================================================

    def create_snapshot(
        self,
        entity_type: str,
        entity_id: UUID,
        action: str,
        previous_state: UndoSnapshot,
        performed_by: str,
    ) -> UndoEntry:
        if previous_state.kind != entity_type:
            raise ValueError(
                f"Snapshot kind {previous_state.kind!r} does not match entity type {entity_type!r}"
            )
        self.invalidate(entity_id)

        now = self.clock.now()
        entry = UndoEntryModel(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            previous_state_json=serialize_snapshot(previous_state),
            performed_by=performed_by,
            created_at=now,
            expires_at=now + timedelta(seconds=self.config.undo_window_seconds),
            undone=False,
        )
        self.session.add(entry)
        self.session.flush()

        logger.info("undo_snapshot_created", extra={
            "undo_id": str(entry.id),
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "action": action,
            "expires_at": entry.expires_at.isoformat(),
        })
        return entry.to_dto()

    def invalidate(self, entity_id: UUID) -> int:
        """Mark every live entry for ``entity_id`` undone; returns the count."""
        result = self.session.execute(
            update(UndoEntryModel)
            .where(UndoEntryModel.entity_id == entity_id, UndoEntryModel.undone.is_(False))
            .values(undone=True)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    # =========================================================================
    # Queries
    # =========================================================================

    def get_entry(self, undo_id: UUID) -> UndoEntry:
        entry = self.session.get(UndoEntryModel, undo_id)
        if entry is None:
            raise UndoNotFoundError(str(undo_id))
        return entry.to_dto()

    def cleanup_expired(self) -> int:
        """Delete entries whose window has closed; returns the count."""
        result = self.session.execute(
            delete(UndoEntryModel)
            .where(UndoEntryModel.expires_at < self.clock.now())
            .execution_options(synchronize_session="fetch")
        )
        purged = result.rowcount or 0
        if purged:
            logger.debug("undo_entries_purged", extra={"count": purged})
        return purged

    def get_available(self, entity_type: str, entity_id: UUID) -> UndoEntry | None:
        """The live entry for an entity, if any.  Purges expired entries first."""
        self.cleanup_expired()
        entry = self.session.execute(
            select(UndoEntryModel)
            .where(
                UndoEntryModel.entity_type == entity_type,
                UndoEntryModel.entity_id == entity_id,
                UndoEntryModel.undone.is_(False),
            )
            .order_by(UndoEntryModel.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        return entry.to_dto() if entry is not None else None

    def recent_for(self, performed_by: str, limit: int = 10) -> tuple[UndoEntry, ...]:
        """Live entries recorded by ``performed_by``, newest first."""
        self.cleanup_expired()
        rows = self.session.execute(
            select(UndoEntryModel)
            .where(
                UndoEntryModel.performed_by == performed_by,
                UndoEntryModel.undone.is_(False),
            )
            .order_by(UndoEntryModel.created_at.desc())
            .limit(limit)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    # =========================================================================
    # Execution
    # =========================================================================

    def execute(self, undo_id: UUID, performed_by: str) -> UndoResult:
        """
        Restore the captured state.

        Raises:
            UndoNotFoundError: unknown, purged or already-undone entry.
            UndoExpiredError: ``now > expires_at``.
            NotFoundError: the invoice no longer exists.
        """
        entry = self.session.get(UndoEntryModel, undo_id)
        if entry is None or entry.undone:
            raise UndoNotFoundError(str(undo_id))
        now = self.clock.now()
        if now > entry.expires_at:
            raise UndoExpiredError(str(undo_id), entry.expires_at.isoformat())

        invoice = self.session.get(InvoiceModel, entry.entity_id)
        if invoice is None or invoice.deleted_at is not None:
            raise NotFoundError("invoice", str(entry.entity_id))

        snapshot = entry.previous_state
        current_status = invoice.status
        touched_codes = invoice.cost_code_ids()
        touched_cos = invoice.change_order_ids()

        if isinstance(snapshot, InvoiceSnapshot):
            self._restore_invoice(invoice, snapshot, current_status)
        else:
            self._restore_allocations(invoice, snapshot, current_status)
        if invoice.parent_invoice_id is not None:
            self._sync_split_parent(invoice, performed_by)

        touched_codes |= invoice.cost_code_ids()
        touched_cos |= invoice.change_order_ids()
        self._procurement.recompute_change_orders(touched_cos)
        self._budget.recompute(invoice.job_id, touched_codes)

        entry.undone = True
        entry.undone_at = now
        entry.undone_by = performed_by
        self.session.flush()

        self._activity.record_invoice(invoice.id, performed_by, InvoiceUndone(
            undo_id=entry.id,
            undone_action=entry.action,
            restored_status=invoice.status,
        ))

        logger.info("undo_executed", extra={
            "undo_id": str(entry.id),
            "entity_type": entry.entity_type,
            "entity_id": str(entry.entity_id),
            "action": entry.action,
            "from_status": current_status,
            "restored_status": invoice.status,
        })
        return UndoResult(
            undo_id=entry.id,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            action=entry.action,
            restored_status=invoice.status,
        )

    def _restore_invoice(
        self,
        invoice: InvoiceModel,
        snapshot: InvoiceSnapshot,
        current_status: str,
    ) -> None:
        invoice.status = snapshot.status
        # reverse or re-apply PO line effects with the current allocations
        self._procurement.sync_invoice_commitment(invoice, current_status)
        invoice.po_id = snapshot.po_id
        invoice.billed_amount = snapshot.billed_amount
        invoice.paid_amount = snapshot.paid_amount
        invoice.fully_billed_at = snapshot.fully_billed_at
        invoice.approved_at = snapshot.approved_at
        invoice.approved_by = snapshot.approved_by
        invoice.denied_at = snapshot.denied_at
        invoice.denial_reason = snapshot.denial_reason
        invoice.review_flags = snapshot.review_flags
        self.session.flush()

    def _restore_allocations(
        self,
        invoice: InvoiceModel,
        snapshot: AllocationSnapshot,
        current_status: str,
    ) -> None:
        invoice.status = snapshot.invoice_status
        self._procurement.sync_invoice_commitment(invoice, current_status)
        invoice.allocations.clear()
        self.session.flush()
        for position, line in enumerate(snapshot.lines):
            invoice.allocations.append(AllocationModel(
                position=position,
                cost_code_id=line.cost_code_id,
                amount=line.amount,
                change_order_id=line.change_order_id,
                po_line_item_id=line.po_line_item_id,
            ))
        self.session.flush()

    def _sync_split_parent(self, child: InvoiceModel, performed_by: str) -> None:
        """Match the split parent's status to its children after a restore.

        A reconciled parent reopens when a child is no longer paid or denied,
        and a split parent reconciles when every child is.
        """
        parent = self.session.get(InvoiceModel, child.parent_invoice_id)
        if parent is None:
            return
        children = self.session.execute(
            select(InvoiceModel).where(
                InvoiceModel.parent_invoice_id == parent.id,
                InvoiceModel.deleted_at.is_(None),
            )
        ).scalars().all()
        settled = bool(children) and all(c.status in SETTLED_CHILD_STATUSES for c in children)

        if parent.status == InvoiceStatus.RECONCILED.value and not settled:
            parent.status = InvoiceStatus.SPLIT.value
            detail = InvoiceSplitReopened(child_id=child.id)
            event = "invoice_split_reopened"
        elif parent.status == InvoiceStatus.SPLIT.value and settled:
            parent.status = InvoiceStatus.RECONCILED.value
            detail = InvoiceSplitReconciled(child_count=len(children))
            event = "invoice_split_reconciled"
        else:
            return
        self.session.flush()

        self._activity.record_invoice(parent.id, performed_by, detail)
        logger.info(event, extra={
            "invoice_id": str(parent.id),
            "child_invoice_id": str(child.id),
        })
