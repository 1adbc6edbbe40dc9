"""
ActivityRecorder -- appends typed audit rows for invoices and draws.
"""

from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.activity import serialize_activity
from billing_kernel.logging_config import get_logger
from billing_kernel.models.activity import DrawActivityModel, InvoiceActivityModel
from billing_kernel.services.base import BaseService

logger = get_logger("services.activity")


class ActivityRecorder(BaseService):

    def record_invoice(self, invoice_id: UUID, performed_by: str, details) -> InvoiceActivityModel:
        row = InvoiceActivityModel(
            invoice_id=invoice_id,
            action=details.kind,
            performed_by=performed_by,
            details_json=serialize_activity(details),
            created_at=self.clock.now(),
        )
        self.session.add(row)
        self.session.flush()
        logger.debug("invoice_activity_recorded", extra={
            "invoice_id": str(invoice_id),
            "action": details.kind,
        })
        return row

    def record_draw(self, draw_id: UUID, performed_by: str, details) -> DrawActivityModel:
        row = DrawActivityModel(
            draw_id=draw_id,
            action=details.kind,
            performed_by=performed_by,
            details_json=serialize_activity(details),
            created_at=self.clock.now(),
        )
        self.session.add(row)
        self.session.flush()
        logger.debug("draw_activity_recorded", extra={
            "draw_id": str(draw_id),
            "action": details.kind,
        })
        return row

    def invoice_history(self, invoice_id: UUID) -> list[InvoiceActivityModel]:
        return list(self.session.execute(
            select(InvoiceActivityModel)
            .where(InvoiceActivityModel.invoice_id == invoice_id)
            .order_by(InvoiceActivityModel.created_at, InvoiceActivityModel.id)
        ).scalars())

    def draw_history(self, draw_id: UUID) -> list[DrawActivityModel]:
        return list(self.session.execute(
            select(DrawActivityModel)
            .where(DrawActivityModel.draw_id == draw_id)
            .order_by(DrawActivityModel.created_at, DrawActivityModel.id)
        ).scalars())
