"""
Invoice and draw activity audit trail.

Rows are append-only.  ``details_json`` holds one tagged variant from
``billing_kernel.domain.activity``; ``action`` repeats its ``kind`` so the
trail can be filtered without decoding.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase
from billing_kernel.domain.activity import (
    deserialize_draw_activity,
    deserialize_invoice_activity,
)


@dataclass(frozen=True)
class ActivityEntry:
    """One audit row with its decoded detail variant."""
    entity_id: UUID
    action: str
    performed_by: str
    details: Any
    created_at: datetime


class InvoiceActivityModel(TrackedBase):
    __tablename__ = "billing_invoice_activity"

    __table_args__ = (
        Index("idx_billing_invoice_activity_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    details_json: Mapped[str] = mapped_column(Text, nullable=False)

    @property
    def details(self):
        return deserialize_invoice_activity(self.details_json)

    def to_dto(self) -> ActivityEntry:
        return ActivityEntry(self.invoice_id, self.action, self.performed_by, self.details, self.created_at)

    def __repr__(self) -> str:
        return f"<InvoiceActivityModel {self.invoice_id} {self.action}>"


class DrawActivityModel(TrackedBase):
    __tablename__ = "billing_draw_activity"

    __table_args__ = (
        Index("idx_billing_draw_activity_draw", "draw_id"),
    )

    draw_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    details_json: Mapped[str] = mapped_column(Text, nullable=False)

    @property
    def details(self):
        return deserialize_draw_activity(self.details_json)

    def to_dto(self) -> ActivityEntry:
        return ActivityEntry(self.draw_id, self.action, self.performed_by, self.details, self.created_at)

    def __repr__(self) -> str:
        return f"<DrawActivityModel {self.draw_id} {self.action}>"
