"""
SQLAlchemy ORM persistence model for undo entries.

``previous_state_json`` holds one tagged snapshot variant
(``billing_kernel.domain.snapshots``); its ``kind`` matches
``entity_type``.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase
from billing_kernel.domain.snapshots import UndoSnapshot, deserialize_snapshot


class UndoEntryModel(TrackedBase):
    __tablename__ = "billing_undo_entries"

    __table_args__ = (
        Index("idx_billing_undo_entity", "entity_type", "entity_id"),
        Index("idx_billing_undo_expires", "expires_at"),
        Index("idx_billing_undo_performed_by", "performed_by"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_state_json: Mapped[str] = mapped_column(Text, nullable=False)
    performed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    undone: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    undone_at: Mapped[datetime | None] = mapped_column(nullable=True)
    undone_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    @property
    def previous_state(self) -> UndoSnapshot:
        return deserialize_snapshot(self.previous_state_json)

    def to_dto(self):
        from billing_modules.undo.models import UndoEntry

        return UndoEntry(
            id=self.id,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            action=self.action,
            previous_state=self.previous_state,
            performed_by=self.performed_by,
            created_at=self.created_at,
            expires_at=self.expires_at,
            undone=self.undone,
        )

    def __repr__(self) -> str:
        return f"<UndoEntryModel {self.entity_type}:{self.entity_id} {self.action} undone={self.undone}>"
