"""
Advisory entity locks.

One row per ``(entity_type, entity_id)``; a row whose ``expires_at`` has
passed is treated as absent and removed lazily.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base


class EntityLockModel(Base):
    __tablename__ = "billing_entity_locks"

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_billing_lock_entity"),
        Index("idx_billing_lock_expires", "expires_at"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    locked_by: Mapped[str] = mapped_column(String(255), nullable=False)
    locked_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<EntityLockModel {self.entity_type}:{self.entity_id} by {self.locked_by}>"
