"""
SQLAlchemy ORM persistence models for draws.

Invariants enforced
-------------------
* At most one current draft draw per job (partial unique index on
  ``job_id`` where ``is_current_draft``).
* One draw-allocation row per (draw, invoice, cost code).
* ``total_amount`` equals the sum of the draw's allocation rows plus its
  change-order billings after every mutation (service-maintained).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase
from billing_kernel.domain.statuses import DrawStatus


class DrawModel(TrackedBase):
    __tablename__ = "billing_draws"

    __table_args__ = (
        UniqueConstraint("job_id", "draw_number", name="uq_billing_draw_job_number"),
        Index(
            "uq_billing_draw_current_draft",
            "job_id",
            unique=True,
            sqlite_where=text("is_current_draft = 1"),
            postgresql_where=text("is_current_draft"),
        ),
    )

    job_id: Mapped[UUID] = mapped_column(ForeignKey("billing_jobs.id"), nullable=False)
    draw_number: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=DrawStatus.DRAFT.value)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    is_current_draft: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    locked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    funded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    funded_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    funding_difference: Mapped[Decimal | None] = mapped_column(nullable=True)

    allocations: Mapped[list[DrawAllocationModel]] = relationship(
        "DrawAllocationModel",
        back_populates="draw",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    change_order_billings: Mapped[list[ChangeOrderDrawBillingModel]] = relationship(
        "ChangeOrderDrawBillingModel",
        back_populates="draw",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def invoice_ids(self) -> list[UUID]:
        """Invoices with allocation rows on this draw, first-added order."""
        seen: list[UUID] = []
        for a in sorted(self.allocations, key=lambda r: r.position):
            if a.invoice_id not in seen:
                seen.append(a.invoice_id)
        return seen

    def billed_for(self, invoice_id: UUID) -> Decimal:
        return sum((a.amount for a in self.allocations if a.invoice_id == invoice_id), Decimal("0"))

    def to_dto(self):
        from billing_modules.draws.models import ChangeOrderBilling, Draw, DrawLine

        return Draw(
            id=self.id,
            job_id=self.job_id,
            draw_number=self.draw_number,
            status=DrawStatus(self.status),
            total_amount=self.total_amount,
            is_current_draft=self.is_current_draft,
            locked_at=self.locked_at,
            submitted_at=self.submitted_at,
            funded_at=self.funded_at,
            funded_amount=self.funded_amount,
            funding_difference=self.funding_difference,
            lines=tuple(
                DrawLine(invoice_id=a.invoice_id, cost_code_id=a.cost_code_id, amount=a.amount)
                for a in sorted(self.allocations, key=lambda r: r.position)
            ),
            change_order_billings=tuple(
                ChangeOrderBilling(change_order_id=b.change_order_id, amount=b.amount)
                for b in self.change_order_billings
            ),
        )

    def __repr__(self) -> str:
        return f"<DrawModel #{self.draw_number} {self.total_amount} [{self.status}]>"


class DrawAllocationModel(TrackedBase):
    """The slice of one invoice billed to one cost code in one draw."""

    __tablename__ = "billing_draw_allocations"

    __table_args__ = (
        UniqueConstraint(
            "draw_id", "invoice_id", "cost_code_id", name="uq_billing_draw_alloc_line",
        ),
        Index("idx_billing_draw_alloc_invoice", "invoice_id"),
    )

    draw_id: Mapped[UUID] = mapped_column(ForeignKey("billing_draws.id"), nullable=False)
    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("billing_invoices.id"), nullable=False)
    cost_code_id: Mapped[UUID] = mapped_column(ForeignKey("billing_cost_codes.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    position: Mapped[int] = mapped_column(nullable=False, default=0)

    draw: Mapped[DrawModel] = relationship("DrawModel", back_populates="allocations")

    def __repr__(self) -> str:
        return f"<DrawAllocationModel {self.invoice_id}/{self.cost_code_id} {self.amount}>"


class ChangeOrderDrawBillingModel(TrackedBase):
    """A change-order amount billed directly on a draw."""

    __tablename__ = "billing_change_order_draw_billings"

    __table_args__ = (
        UniqueConstraint("draw_id", "change_order_id", name="uq_billing_draw_change_order"),
    )

    draw_id: Mapped[UUID] = mapped_column(ForeignKey("billing_draws.id"), nullable=False)
    change_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("billing_change_orders.id"), nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    draw: Mapped[DrawModel] = relationship("DrawModel", back_populates="change_order_billings")

    def __repr__(self) -> str:
        return f"<ChangeOrderDrawBillingModel {self.change_order_id} {self.amount}>"
