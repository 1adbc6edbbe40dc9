"""
SQLAlchemy ORM persistence model for budget lines.

One row per (job, cost code).  ``budgeted_amount`` is user-owned; the
committed / billed / paid columns are written only by
``BudgetService.recompute`` from the primary ledgers.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class BudgetLineModel(TrackedBase):
    __tablename__ = "billing_budget_lines"

    __table_args__ = (
        UniqueConstraint("job_id", "cost_code_id", name="uq_billing_budget_job_cost_code"),
    )

    job_id: Mapped[UUID] = mapped_column(ForeignKey("billing_jobs.id"), nullable=False)
    cost_code_id: Mapped[UUID] = mapped_column(ForeignKey("billing_cost_codes.id"), nullable=False)
    budgeted_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    committed_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    billed_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    def __repr__(self) -> str:
        return (
            f"<BudgetLineModel {self.cost_code_id} budget={self.budgeted_amount} "
            f"billed={self.billed_amount}>"
        )
