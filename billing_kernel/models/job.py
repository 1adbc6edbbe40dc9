"""
Jobs and cost codes -- the aggregate roots every billing ledger hangs off.

A job is the reconciliation boundary: invoices, allocations, draws, budget
lines, purchase orders and change orders all belong to exactly one job.
Cost codes are the budget dimension allocations are coded against.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


@dataclass(frozen=True)
class Job:
    id: UUID
    name: str
    status: str


@dataclass(frozen=True)
class CostCode:
    id: UUID
    code: str
    name: str


class JobModel(TrackedBase):
    """A construction job."""

    __tablename__ = "billing_jobs"

    __table_args__ = (
        Index("idx_billing_job_status", "status"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="active")

    def to_dto(self) -> Job:
        return Job(id=self.id, name=self.name, status=self.status)

    def __repr__(self) -> str:
        return f"<JobModel {self.name} [{self.status}]>"


class CostCodeModel(TrackedBase):
    """A budget cost code (e.g. ``03-300 Concrete``)."""

    __tablename__ = "billing_cost_codes"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def to_dto(self) -> CostCode:
        return CostCode(id=self.id, code=self.code, name=self.name)

    def __repr__(self) -> str:
        return f"<CostCodeModel {self.code} {self.name}>"
