"""
SQLAlchemy ORM persistence models for procurement.

Invariants enforced
-------------------
* All monetary fields are ``Decimal`` (Numeric(14,2)) -- NEVER float.
* ``POLineItemModel.invoiced_amount`` never goes below zero (service floors it).
* ``ChangeOrderModel.invoiced_amount`` is derived; only the procurement
  service writes it.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase
from billing_kernel.domain.statuses import PurchaseOrderStatus


class PurchaseOrderModel(TrackedBase):
    __tablename__ = "billing_purchase_orders"

    __table_args__ = (
        UniqueConstraint("job_id", "po_number", name="uq_billing_po_job_number"),
        Index("idx_billing_po_job", "job_id"),
    )

    job_id: Mapped[UUID] = mapped_column(ForeignKey("billing_jobs.id"), nullable=False)
    po_number: Mapped[str] = mapped_column(String(50), nullable=False)
    vendor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=PurchaseOrderStatus.OPEN.value,
    )

    line_items: Mapped[list["POLineItemModel"]] = relationship(
        "POLineItemModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dto(self):
        from billing_modules.procurement.models import PurchaseOrder

        return PurchaseOrder(
            id=self.id,
            job_id=self.job_id,
            po_number=self.po_number,
            total_amount=self.total_amount,
            status=PurchaseOrderStatus(self.status),
            vendor_id=self.vendor_id,
            line_items=tuple(line.to_dto() for line in self.line_items),
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.po_number} {self.total_amount} [{self.status}]>"


class POLineItemModel(TrackedBase):
    __tablename__ = "billing_po_line_items"

    __table_args__ = (
        Index("idx_billing_po_line_po", "purchase_order_id"),
        Index("idx_billing_po_line_cost_code", "cost_code_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("billing_purchase_orders.id"), nullable=False,
    )
    cost_code_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("billing_cost_codes.id"), nullable=True,
    )
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    invoiced_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="line_items",
    )

    def to_dto(self):
        from billing_modules.procurement.models import POLineItem

        return POLineItem(
            id=self.id,
            purchase_order_id=self.purchase_order_id,
            cost_code_id=self.cost_code_id,
            amount=self.amount,
            invoiced_amount=self.invoiced_amount,
            description=self.description,
        )

    def __repr__(self) -> str:
        return f"<POLineItemModel {self.cost_code_id} {self.invoiced_amount}/{self.amount}>"


class ChangeOrderModel(TrackedBase):
    __tablename__ = "billing_change_orders"

    __table_args__ = (
        UniqueConstraint("job_id", "change_order_number", name="uq_billing_co_job_number"),
    )

    job_id: Mapped[UUID] = mapped_column(ForeignKey("billing_jobs.id"), nullable=False)
    change_order_number: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    invoiced_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="approved")

    def to_dto(self):
        from billing_modules.procurement.models import ChangeOrder

        return ChangeOrder(
            id=self.id,
            job_id=self.job_id,
            change_order_number=self.change_order_number,
            amount=self.amount,
            invoiced_amount=self.invoiced_amount,
            status=self.status,
            title=self.title,
        )

    def __repr__(self) -> str:
        return f"<ChangeOrderModel {self.change_order_number} {self.invoiced_amount}/{self.amount}>"
