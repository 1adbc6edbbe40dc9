"""
SQLAlchemy ORM persistence models for invoices and their allocations.

Invariants enforced
-------------------
* All monetary fields are ``Decimal`` (Numeric(14,2)) -- NEVER float.
* Invoices are soft-deleted (``deleted_at``); rows are never removed.
* ``billed_amount`` is the cumulative draw-allocation total, capped at
  ``amount``; only the draw service writes it.
* Allocation rows are replaced wholesale by coding; each carries at most
  one change-order tag and one PO-line tag.
"""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_engines.allocation import AllocationLine, InvoiceAmounts
from billing_kernel.db.base import TrackedBase
from billing_kernel.domain.statuses import InvoiceStatus, ReviewFlag


class InvoiceModel(TrackedBase):
    __tablename__ = "billing_invoices"

    __table_args__ = (
        Index("idx_billing_invoice_job_status", "job_id", "status"),
        Index("idx_billing_invoice_po", "po_id"),
        Index("idx_billing_invoice_parent", "parent_invoice_id"),
    )

    job_id: Mapped[UUID] = mapped_column(ForeignKey("billing_jobs.id"), nullable=False)
    vendor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    po_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("billing_purchase_orders.id"), nullable=True,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=InvoiceStatus.RECEIVED.value,
    )
    billed_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    first_draw_id: Mapped[UUID | None] = mapped_column(nullable=True)
    fully_billed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    denied_at: Mapped[datetime | None] = mapped_column(nullable=True)
    denial_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    is_split_parent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parent_invoice_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("billing_invoices.id"), nullable=True,
    )
    review_flags_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    allocations: Mapped[list[AllocationModel]] = relationship(
        "AllocationModel",
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AllocationModel.position",
    )

    @property
    def review_flags(self) -> tuple[ReviewFlag, ...]:
        return tuple(ReviewFlag(f) for f in json.loads(self.review_flags_json or "[]"))

    @review_flags.setter
    def review_flags(self, flags) -> None:
        ordered: list[str] = []
        for flag in flags:
            value = ReviewFlag(flag).value
            if value not in ordered:
                ordered.append(value)
        self.review_flags_json = json.dumps(ordered)

    def add_review_flag(self, flag: ReviewFlag) -> None:
        self.review_flags = (*self.review_flags, flag)

    def amounts(self) -> InvoiceAmounts:
        return InvoiceAmounts(
            invoice_id=self.id,
            amount=self.amount,
            billed_amount=self.billed_amount,
            paid_amount=self.paid_amount,
        )

    def allocation_lines(self) -> tuple[AllocationLine, ...]:
        return tuple(a.to_line() for a in self.allocations)

    def cost_code_ids(self) -> set[UUID]:
        return {a.cost_code_id for a in self.allocations if a.cost_code_id is not None}

    def change_order_ids(self) -> set[UUID]:
        return {a.change_order_id for a in self.allocations if a.change_order_id is not None}

    def to_dto(self):
        from billing_modules.invoices.models import Invoice

        return Invoice(
            id=self.id,
            job_id=self.job_id,
            amount=self.amount,
            status=InvoiceStatus(self.status),
            billed_amount=self.billed_amount,
            paid_amount=self.paid_amount,
            vendor_id=self.vendor_id,
            invoice_number=self.invoice_number,
            po_id=self.po_id,
            first_draw_id=self.first_draw_id,
            fully_billed_at=self.fully_billed_at,
            approved_at=self.approved_at,
            approved_by=self.approved_by,
            denied_at=self.denied_at,
            denial_reason=self.denial_reason,
            is_split_parent=self.is_split_parent,
            parent_invoice_id=self.parent_invoice_id,
            review_flags=self.review_flags,
            allocations=tuple(a.to_dto() for a in self.allocations),
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.invoice_number or self.id} {self.amount} [{self.status}]>"


class AllocationModel(TrackedBase):
    __tablename__ = "billing_invoice_allocations"

    __table_args__ = (
        Index("idx_billing_allocation_invoice", "invoice_id"),
        Index("idx_billing_allocation_change_order", "change_order_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("billing_invoices.id"), nullable=False)
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    cost_code_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("billing_cost_codes.id"), nullable=True,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    change_order_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("billing_change_orders.id"), nullable=True,
    )
    po_line_item_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("billing_po_line_items.id"), nullable=True,
    )

    invoice: Mapped[InvoiceModel] = relationship("InvoiceModel", back_populates="allocations")

    def to_line(self) -> AllocationLine:
        return AllocationLine(
            cost_code_id=self.cost_code_id,
            amount=self.amount,
            change_order_id=self.change_order_id,
            po_line_item_id=self.po_line_item_id,
        )

    def to_dto(self):
        from billing_modules.invoices.models import Allocation

        return Allocation(
            id=self.id,
            invoice_id=self.invoice_id,
            cost_code_id=self.cost_code_id,
            amount=self.amount,
            change_order_id=self.change_order_id,
            po_line_item_id=self.po_line_item_id,
        )

    def __repr__(self) -> str:
        return f"<AllocationModel {self.cost_code_id} {self.amount}>"
