"""
Budget Domain Models (``billing_modules.budget.models``).

``BudgetLine`` is the stored line plus the derived pending / projected
figures from the last roll-up.  ``BudgetSummary`` totals a job.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class BudgetLine:
    id: UUID
    job_id: UUID
    cost_code_id: UUID
    budgeted_amount: Decimal
    committed_amount: Decimal
    billed_amount: Decimal
    paid_amount: Decimal
    pending_amount: Decimal
    projected_amount: Decimal
    closed_at: datetime | None = None
    closed_by: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    @property
    def remaining(self) -> Decimal:
        """Budget not yet billed; negative when over budget."""
        return self.budgeted_amount - self.billed_amount

    @property
    def variance(self) -> Decimal:
        return self.budgeted_amount - self.projected_amount


@dataclass(frozen=True)
class BudgetSummary:
    job_id: UUID
    lines: tuple[BudgetLine, ...]
    total_budgeted: Decimal
    total_committed: Decimal
    total_billed: Decimal
    total_paid: Decimal
    total_projected: Decimal

    @property
    def over_budget_lines(self) -> tuple[BudgetLine, ...]:
        return tuple(line for line in self.lines if line.billed_amount > line.budgeted_amount)

    @property
    def closed_line_count(self) -> int:
        return sum(1 for line in self.lines if line.is_closed)
