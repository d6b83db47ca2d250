"""Category budgets and their progress in the current period."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from tally.core.errors import NotFoundError
from tally.db.models import BUDGET_PERIODS, Budget, Transaction


@dataclass
class BudgetStatus:
    """A budget with actual spending in its current period."""

    id: str
    category: str
    amount: float
    period: str
    period_start: date
    period_end: date
    actual: float
    remaining: float
    percent_used: int
    transaction_count: int


def current_period_range(period: str, today: Optional[date] = None) -> Tuple[date, date]:
    """Inclusive bounds of the period containing today.

    Weeks run Monday to Sunday.
    """
    today = today or date.today()
    if period == "weekly":
        start = today - timedelta(days=today.weekday())
        return start, start + timedelta(days=6)
    if period == "yearly":
        return date(today.year, 1, 1), date(today.year, 12, 31)

    start = today.replace(day=1)
    next_month = (start + timedelta(days=32)).replace(day=1)
    return start, next_month - timedelta(days=1)


class BudgetRepository:
    """Repository for Budget operations."""

    def __init__(self, db: Session):
        """Initialize repository with database session."""
        self.db = db

    def set_budget(self, category: str, amount: float, period: str = "monthly") -> Budget:
        """Create or update the budget for a category and period.

        Raises:
            ValueError: If the period is unknown or the amount is not positive
        """
        if period not in BUDGET_PERIODS:
            raise ValueError(f'Invalid period "{period}". Must be one of: {", ".join(BUDGET_PERIODS)}')
        if amount is None or amount <= 0:
            raise ValueError("Budget amount must be greater than 0")

        budget = self.db.query(Budget).filter_by(category=category, period=period).first()
        if budget is None:
            budget = Budget(category=category, period=period, amount=amount)
            self.db.add(budget)
        else:
            budget.amount = amount
        self.db.flush()
        return budget

    def list_budgets(self, today: Optional[date] = None) -> List[BudgetStatus]:
        """All budgets with outflow totals for their current period."""
        statuses = []
        for budget in self.db.query(Budget).order_by(Budget.category, Budget.period).all():
            start, end = current_period_range(budget.period, today)
            total, count = (
                self.db.query(func.coalesce(func.sum(Transaction.amount), 0.0), func.count(Transaction.id))
                .filter(
                    Transaction.category == budget.category,
                    Transaction.amount < 0,
                    Transaction.date >= start,
                    Transaction.date <= end,
                )
                .one()
            )
            actual = round(abs(total), 2)
            statuses.append(
                BudgetStatus(
                    id=budget.id,
                    category=budget.category,
                    amount=budget.amount,
                    period=budget.period,
                    period_start=start,
                    period_end=end,
                    actual=actual,
                    remaining=round(max(0.0, budget.amount - actual), 2),
                    percent_used=round(actual / budget.amount * 100),
                    transaction_count=count,
                )
            )
        return statuses

    def delete_budget(self, budget_id: str) -> None:
        budget = self.db.get(Budget, budget_id)
        if budget is None:
            raise NotFoundError(f'Budget "{budget_id}" not found')
        self.db.delete(budget)
        self.db.flush()
