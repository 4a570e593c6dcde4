from collections import defaultdict
from typing import Iterable

from sqlalchemy.orm import Session

from models import Expense
from periods import year_period
from repository import ExpenseRepository


def cents_to_amount(cents: int) -> float:
    return cents / 100


def category_summary(expenses: Iterable[Expense]) -> dict[str, float]:
    totals: dict[str, int] = defaultdict(int)
    for expense in expenses:
        totals[expense.category] += expense.amount_cents
    return {category: cents_to_amount(cents) for category, cents in totals.items()}


def monthly_total(expenses: Iterable[Expense]) -> float:
    return cents_to_amount(sum(expense.amount_cents for expense in expenses))


class ReportService:
    """Read-side reports; every figure is recomputed from stored expenses."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.repository = ExpenseRepository(session)

    def category_summary_for_month(self, year: int, month: int) -> dict[str, float]:
        return category_summary(self.repository.find_by_year_month(year, month))

    def monthly_total(self, year: int, month: int) -> float:
        return monthly_total(self.repository.find_by_year_month(year, month))

    def monthly_trend(self, year: int) -> list[float]:
        return [self.monthly_total(year, month) for month in range(1, 13)]

    def year_to_date_summary(self, year: int) -> dict[str, float]:
        # Whole calendar year, not cut off at today.
        period = year_period(year)
        return category_summary(
            self.repository.find_by_date_range(period.start, period.end)
        )