import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Expense
from periods import month_period


logger = logging.getLogger(__name__)

DEDUP_INDEX = "uq_expenses_dedup_key"


def _is_dedup_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return DEDUP_INDEX in message or "UNIQUE constraint failed" in message


class ExpenseRepository:
    """Query and persistence operations over stored expenses.

    ``save`` and ``delete_by_id`` only flush; committing is left to the
    caller's unit of work.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, expense_id: int) -> Optional[Expense]:
        return self.session.get(Expense, expense_id)

    def find_all(self) -> list[Expense]:
        stmt = select(Expense).order_by(Expense.date, Expense.id)
        return list(self.session.scalars(stmt).all())

    def find_by_date_range(self, start: date, end: date) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(Expense.date.between(start, end))
            .order_by(Expense.date, Expense.id)
        )
        return list(self.session.scalars(stmt).all())

    def find_by_category(self, category: str) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(Expense.category == category)
            .order_by(Expense.date, Expense.id)
        )
        return list(self.session.scalars(stmt).all())

    def find_by_sub_category(self, sub_category: str) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(Expense.sub_category == sub_category)
            .order_by(Expense.date, Expense.id)
        )
        return list(self.session.scalars(stmt).all())

    def find_by_category_and_date_range(
        self, category: str, start: date, end: date
    ) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(Expense.category == category, Expense.date.between(start, end))
            .order_by(Expense.date, Expense.id)
        )
        return list(self.session.scalars(stmt).all())

    def find_by_year_month(self, year: int, month: int) -> list[Expense]:
        period = month_period(year, month)
        return self.find_by_date_range(period.start, period.end)

    def find_recurring_templates(self) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(Expense.is_recurring.is_(True))
            .order_by(Expense.id)
        )
        return list(self.session.scalars(stmt).all())

    def find_by_parent(self, template_id: int) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(Expense.parent_expense_id == template_id)
            .order_by(Expense.date, Expense.id)
        )
        return list(self.session.scalars(stmt).all())

    def find_duplicate(
        self,
        expense_date: date,
        category: str,
        sub_category: Optional[str],
        amount_cents: int,
        description: str,
        *,
        exclude_id: Optional[int] = None,
    ) -> Optional[Expense]:
        if sub_category is None:
            sub_category_clause = Expense.sub_category.is_(None)
        else:
            sub_category_clause = Expense.sub_category == sub_category
        stmt = select(Expense).where(
            Expense.date == expense_date,
            Expense.category == category,
            sub_category_clause,
            Expense.amount_cents == amount_cents,
            Expense.description == description,
        )
        if exclude_id is not None:
            stmt = stmt.where(Expense.id != exclude_id)
        return self.session.scalar(stmt.order_by(Expense.id).limit(1))

    def insert_unless_duplicate(self, expense: Expense) -> Optional[Expense]:
        """Persist ``expense`` unless its dedup key is already stored.

        Returns ``None`` for a duplicate. A unique index violation raised
        by a concurrent writer counts as a duplicate too; other integrity
        errors propagate. The insert runs in a savepoint so the surrounding
        transaction stays usable.
        """
        if self.find_duplicate(*expense.dedup_key) is not None:
            return None
        try:
            with self.session.begin_nested():
                self.session.add(expense)
                self.session.flush()
        except IntegrityError as exc:
            if not _is_dedup_violation(exc):
                raise
            logger.info(
                f"dedup_backstop: date={expense.date} category={expense.category!r}"
            )
            return None
        return expense

    def save(self, expense: Expense) -> Expense:
        self.session.add(expense)
        self.session.flush()
        return expense

    def delete_by_id(self, expense_id: int) -> None:
        expense = self.session.get(Expense, expense_id)
        if expense is None:
            raise ValueError("Expense not found")
        self.session.delete(expense)
        self.session.flush()
