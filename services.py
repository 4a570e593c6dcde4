from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from csv_utils import export_expenses, parse_csv
from models import Category, Expense, SubCategory, cents_to_decimal
from periods import Period
from recurrence import CycleStats, RecurringEngine
from repository import ExpenseRepository
from schemas import CSVImportResult, ExpenseIn, ImportSummary, RecurringTemplateIn


logger = logging.getLogger(__name__)


class CategoryAmbiguous(ValueError):
    pass


def _expense_from(data: ExpenseIn) -> Expense:
    return Expense(
        date=data.date,
        category=data.category,
        sub_category=data.sub_category,
        description=data.description,
        amount_cents=data.amount_cents,
        is_recurring=False,
    )


def _template_from(data: RecurringTemplateIn) -> Expense:
    template = _expense_from(data)
    template.is_recurring = True
    template.recurrence_type = data.recurrence_type
    template.recurrence_interval = data.recurrence_interval
    template.recurrence_end_date = data.recurrence_end_date
    return template


class ExpenseService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.repository = ExpenseRepository(session)

    def is_duplicate(self, candidate: Expense | ExpenseIn) -> bool:
        existing = self.repository.find_duplicate(
            candidate.date,
            candidate.category,
            candidate.sub_category,
            candidate.amount_cents,
            candidate.description,
        )
        return existing is not None

    def add(self, data: ExpenseIn) -> Optional[Expense]:
        """Store a new expense, or return ``None`` if an identical one exists."""
        expense = self.repository.insert_unless_duplicate(_expense_from(data))
        if expense is None:
            return None
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def get(self, expense_id: int) -> Expense:
        expense = self.repository.get(expense_id)
        if expense is None:
            raise ValueError("Expense not found")
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Optional[Expense]:
        expense = self.get(expense_id)
        clash = self.repository.find_duplicate(
            data.date,
            data.category,
            data.sub_category,
            data.amount_cents,
            data.description,
            exclude_id=expense.id,
        )
        if clash is not None:
            return None
        expense.date = data.date
        expense.category = data.category
        expense.sub_category = data.sub_category
        expense.description = data.description
        expense.amount_cents = data.amount_cents
        self.repository.save(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        self.repository.delete_by_id(expense_id)
        self.session.commit()

    def list_all(self) -> list[Expense]:
        return self.repository.find_all()

    def list_month(self, year: int, month: int) -> list[Expense]:
        return self.repository.find_by_year_month(year, month)

    def list_period(self, period: Period) -> list[Expense]:
        return self.repository.find_by_date_range(period.start, period.end)

    def list_sub_category(self, sub_category: str) -> list[Expense]:
        return self.repository.find_by_sub_category(sub_category)

    def list_category(
        self, category: str, period: Optional[Period] = None
    ) -> list[Expense]:
        if period is None:
            return self.repository.find_by_category(category)
        return self.repository.find_by_category_and_date_range(
            category, period.start, period.end
        )

    def import_batch(self, items: Iterable[ExpenseIn]) -> ImportSummary:
        summary = ImportSummary()
        for position, data in enumerate(items, start=1):
            try:
                with self.session.begin_nested():
                    created = self.repository.insert_unless_duplicate(
                        _expense_from(data)
                    )
            except SQLAlchemyError:
                summary.failed += 1
                logger.exception(f"import_batch: item={position} failed")
                continue
            if created is None:
                summary.skipped += 1
            else:
                summary.imported += 1
        self.session.commit()
        logger.info(
            f"import_batch: imported={summary.imported} skipped={summary.skipped} "
            f"failed={summary.failed}"
        )
        return summary


class RecurringTemplateService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.repository = ExpenseRepository(session)

    def get(self, template_id: int) -> Expense:
        template = self.repository.get(template_id)
        if template is None or not template.is_recurring:
            raise ValueError("Recurring template not found")
        return template

    def list(self) -> list[Expense]:
        return self.repository.find_recurring_templates()

    def instances(self, template_id: int) -> list[Expense]:
        template = self.get(template_id)
        return self.repository.find_by_parent(template.id)

    def create(self, data: RecurringTemplateIn) -> Optional[Expense]:
        template = self.repository.insert_unless_duplicate(_template_from(data))
        if template is None:
            return None
        self.session.commit()
        self.session.refresh(template)
        return template

    def update(self, template_id: int, data: RecurringTemplateIn) -> Optional[Expense]:
        template = self.get(template_id)
        clash = self.repository.find_duplicate(
            data.date,
            data.category,
            data.sub_category,
            data.amount_cents,
            data.description,
            exclude_id=template.id,
        )
        if clash is not None:
            return None
        replacement = _template_from(data)
        for field in (
            "date",
            "category",
            "sub_category",
            "description",
            "amount_cents",
            "recurrence_type",
            "recurrence_interval",
            "recurrence_end_date",
        ):
            setattr(template, field, getattr(replacement, field))
        self.repository.save(template)
        self.session.commit()
        self.session.refresh(template)
        return template

    def delete(self, template_id: int) -> None:
        # Generated instances stay; they keep pointing at the old id.
        template = self.get(template_id)
        self.repository.delete_by_id(template.id)
        self.session.commit()

    def run_generation_cycle(self, as_of: Optional[date] = None) -> CycleStats:
        engine = RecurringEngine(self.session)
        engine.run_generation_cycle(as_of)
        self.session.commit()
        return engine.last_cycle


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .options(selectinload(Category.sub_category_entries))
            .order_by(Category.name)
        )
        return list(self.session.scalars(stmt).all())

    def find(self, name: str) -> Optional[Category]:
        return self.session.scalar(select(Category).where(Category.name == name))

    def add(self, name: str) -> Category:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Category name must not be blank")
        existing = self.find(clean_name)
        if existing:
            return existing
        category = Category(name=clean_name)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def add_sub_category(self, category_name: str, sub_category: str) -> Category:
        clean_sub = sub_category.strip()
        if not clean_sub:
            raise ValueError("Sub-category name must not be blank")
        category = self.add(category_name)
        if clean_sub not in category.sub_categories:
            category.sub_category_entries.append(SubCategory(name=clean_sub))
            self.session.commit()
            self.session.refresh(category)
        return category

    def delete_by_name(self, name: str) -> None:
        category = self.find(name.strip())
        if not category:
            raise ValueError("Category not found")
        self.session.delete(category)
        self.session.commit()

    def resolve_name(self, raw: str) -> str:
        """Map free text onto a known category name.

        Case-insensitive exact matches win, then a unique match within one
        edit. Unknown names are returned as typed.
        """
        clean = raw.strip()
        input_lower = clean.lower()
        exact = self.session.scalar(
            select(Category).where(func.lower(Category.name) == input_lower)
        )
        if exact:
            return exact.name

        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in self.session.scalars(select(Category)).all():
            dist = int(Levenshtein.distance(input_lower, category.name.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)

        if best_distance is not None and best_distance <= 1:
            if len(best) > 1:
                options = ", ".join(sorted({c.name for c in best}))
                raise CategoryAmbiguous(
                    f"Category '{clean}' is ambiguous; matches: {options}"
                )
            return best[0].name
        return clean


class CSVService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def import_csv(self, content: str) -> CSVImportResult:
        rows, errors = parse_csv(content)
        categories = CategoryService(self.session)
        items: list[ExpenseIn] = []
        for row in rows:
            try:
                category_name = categories.resolve_name(row.category)
            except CategoryAmbiguous as exc:
                errors.append(f"{row.date.isoformat()} {row.category}: {exc}")
                continue
            items.append(
                ExpenseIn(
                    date=row.date,
                    category=category_name,
                    sub_category=row.sub_category,
                    description=row.description,
                    amount=cents_to_decimal(row.amount_cents),
                )
            )
        summary = ExpenseService(self.session).import_batch(items)
        return CSVImportResult(
            imported=summary.imported,
            skipped=summary.skipped,
            failed=summary.failed + len(errors),
            errors=errors,
        )

    def export(self, expenses: Optional[list[Expense]] = None) -> str:
        if expenses is None:
            expenses = ExpenseRepository(self.session).find_all()
        return export_expenses(expenses)
