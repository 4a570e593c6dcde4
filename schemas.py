import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import Expense, RecurrenceType


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class ExpenseIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: dt.date
    category: str = Field(..., min_length=1, max_length=100)
    sub_category: Optional[str] = Field(
        default=None, max_length=100, alias="subCategory"
    )
    description: str = Field(default="", max_length=500)
    amount: Decimal = Field(..., max_digits=14, decimal_places=2)

    @field_validator("category")
    @classmethod
    def _strip_category(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Category must not be blank")
        return value

    @field_validator("sub_category", mode="before")
    @classmethod
    def _normalize_sub_category(cls, value):
        if isinstance(value, str):
            return _blank_to_none(value)
        return value

    @field_validator("description", mode="before")
    @classmethod
    def _normalize_description(cls, value):
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @property
    def amount_cents(self) -> int:
        return int((self.amount * 100).quantize(Decimal("1")))


class RecurringTemplateIn(ExpenseIn):
    # Free text so unknown types fall through to the monthly default.
    recurrence_type: str = Field(
        default=RecurrenceType.monthly.value, max_length=20, alias="recurrenceType"
    )
    recurrence_interval: Optional[int] = Field(
        default=1, gt=0, alias="recurrenceInterval"
    )
    recurrence_end_date: Optional[dt.date] = Field(
        default=None, alias="recurrenceEndDate"
    )

    @field_validator("recurrence_type", mode="before")
    @classmethod
    def _normalize_recurrence_type(cls, value):
        if value is None:
            return RecurrenceType.monthly.value
        if isinstance(value, RecurrenceType):
            return value.value
        if isinstance(value, str):
            return value.strip().upper() or RecurrenceType.monthly.value
        return value


class ExpenseOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    date: dt.date
    category: str
    sub_category: Optional[str] = Field(default=None, alias="subCategory")
    description: str
    amount: float
    is_recurring: bool = Field(alias="isRecurring")
    recurrence_type: Optional[str] = Field(default=None, alias="recurrenceType")
    recurrence_interval: Optional[int] = Field(
        default=None, alias="recurrenceInterval"
    )
    recurrence_end_date: Optional[dt.date] = Field(
        default=None, alias="recurrenceEndDate"
    )
    parent_expense_id: Optional[int] = Field(default=None, alias="parentExpenseId")

    @classmethod
    def from_model(cls, expense: Expense) -> "ExpenseOut":
        return cls(
            id=expense.id,
            date=expense.date,
            category=expense.category,
            sub_category=expense.sub_category,
            description=expense.description,
            amount=float(expense.amount),
            is_recurring=expense.is_recurring,
            recurrence_type=expense.recurrence_type,
            recurrence_interval=expense.recurrence_interval,
            recurrence_end_date=expense.recurrence_end_date,
            parent_expense_id=expense.parent_expense_id,
        )


class ImportSummary(BaseModel):
    imported: int = 0
    skipped: int = 0
    failed: int = 0


class CSVImportResult(ImportSummary):
    errors: list[str] = Field(default_factory=list)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class SubCategoryIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category_name: str = Field(
        ..., min_length=1, max_length=100, alias="categoryName"
    )
    sub_category: str = Field(..., min_length=1, max_length=100, alias="subCategory")


class CategoryOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str
    sub_categories: list[str] = Field(default_factory=list, alias="subCategories")


class CSVRow(BaseModel):
    date: dt.date
    category: str
    sub_category: Optional[str]
    description: str
    amount_cents: int
