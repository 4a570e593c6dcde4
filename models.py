import datetime as dt
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.ext.orderinglist import ordering_list

from database import Base


class RecurrenceType(str, Enum):
    """Step unit of a recurring template.

    MONTHLY and CUSTOM both step by calendar months; CUSTOM carries no
    grammar of its own. Values that are not members resolve to MONTHLY,
    see ``recurrence.resolve_recurrence_type``.
    """

    monthly = "MONTHLY"
    yearly = "YEARLY"
    custom = "CUSTOM"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    sub_category_entries: Mapped[list["SubCategory"]] = relationship(
        "SubCategory",
        back_populates="category",
        order_by="SubCategory.position",
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
    )

    @property
    def sub_categories(self) -> list[str]:
        return [entry.name for entry in self.sub_category_entries]


class SubCategory(Base):
    __tablename__ = "sub_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="sub_category_entries"
    )

    __table_args__ = (
        UniqueConstraint("category_id", "name", name="uq_sub_category_name"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    sub_category: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Kept as free text so rows with unknown types still load.
    recurrence_type: Mapped[Optional[str]] = mapped_column(String(20))
    recurrence_interval: Mapped[Optional[int]] = mapped_column(Integer)
    recurrence_end_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    # No foreign key: deleting a template leaves its instances alone.
    parent_expense_id: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        Index("ix_expenses_date", "date"),
        Index("ix_expenses_category_date", "category", "date"),
        Index("ix_expenses_parent", "parent_expense_id"),
        Index("ix_expenses_is_recurring", "is_recurring"),
        CheckConstraint(
            "recurrence_interval IS NULL OR recurrence_interval > 0",
            name="ck_expenses_interval_positive",
        ),
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_decimal(self.amount_cents)

    @property
    def dedup_key(self) -> tuple:
        return (
            self.date,
            self.category,
            self.sub_category,
            self.amount_cents,
            self.description,
        )

    def __repr__(self) -> str:
        kind = "template" if self.is_recurring else "expense"
        return f"<Expense {kind} id={self.id} {self.date} {self.category} {self.amount_cents}>"


# Store-level backstop for the dedup key; a missing sub-category only
# collides with another missing one.
Index(
    "uq_expenses_dedup_key",
    Expense.date,
    Expense.category,
    func.coalesce(Expense.sub_category, ""),
    Expense.amount_cents,
    Expense.description,
    unique=True,
)


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))
