from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Expense
from periods import month_period, resolve_period, year_period
from reports import ReportService, category_summary, monthly_total


def _row(on: date, category: str, cents: int, description: str = "") -> Expense:
    return Expense(
        date=on,
        category=category,
        description=description or f"{category} {on.isoformat()}",
        amount_cents=cents,
        is_recurring=False,
    )


FIXTURE = [
    _row(date(2024, 1, 3), "Food", 2350),
    _row(date(2024, 1, 20), "Rent", 100000),
    _row(date(2024, 2, 29), "Food", 1875),
    _row(date(2024, 5, 31), "Travel", 45000),
    _row(date(2024, 5, 1), "Food", -500, "Refund"),
    _row(date(2024, 12, 31), "Gifts", 7999),
    _row(date(2023, 12, 31), "Food", 1234),
    _row(date(2025, 1, 1), "Food", 4321),
]


def _seeded_session(engine) -> Session:
    Base.metadata.create_all(engine)
    session = Session(engine)
    session.add_all(
        Expense(
            date=row.date,
            category=row.category,
            description=row.description,
            amount_cents=row.amount_cents,
            is_recurring=False,
        )
        for row in FIXTURE
    )
    session.commit()
    return session


def test_category_summary_groups_by_category():
    summary = category_summary(FIXTURE[:5])
    assert summary == {"Food": 37.25, "Rent": 1000.0, "Travel": 450.0}


def test_monthly_total_of_nothing_is_zero():
    assert monthly_total([]) == 0.0
    assert category_summary([]) == {}


def test_monthly_trend_has_twelve_entries_with_zero_months():
    engine = create_engine("sqlite:///:memory:")
    with _seeded_session(engine) as session:
        trend = ReportService(session).monthly_trend(2024)

    assert len(trend) == 12
    assert trend[0] == 1023.5
    assert trend[1] == 18.75
    assert trend[2] == 0.0
    assert trend[4] == 445.0
    assert trend[11] == 79.99


def test_trend_sum_matches_year_summary():
    engine = create_engine("sqlite:///:memory:")
    with _seeded_session(engine) as session:
        reports = ReportService(session)
        trend = reports.monthly_trend(2024)
        year_summary = reports.year_to_date_summary(2024)

    assert sum(trend) == pytest.approx(sum(year_summary.values()))
    assert set(year_summary) == {"Food", "Rent", "Travel", "Gifts"}


def test_year_to_date_covers_the_whole_calendar_year():
    engine = create_engine("sqlite:///:memory:")
    with _seeded_session(engine) as session:
        summary = ReportService(session).year_to_date_summary(2024)

    assert summary["Gifts"] == 79.99
    assert summary["Food"] == pytest.approx(37.25)


def test_category_summary_for_month_and_monthly_total():
    engine = create_engine("sqlite:///:memory:")
    with _seeded_session(engine) as session:
        reports = ReportService(session)
        assert reports.category_summary_for_month(2024, 5) == {
            "Travel": 450.0,
            "Food": -5.0,
        }
        assert reports.monthly_total(2024, 5) == 445.0
        assert reports.monthly_total(2024, 7) == 0.0


def test_month_and_year_periods():
    feb = month_period(2024, 2)
    assert (feb.start, feb.end) == (date(2024, 2, 1), date(2024, 2, 29))
    dec = month_period(2023, 12)
    assert dec.end == date(2023, 12, 31)
    year = year_period(2025)
    assert (year.start, year.end) == (date(2025, 1, 1), date(2025, 12, 31))
    with pytest.raises(ValueError):
        month_period(2024, 13)


def test_resolve_period_variants():
    today = date(2024, 3, 10)
    assert resolve_period("last_month", None, None, today=today).end == date(2024, 2, 29)
    everything = resolve_period(None, None, None, today=today)
    assert (everything.start, everything.end) == (date.min, date.max)
    assert resolve_period("all", None, None, today=today) == everything
    this_month = resolve_period("this_month", None, None, today=today)
    assert this_month.start == date(2024, 3, 1)
    custom = resolve_period("custom", "2024-01-01", "2024-01-31", today=today)
    assert custom.slug == "custom"
    with pytest.raises(ValueError):
        resolve_period("custom", "2024-02-01", "2024-01-01", today=today)
    with pytest.raises(ValueError):
        resolve_period("fortnight", None, None, today=today)
