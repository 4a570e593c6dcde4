from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def month_period(year: int, month: int) -> Period:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    return Period(f"{year:04d}-{month:02d}", date(year, month, 1), month_end(year, month))


def year_period(year: int) -> Period:
    return Period(f"{year:04d}", date(year, 1, 1), date(year, 12, 31))


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if not period or period == "all":
        # Unbounded; future-dated expenses belong to "all" too.
        return Period("all", date.min, date.max)
    if period == "last_month":
        last_month_end = today.replace(day=1) - date.resolution
        found = month_period(last_month_end.year, last_month_end.month)
        return Period("last_month", found.start, found.end)
    if period == "this_year":
        found = year_period(today.year)
        return Period("this_year", found.start, found.end)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period != "this_month":
        raise ValueError(f"Unknown period '{period}'")

    found = month_period(today.year, today.month)
    return Period("this_month", found.start, found.end)
