import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Iterator, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from config import get_settings
from models import Expense, RecurrenceType
from repository import ExpenseRepository


logger = logging.getLogger(__name__)


class InvalidRecurrence(ValueError):
    pass


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    """Calendar-month step; the day snaps to the end of shorter months."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


def add_years(base: date, years: int) -> date:
    year = base.year + years
    return date(year, base.month, min(base.day, days_in_month(year, base.month)))


def resolve_recurrence_type(
    raw: Optional[str], *, strict: bool = False
) -> RecurrenceType:
    """Map a stored recurrence type onto ``RecurrenceType``.

    Anything unrecognised (including a missing value) falls back to
    MONTHLY unless ``strict`` is set, in which case it is rejected.
    """
    if isinstance(raw, RecurrenceType):
        return raw
    value = (raw or "").strip().upper()
    try:
        return RecurrenceType(value)
    except ValueError:
        if strict:
            raise InvalidRecurrence(f"Unknown recurrence type {raw!r}") from None
        logger.warning(f"recurrence_type_fallback: raw={raw!r} used=MONTHLY")
        return RecurrenceType.monthly


def effective_interval(template: Expense) -> int:
    interval = template.recurrence_interval
    if interval is None:
        return 1
    if interval <= 0:
        raise InvalidRecurrence(
            f"Recurrence interval must be positive, got {interval}"
        )
    return interval


def step_date(current: date, recurrence_type: RecurrenceType, interval: int) -> date:
    if recurrence_type == RecurrenceType.yearly:
        return add_years(current, interval)
    # MONTHLY and CUSTOM share calendar-month stepping.
    return add_months(current, interval)


class DueDates:
    """Due dates of one template, computed on iteration.

    All inputs are captured when the object is built, so iterating again
    yields the same dates and later changes to the template do not leak in.
    """

    def __init__(
        self,
        baseline: date,
        recurrence_type: RecurrenceType,
        interval: int,
        as_of: date,
        end_date: Optional[date] = None,
    ) -> None:
        self.baseline = baseline
        self.recurrence_type = recurrence_type
        self.interval = interval
        self.as_of = as_of
        self.end_date = end_date

    @property
    def expired(self) -> bool:
        return self.end_date is not None and self.as_of > self.end_date

    def __iter__(self) -> Iterator[date]:
        if self.expired:
            return
        current = self.baseline
        while True:
            current = step_date(current, self.recurrence_type, self.interval)
            if current > self.as_of:
                return
            if self.end_date is not None and current > self.end_date:
                return
            yield current

    def __repr__(self) -> str:
        return (
            f"DueDates(baseline={self.baseline}, type={self.recurrence_type.value}, "
            f"interval={self.interval}, as_of={self.as_of}, end_date={self.end_date})"
        )


def project_due(
    template: Expense,
    existing_instances: Iterable[Expense],
    as_of: date,
    *,
    strict: bool = False,
) -> DueDates:
    if not template.is_recurring:
        raise InvalidRecurrence(f"Expense {template.id} is not a recurring template")
    recurrence_type = resolve_recurrence_type(template.recurrence_type, strict=strict)
    interval = effective_interval(template)
    baseline = max((item.date for item in existing_instances), default=template.date)
    return DueDates(
        baseline=baseline,
        recurrence_type=recurrence_type,
        interval=interval,
        as_of=as_of,
        end_date=template.recurrence_end_date,
    )


def materialize_instance(template: Expense, due_date: date) -> Expense:
    return Expense(
        date=due_date,
        category=template.category,
        sub_category=template.sub_category,
        description=template.description,
        amount_cents=template.amount_cents,
        is_recurring=False,
        recurrence_type=None,
        recurrence_interval=None,
        recurrence_end_date=None,
        parent_expense_id=template.id,
    )


@dataclass
class CycleStats:
    as_of: date
    templates: int = 0
    created: int = 0
    duplicates: int = 0
    expired: int = 0
    failed: int = 0


class RecurringEngine:
    def __init__(self, session: Session, *, strict: Optional[bool] = None) -> None:
        self.session = session
        self.repository = ExpenseRepository(session)
        self.strict = get_settings().strict_recurrence if strict is None else strict
        self.last_cycle: Optional[CycleStats] = None

    def run_generation_cycle(self, as_of: Optional[date] = None) -> None:
        as_of = as_of or local_today()
        stats = CycleStats(as_of=as_of)
        for template in self.repository.find_recurring_templates():
            stats.templates += 1
            template_id = template.id
            try:
                with self.session.begin_nested():
                    outcome = self._generate_for_template(template, as_of)
            except Exception:
                stats.failed += 1
                logger.exception(
                    f"generation_cycle: template_id={template_id} as_of={as_of} failed"
                )
                continue
            if outcome is None:
                stats.expired += 1
            else:
                stats.created += outcome[0]
                stats.duplicates += outcome[1]
        self.last_cycle = stats
        logger.info(
            f"generation_cycle: as_of={as_of} templates={stats.templates} "
            f"created={stats.created} duplicates={stats.duplicates} "
            f"expired={stats.expired} failed={stats.failed}"
        )

    def _generate_for_template(
        self, template: Expense, as_of: date
    ) -> Optional[tuple[int, int]]:
        """Insert the template's due instances; ``None`` if it has expired."""
        instances = self.repository.find_by_parent(template.id)
        due = project_due(template, instances, as_of, strict=self.strict)
        if due.expired:
            return None
        created = duplicates = 0
        for due_date in due:
            instance = materialize_instance(template, due_date)
            if self.repository.insert_unless_duplicate(instance) is None:
                duplicates += 1
            else:
                created += 1
        return created, duplicates
