from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

import repository
import services
from database import Base
from models import Expense
from recurrence import RecurringEngine
from repository import ExpenseRepository
from schemas import ExpenseIn, RecurringTemplateIn
from services import ExpenseService, RecurringTemplateService


def _expense(**overrides) -> ExpenseIn:
    fields = dict(
        date=date(2024, 3, 2),
        category="Food",
        sub_category="Groceries",
        description="Weekly shop",
        amount=Decimal("54.20"),
    )
    fields.update(overrides)
    return ExpenseIn(**fields)


def _total(session: Session) -> int:
    return session.execute(select(func.count(Expense.id))).scalar_one()


def test_adding_same_expense_twice_stores_one_record() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = ExpenseService(session)
        first = service.add(_expense())
        second = service.add(_expense())

        assert first is not None and first.id is not None
        assert second is None
        assert _total(session) == 1
        assert service.is_duplicate(_expense())


def test_missing_sub_category_only_matches_missing() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = ExpenseService(session)
        assert service.add(_expense(sub_category=None)) is not None
        assert service.add(_expense(sub_category="Groceries")) is not None
        assert service.add(_expense(sub_category="  ")) is None
        assert _total(session) == 2


def test_any_field_difference_is_not_a_duplicate() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = ExpenseService(session)
        service.add(_expense())
        assert not service.is_duplicate(_expense(amount=Decimal("54.21")))
        assert not service.is_duplicate(_expense(date=date(2024, 3, 3)))
        assert not service.is_duplicate(_expense(description="weekly shop"))
        assert not service.is_duplicate(_expense(category="Food & Drink"))


def test_template_collides_with_identical_expense() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        ExpenseService(session).add(_expense())
        template = RecurringTemplateService(session).create(
            RecurringTemplateIn(**_expense().model_dump(), recurrence_type="MONTHLY")
        )
        assert template is None


def test_unique_index_backstop_reports_duplicate(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        ExpenseService(session).add(_expense(sub_category=None))

        # Simulate a concurrent writer slipping in after the dedup check.
        monkeypatch.setattr(
            repository.ExpenseRepository, "find_duplicate", lambda self, *a, **kw: None
        )
        assert ExpenseService(session).add(_expense(sub_category=None)) is None
        session.commit()
        assert _total(session) == 1


def test_update_keeps_id_and_replaces_fields() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = ExpenseService(session)
        original = service.add(_expense())
        updated = service.update(
            original.id, _expense(amount=Decimal("-12.50"), description="Refund")
        )

        assert updated.id == original.id
        assert updated.amount == Decimal("-12.50")
        assert updated.description == "Refund"
        assert _total(session) == 1


def test_update_onto_another_record_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = ExpenseService(session)
        service.add(_expense())
        other = service.add(_expense(description="Bakery"))

        assert service.update(other.id, _expense()) is None
        assert service.get(other.id).description == "Bakery"
        # Re-saving unchanged values is not a collision with itself.
        assert service.update(other.id, _expense(description="Bakery")) is not None


def test_import_batch_counts_skipped_duplicates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = ExpenseService(session)
        service.add(_expense(description="Cinema"))

        summary = service.import_batch(
            [
                _expense(description="Lunch"),
                _expense(description="Cinema"),
                _expense(description="Dinner"),
            ]
        )
        assert (summary.imported, summary.skipped, summary.failed) == (2, 1, 0)
        assert _total(session) == 3


def test_import_batch_isolates_persistence_failures(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    original = ExpenseRepository.insert_unless_duplicate

    def flaky_insert(self, expense):
        if expense.description == "Broken":
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))
        return original(self, expense)

    monkeypatch.setattr(ExpenseRepository, "insert_unless_duplicate", flaky_insert)

    with Session(engine) as session:
        summary = ExpenseService(session).import_batch(
            [
                _expense(description="Lunch"),
                _expense(description="Broken"),
                _expense(description="Lunch"),
                _expense(description="Dinner"),
            ]
        )
        assert (summary.imported, summary.skipped, summary.failed) == (2, 1, 1)
        assert _total(session) == 2


def test_deleting_template_keeps_generated_instances() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        templates = RecurringTemplateService(session)
        template = templates.create(
            RecurringTemplateIn(
                date=date(2024, 1, 1),
                category="Subscriptions",
                description="Streaming",
                amount=Decimal("9.99"),
                recurrence_type="MONTHLY",
            )
        )
        RecurringEngine(session, strict=False).run_generation_cycle(date(2024, 3, 1))
        session.commit()

        template_id = template.id
        templates.delete(template_id)

        leftovers = ExpenseRepository(session).find_by_parent(template_id)
        assert [e.date for e in leftovers] == [date(2024, 2, 1), date(2024, 3, 1)]
        assert templates.list() == []


def test_template_update_replaces_recurrence_fields() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        templates = RecurringTemplateService(session)
        payload = dict(
            date=date(2024, 1, 1),
            category="Insurance",
            description="Car",
            amount=Decimal("420.00"),
        )
        template = templates.create(RecurringTemplateIn(**payload))
        assert template.recurrence_type == "MONTHLY"
        assert template.recurrence_interval == 1

        updated = templates.update(
            template.id,
            RecurringTemplateIn(
                **payload,
                recurrence_type="yearly",
                recurrence_end_date=date(2030, 1, 1),
            ),
        )
        assert updated.id == template.id
        assert updated.is_recurring is True
        assert updated.recurrence_type == "YEARLY"
        assert updated.recurrence_end_date == date(2030, 1, 1)


def test_run_generation_cycle_commits_and_reports() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        templates = RecurringTemplateService(session)
        template = templates.create(
            RecurringTemplateIn(
                date=date(2024, 1, 15),
                category="Rent",
                description="Flat",
                amount=Decimal("1000"),
                recurrence_interval=1,
            )
        )
        stats = templates.run_generation_cycle(date(2024, 4, 1))
        assert stats.created == 2

        instances = templates.instances(template.id)
        assert [i.date for i in instances] == [date(2024, 2, 15), date(2024, 3, 15)]
        assert all(i.parent_expense_id == template.id for i in instances)


def test_non_dedup_integrity_errors_propagate() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = ExpenseRepository(session)
        broken = Expense(
            date=date(2024, 5, 1),
            category="Gym",
            description="Membership",
            amount_cents=2_999,
            is_recurring=True,
            recurrence_type="MONTHLY",
            recurrence_interval=0,
        )
        with pytest.raises(IntegrityError):
            store.insert_unless_duplicate(broken)

        # The savepoint rolled back; the session keeps working.
        valid = Expense(
            date=date(2024, 5, 1),
            category="Gym",
            description="Membership",
            amount_cents=2_999,
        )
        assert store.insert_unless_duplicate(valid) is not None
        session.commit()
        assert _total(session) == 1


def test_import_batch_counts_constraint_violations_as_failed(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    build = services._expense_from

    def with_bad_interval(data):
        expense = build(data)
        if data.description == "Broken":
            expense.recurrence_interval = 0
        return expense

    monkeypatch.setattr(services, "_expense_from", with_bad_interval)

    with Session(engine) as session:
        summary = ExpenseService(session).import_batch(
            [_expense(description="Lunch"), _expense(description="Broken")]
        )
        assert (summary.imported, summary.skipped, summary.failed) == (1, 0, 1)
        assert _total(session) == 1
