from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from database import Base, build_engine
from errors import StorageFailure
from models import Expense, Frequency, Income, RecurringTemplate, TransactionType
from recurrence import RecurrenceEngine
from schedule import next_occurrence
from seed import DEFAULT_ACCOUNT_ID, seed_reference_data
from stores import SqlLedgerStore, SqlRecurringTemplateStore

NOW = datetime(2025, 10, 20, 9, 0)


def _session() -> Session:
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = Session(engine)
    seed_reference_data(session)
    return session


def _engine(session: Session, ledger=None) -> RecurrenceEngine:
    return RecurrenceEngine(
        SqlRecurringTemplateStore(session), ledger or SqlLedgerStore(session)
    )


def _template(session: Session, **overrides) -> RecurringTemplate:
    values = dict(
        transaction_type=TransactionType.expense,
        amount_minor=150000,
        category_id=3,
        description="Rent",
        frequency=Frequency.monthly,
        next_date=datetime(2025, 1, 15, 9, 0),
        last_processed=datetime(2024, 12, 15, 9, 0),
    )
    values.update(overrides)
    template = RecurringTemplate(**values)
    session.add(template)
    session.commit()
    return template


def _expense_dates(session: Session) -> list[datetime]:
    return list(session.scalars(select(Expense.date).order_by(Expense.date)).all())


def test_catch_up_is_bounded_to_three_months() -> None:
    with _session() as session:
        template = _template(session)

        report = _engine(session).process_all(NOW)

        assert _expense_dates(session) == [
            datetime(2025, 8, 15, 9, 0),
            datetime(2025, 9, 15, 9, 0),
            datetime(2025, 10, 15, 9, 0),
        ]
        assert len(report.created) == 3
        assert report.failures == []
        session.refresh(template)
        assert template.next_date == datetime(2025, 11, 20, 9, 0)
        assert template.last_processed == NOW


def test_catch_up_aligned_with_now_still_yields_three() -> None:
    with _session() as session:
        last_processed = datetime(2024, 12, 20, 9, 0)
        _template(
            session,
            last_processed=last_processed,
            next_date=next_occurrence(last_processed, Frequency.monthly),
        )

        report = _engine(session).process_all(NOW)

        assert _expense_dates(session) == [
            datetime(2025, 8, 20, 9, 0),
            datetime(2025, 9, 20, 9, 0),
            datetime(2025, 10, 20, 9, 0),
        ]
        assert len(report.created) == 3


def test_template_left_by_a_run_catches_up_three_months_later() -> None:
    with _session() as session:
        template = _template(session)
        engine = _engine(session)
        engine.process_all(datetime(2025, 1, 20, 9, 0))

        report = engine.process_all(datetime(2025, 11, 20, 9, 0))

        session.refresh(template)
        assert [entry.date for entry in report.created] == [
            datetime(2025, 9, 20, 9, 0),
            datetime(2025, 10, 20, 9, 0),
            datetime(2025, 11, 20, 9, 0),
        ]
        assert template.next_date == datetime(2025, 12, 20, 9, 0)


def test_materialized_entry_copies_template_fields() -> None:
    with _session() as session:
        _template(session, next_date=datetime(2025, 10, 15, 9, 0))

        _engine(session).process_all(NOW)

        entry = session.scalars(select(Expense)).one()
        assert entry.amount_minor == 150000
        assert entry.category_id == 3
        assert entry.account_id == DEFAULT_ACCOUNT_ID
        assert entry.description == "Rent"
        assert entry.created_at == NOW
        assert entry.modified_at == NOW


def test_never_run_template_posts_only_its_first_date() -> None:
    with _session() as session:
        first = datetime(2023, 10, 1, 9, 0)
        _template(session, next_date=first, last_processed=None)

        report = _engine(session).process_all(NOW)

        assert _expense_dates(session) == [first]
        assert len(report.created) == 1


def test_second_run_at_same_instant_creates_nothing() -> None:
    with _session() as session:
        _template(session)
        engine = _engine(session)

        engine.process_all(NOW)
        report = engine.process_all(NOW)

        assert report.created == []
        assert report.processed_template_ids == []
        assert len(_expense_dates(session)) == 3


def test_template_not_yet_due_is_untouched() -> None:
    with _session() as session:
        future = datetime(2025, 11, 1, 9, 0)
        template = _template(session, next_date=future)

        report = _engine(session).process_all(NOW)

        assert report.runs == []
        session.refresh(template)
        assert template.next_date == future
        assert template.last_processed == datetime(2024, 12, 15, 9, 0)


def test_daily_template_catches_up_each_missed_day() -> None:
    with _session() as session:
        _template(
            session,
            frequency=Frequency.daily,
            next_date=datetime(2025, 10, 18, 8, 0),
        )

        _engine(session).process_all(NOW)

        assert _expense_dates(session) == [
            datetime(2025, 10, 18, 8, 0),
            datetime(2025, 10, 19, 8, 0),
            datetime(2025, 10, 20, 8, 0),
        ]


def test_income_template_materializes_income() -> None:
    with _session() as session:
        account_id = DEFAULT_ACCOUNT_ID
        _template(
            session,
            transaction_type=TransactionType.income,
            amount_minor=5000000,
            category_id=101,
            account_id=account_id,
            description="Salary",
            next_date=datetime(2025, 10, 1, 9, 0),
        )

        _engine(session).process_all(NOW)

        income = session.scalars(select(Income)).one()
        assert income.amount_minor == 5000000
        assert income.category_id == 101
        assert income.description == "Salary"
        assert session.scalar(select(func.count(Expense.id))) == 0


class FailingSeptemberLedger(SqlLedgerStore):
    def insert_expense(self, entry: Expense) -> Expense:
        if entry.date.month == 9:
            raise StorageFailure("disk full")
        return super().insert_expense(entry)


def test_failed_occurrence_is_reported_and_others_still_post() -> None:
    with _session() as session:
        template = _template(session)
        ledger = FailingSeptemberLedger(session)

        report = _engine(session, ledger).process_all(NOW)

        assert _expense_dates(session) == [
            datetime(2025, 8, 15, 9, 0),
            datetime(2025, 10, 15, 9, 0),
        ]
        assert len(report.failures) == 1
        failure = report.failures[0]
        assert failure.template_id == template.id
        assert failure.occurrence == datetime(2025, 9, 15, 9, 0)
        assert "disk full" in failure.reason
        session.refresh(template)
        assert template.next_date == datetime(2025, 11, 20, 9, 0)


def test_materialized_entries_are_independent_of_template() -> None:
    with _session() as session:
        template = _template(session, next_date=datetime(2025, 10, 15, 9, 0))
        _engine(session).process_all(NOW)

        entry = session.scalars(select(Expense)).one()
        entry.amount_minor = 1
        session.commit()
        session.refresh(template)
        assert template.amount_minor == 150000

        SqlRecurringTemplateStore(session).delete(template)
        session.commit()
        assert session.scalar(select(func.count(Expense.id))) == 1


def test_missed_occurrences_without_storage() -> None:
    engine = RecurrenceEngine(templates=None, ledger=None, catch_up_months=3)
    template = RecurringTemplate(
        transaction_type=TransactionType.expense,
        amount_minor=100,
        frequency=Frequency.weekly,
        next_date=datetime(2025, 10, 6, 9, 0),
        last_processed=datetime(2025, 9, 29, 9, 0),
    )

    assert engine.missed_occurrences(template, NOW) == [
        datetime(2025, 10, 6, 9, 0),
        datetime(2025, 10, 13, 9, 0),
        datetime(2025, 10, 20, 9, 0),
    ]
    assert engine.missed_occurrences(template, datetime(2025, 10, 1)) == []
