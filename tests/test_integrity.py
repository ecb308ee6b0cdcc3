from datetime import datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from database import Base, build_engine
from errors import PolicyViolation, StorageFailure
from integrity import ReferentialIntegrityPolicy
from models import (
    Account,
    AccountType,
    Budget,
    Category,
    Expense,
    Frequency,
    Income,
    RecurringTemplate,
    TransactionType,
)
from seed import DEFAULT_ACCOUNT_ID, MISC_EXPENSE_CATEGORY_ID, seed_reference_data
from stores import SqlLedgerStore

NOW = datetime(2025, 10, 20, 9, 0)
EARLIER = datetime(2025, 10, 1, 9, 0)


def _session() -> Session:
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = Session(engine)
    seed_reference_data(session)
    return session


def _account(session: Session, name: str) -> Account:
    account = Account(name=name, type=AccountType.card, icon="card")
    session.add(account)
    session.commit()
    return account


def _expense(session: Session, **overrides) -> Expense:
    values = dict(
        amount_minor=1000,
        category_id=1,
        account_id=DEFAULT_ACCOUNT_ID,
        date=EARLIER,
        created_at=EARLIER,
        modified_at=EARLIER,
    )
    values.update(overrides)
    entry = Expense(**values)
    session.add(entry)
    session.commit()
    return entry


def test_account_delete_without_replacement_is_rejected() -> None:
    with _session() as session:
        card = _account(session, "Credit Card")
        entry = _expense(session, account_id=card.id)

        with pytest.raises(PolicyViolation):
            ReferentialIntegrityPolicy(session).delete_account(card.id, None, NOW)

        assert session.get(Account, card.id) is not None
        session.refresh(entry)
        assert entry.account_id == card.id


def test_account_delete_reassigns_entries_and_templates() -> None:
    with _session() as session:
        card = _account(session, "Credit Card")
        wallet = _account(session, "Wallet")
        expense = _expense(session, account_id=card.id)
        income = Income(
            amount_minor=500,
            category_id=101,
            account_id=card.id,
            date=EARLIER,
            created_at=EARLIER,
            modified_at=EARLIER,
        )
        template = RecurringTemplate(
            transaction_type=TransactionType.expense,
            amount_minor=100,
            account_id=card.id,
            frequency=Frequency.monthly,
            next_date=NOW,
        )
        session.add_all([income, template])
        session.commit()

        moved = ReferentialIntegrityPolicy(session).delete_account(
            card.id, wallet.id, NOW
        )

        assert moved == 2
        assert session.get(Account, card.id) is None
        for row in (expense, income, template):
            session.refresh(row)
            assert row.account_id == wallet.id
        assert expense.modified_at == NOW
        assert income.modified_at == NOW


@pytest.mark.parametrize("replacement", [DEFAULT_ACCOUNT_ID, None])
def test_default_account_cannot_be_deleted(replacement) -> None:
    with _session() as session:
        _account(session, "Wallet")
        with pytest.raises(PolicyViolation):
            ReferentialIntegrityPolicy(session).delete_account(
                DEFAULT_ACCOUNT_ID, replacement, NOW
            )
        assert session.get(Account, DEFAULT_ACCOUNT_ID) is not None


def test_replacement_must_exist_and_differ() -> None:
    with _session() as session:
        card = _account(session, "Credit Card")
        policy = ReferentialIntegrityPolicy(session)

        with pytest.raises(PolicyViolation):
            policy.delete_account(card.id, card.id, NOW)
        with pytest.raises(PolicyViolation):
            policy.delete_account(card.id, 999, NOW)
        assert session.get(Account, card.id) is not None


def test_missing_account_is_a_lookup_error() -> None:
    with _session() as session:
        with pytest.raises(ValueError, match="Account not found"):
            ReferentialIntegrityPolicy(session).delete_account(999, 1, NOW)


class BrokenReassignLedger(SqlLedgerStore):
    def reassign_account(self, old_id, new_id, timestamp):
        super().reassign_account(old_id, new_id, timestamp)
        raise StorageFailure("write failed")


def test_failed_reassignment_rolls_back_whole_delete() -> None:
    with _session() as session:
        card = _account(session, "Credit Card")
        entry = _expense(session, account_id=card.id)
        policy = ReferentialIntegrityPolicy(session, BrokenReassignLedger(session))

        with pytest.raises(StorageFailure):
            policy.delete_account(card.id, DEFAULT_ACCOUNT_ID, NOW)

        assert session.get(Account, card.id) is not None
        session.refresh(entry)
        assert entry.account_id == card.id
        assert entry.modified_at == EARLIER


def test_category_delete_uncategorizes_references() -> None:
    with _session() as session:
        category = Category(name="Pets", type=TransactionType.expense, icon="pets")
        session.add(category)
        session.commit()
        entry = _expense(session, category_id=category.id)
        template = RecurringTemplate(
            transaction_type=TransactionType.expense,
            amount_minor=100,
            category_id=category.id,
            frequency=Frequency.weekly,
            next_date=NOW,
        )
        budget = Budget(category_id=category.id, amount_minor=5000, month=10, year=2025)
        session.add_all([template, budget])
        session.commit()

        ReferentialIntegrityPolicy(session).delete_category(category.id, NOW)

        assert session.get(Category, category.id) is None
        for row in (entry, template, budget):
            session.refresh(row)
            assert row.category_id is None
        assert entry.modified_at == NOW


def test_category_budget_is_dropped_when_month_has_overall_budget() -> None:
    with _session() as session:
        overall = Budget(category_id=None, amount_minor=90000, month=10, year=2025)
        scoped = Budget(category_id=6, amount_minor=5000, month=10, year=2025)
        other_month = Budget(category_id=6, amount_minor=5000, month=11, year=2025)
        session.add_all([overall, scoped, other_month])
        session.commit()
        scoped_id = scoped.id

        ReferentialIntegrityPolicy(session).delete_category(6, NOW)

        remaining = session.scalars(
            select(Budget).order_by(Budget.year, Budget.month)
        ).all()
        assert scoped_id not in [budget.id for budget in remaining]
        assert [(b.month, b.category_id, b.amount_minor) for b in remaining] == [
            (10, None, 90000),
            (11, None, 5000),
        ]


def test_misc_category_is_protected() -> None:
    with _session() as session:
        with pytest.raises(PolicyViolation):
            ReferentialIntegrityPolicy(session).delete_category(
                MISC_EXPENSE_CATEGORY_ID, NOW
            )
        assert session.get(Category, MISC_EXPENSE_CATEGORY_ID) is not None


def test_entry_counts_per_account() -> None:
    with _session() as session:
        card = _account(session, "Credit Card")
        _expense(session, account_id=card.id)
        _expense(session, account_id=card.id)
        _expense(session)

        store = SqlLedgerStore(session)
        assert store.count_by_account(card.id) == 2
        assert store.count_by_category(1) == 3
        assert session.scalar(select(func.count(Expense.id))) == 3
