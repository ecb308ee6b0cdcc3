from datetime import datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from database import Base, build_engine
from models import Expense, Income, Tag, TransactionType, transaction_tags
from schemas import EntryIn, TagIn
from seed import seed_reference_data
from services import LedgerService, TagService

NOW = datetime(2025, 1, 5, 12, 0)


def _session() -> Session:
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = Session(engine)
    seed_reference_data(session)
    return session


def _entry(session: Session, tags: list[str], type=TransactionType.expense):
    return LedgerService(session, notifier=lambda alert: None).create(
        EntryIn(
            type=type,
            amount_minor=1299,
            category_id=1 if type == TransactionType.expense else 101,
            date=NOW,
            description="Lunch",
            tags=tags,
        ),
        now=NOW,
    )


def _link_count(session: Session) -> int:
    return session.scalar(select(func.count()).select_from(transaction_tags))


def test_deleting_used_tag_clears_associations() -> None:
    with _session() as session:
        entry = _entry(session, ["Dining"])
        tag = TagService(session).list_all()[0]

        TagService(session).delete(tag.id)

        assert TagService(session).tags_for_entry(entry.id, TransactionType.expense) == []
        assert _link_count(session) == 0
        assert session.get(Expense, entry.id) is not None


def test_entry_tag_inputs_are_deduplicated_case_insensitive() -> None:
    with _session() as session:
        entry = _entry(session, ["Dining", "dining", " DINING "])

        tags = TagService(session).tags_for_entry(entry.id, TransactionType.expense)
        assert [tag.name for tag in tags] == ["Dining"]
        assert session.scalar(select(func.count(Tag.id))) == 1


def test_deleting_entry_removes_only_its_associations() -> None:
    with _session() as session:
        doomed = _entry(session, ["Work", "Travel"])
        kept = _entry(session, ["Work"])
        LedgerService(session).delete(doomed.id, TransactionType.expense)

        assert session.get(Expense, doomed.id) is None
        assert _link_count(session) == 1
        tags = TagService(session).tags_for_entry(kept.id, TransactionType.expense)
        assert [tag.name for tag in tags] == ["Work"]
        assert session.scalar(select(func.count(Tag.id))) == 2


def test_same_id_in_other_table_keeps_its_tags() -> None:
    with _session() as session:
        expense = _entry(session, ["Shared"])
        income = _entry(session, ["Shared"], type=TransactionType.income)
        assert expense.id == income.id

        LedgerService(session).delete(expense.id, TransactionType.expense)

        assert session.get(Income, income.id) is not None
        tags = TagService(session).tags_for_entry(income.id, TransactionType.income)
        assert [tag.name for tag in tags] == ["Shared"]


def test_non_ascii_tag_names_fold_to_one_tag() -> None:
    with _session() as session:
        entry = _entry(session, ["Ärger", "ärger"])

        tags = TagService(session).tags_for_entry(entry.id, TransactionType.expense)
        assert [tag.name for tag in tags] == ["Ärger"]
        with pytest.raises(ValueError, match="Tag already exists"):
            TagService(session).create(TagIn(name="ÄRGER"))
        assert session.scalar(select(func.count(Tag.id))) == 1
