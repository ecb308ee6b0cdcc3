"""Storage collaborators used by the recurrence engine and integrity policy.

The protocols describe the narrow contracts the core relies on. The ``Sql*``
classes implement them over a SQLAlchemy session and translate driver errors
into :class:`errors.StorageFailure`.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional, Protocol, Sequence, Union

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import StorageFailure
from models import (
    ENTRY_MODELS,
    Expense,
    Income,
    RecurringTemplate,
    TransactionType,
    transaction_tags,
)

LedgerEntry = Union[Expense, Income]


@dataclass
class EntryFilters:
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    category_id: Optional[int] = None
    account_id: Optional[int] = None
    tag_id: Optional[int] = None
    query: Optional[str] = None


class RecurringTemplateStore(Protocol):
    def find_due(self, before: datetime) -> Sequence[RecurringTemplate]: ...

    def get(self, template_id: int) -> Optional[RecurringTemplate]: ...

    def save(self, template: RecurringTemplate) -> RecurringTemplate: ...

    def delete(self, template: RecurringTemplate) -> None: ...

    def commit(self) -> None: ...


class LedgerStore(Protocol):
    def insert_expense(self, entry: Expense) -> Expense: ...

    def insert_income(self, entry: Income) -> Income: ...

    def reassign_account(self, old_id: int, new_id: int, timestamp: datetime) -> int: ...

    def nullify_category(self, category_id: int, timestamp: datetime) -> int: ...

    def count_by_category(self, category_id: int) -> int: ...

    def count_by_account(self, account_id: int) -> int: ...

    def spent_between(
        self, start: datetime, end: datetime, category_id: Optional[int] = None
    ) -> int: ...

    def list_entries(
        self,
        entry_type: TransactionType,
        filters: EntryFilters,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[LedgerEntry]: ...

    def total_between(
        self,
        entry_type: TransactionType,
        start: datetime,
        end: datetime,
        category_id: Optional[int] = None,
    ) -> int: ...

    def totals_by_category(
        self, entry_type: TransactionType, start: datetime, end: datetime
    ) -> list[tuple[Optional[int], int]]: ...


class TagAssociationStore(Protocol):
    def add(self, entry_id: int, entry_type: TransactionType, tag_id: int) -> None: ...

    def tag_ids_for_entry(self, entry_id: int, entry_type: TransactionType) -> list[int]: ...

    def delete_all_for_entry(self, entry_id: int, entry_type: TransactionType) -> int: ...

    def delete_all_for_tag(self, tag_id: int) -> int: ...


class _SqlStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            raise StorageFailure(f"{action} failed: {exc}") from exc

    def commit(self) -> None:
        with self._guard("commit"):
            self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


class SqlRecurringTemplateStore(_SqlStore):
    def find_due(self, before: datetime) -> Sequence[RecurringTemplate]:
        stmt = (
            select(RecurringTemplate)
            .where(RecurringTemplate.next_date <= before)
            .order_by(RecurringTemplate.next_date, RecurringTemplate.id)
        )
        with self._guard("find_due"):
            return self.session.scalars(stmt).all()

    def list_all(self) -> Sequence[RecurringTemplate]:
        stmt = select(RecurringTemplate).order_by(
            RecurringTemplate.next_date, RecurringTemplate.id
        )
        with self._guard("list_all"):
            return self.session.scalars(stmt).all()

    def get(self, template_id: int) -> Optional[RecurringTemplate]:
        with self._guard("get"):
            return self.session.get(RecurringTemplate, template_id)

    def save(self, template: RecurringTemplate) -> RecurringTemplate:
        with self._guard("save"):
            self.session.add(template)
            self.session.flush()
        return template

    def delete(self, template: RecurringTemplate) -> None:
        with self._guard("delete"):
            self.session.delete(template)
            self.session.flush()


class SqlLedgerStore(_SqlStore):
    def _insert(self, entry: LedgerEntry) -> LedgerEntry:
        # Each entry gets its own savepoint so one bad row does not poison
        # the surrounding transaction.
        with self._guard(f"insert {entry.entry_type.value}"):
            with self.session.begin_nested():
                self.session.add(entry)
                self.session.flush()
        return entry

    def insert_expense(self, entry: Expense) -> Expense:
        return self._insert(entry)

    def insert_income(self, entry: Income) -> Income:
        return self._insert(entry)

    def get(self, entry_id: int, entry_type: TransactionType) -> Optional[LedgerEntry]:
        with self._guard("get"):
            return self.session.get(ENTRY_MODELS[entry_type], entry_id)

    def delete(self, entry: LedgerEntry) -> None:
        with self._guard("delete"):
            self.session.delete(entry)
            self.session.flush()

    def reassign_account(self, old_id: int, new_id: int, timestamp: datetime) -> int:
        moved = 0
        with self._guard("reassign_account"):
            for model in (Expense, Income):
                result = self.session.execute(
                    update(model)
                    .where(model.account_id == old_id)
                    .values(account_id=new_id, modified_at=timestamp)
                )
                moved += result.rowcount or 0
        return moved

    def nullify_category(self, category_id: int, timestamp: datetime) -> int:
        cleared = 0
        with self._guard("nullify_category"):
            for model in (Expense, Income):
                result = self.session.execute(
                    update(model)
                    .where(model.category_id == category_id)
                    .values(category_id=None, modified_at=timestamp)
                )
                cleared += result.rowcount or 0
        return cleared

    def _count(self, column_name: str, value: int) -> int:
        total = 0
        with self._guard(f"count_by_{column_name}"):
            for model in (Expense, Income):
                column = getattr(model, column_name)
                total += self.session.execute(
                    select(func.count(model.id)).where(column == value)
                ).scalar_one()
        return total

    def count_by_category(self, category_id: int) -> int:
        return self._count("category_id", category_id)

    def count_by_account(self, account_id: int) -> int:
        return self._count("account_id", account_id)

    def list_entries(
        self,
        entry_type: TransactionType,
        filters: EntryFilters,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[LedgerEntry]:
        model = ENTRY_MODELS[entry_type]
        stmt = select(model).order_by(model.date.desc(), model.id.desc())
        if filters.start is not None:
            stmt = stmt.where(model.date >= filters.start)
        if filters.end is not None:
            stmt = stmt.where(model.date < filters.end)
        if filters.category_id is not None:
            stmt = stmt.where(model.category_id == filters.category_id)
        if filters.account_id is not None:
            stmt = stmt.where(model.account_id == filters.account_id)
        if filters.query:
            like = f"%{filters.query.lower()}%"
            stmt = stmt.where(func.lower(model.description).like(like))
        if filters.tag_id is not None:
            stmt = stmt.join(
                transaction_tags,
                and_(
                    transaction_tags.c.transaction_id == model.id,
                    transaction_tags.c.transaction_type == entry_type,
                ),
            ).where(transaction_tags.c.tag_id == filters.tag_id)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        with self._guard("list_entries"):
            return list(self.session.scalars(stmt).all())

    def total_between(
        self,
        entry_type: TransactionType,
        start: datetime,
        end: datetime,
        category_id: Optional[int] = None,
    ) -> int:
        model = ENTRY_MODELS[entry_type]
        stmt = select(func.coalesce(func.sum(model.amount_minor), 0)).where(
            model.date >= start, model.date < end
        )
        if category_id is not None:
            stmt = stmt.where(model.category_id == category_id)
        with self._guard("total_between"):
            return int(self.session.execute(stmt).scalar_one())

    def spent_between(
        self, start: datetime, end: datetime, category_id: Optional[int] = None
    ) -> int:
        return self.total_between(TransactionType.expense, start, end, category_id)

    def totals_by_category(
        self, entry_type: TransactionType, start: datetime, end: datetime
    ) -> list[tuple[Optional[int], int]]:
        """Per-category sums for ``[start, end)``, largest first.

        Uncategorized entries are grouped under ``None``.
        """
        model = ENTRY_MODELS[entry_type]
        total = func.sum(model.amount_minor).label("total")
        stmt = (
            select(model.category_id, total)
            .where(model.date >= start, model.date < end)
            .group_by(model.category_id)
            .order_by(total.desc(), model.category_id)
        )
        with self._guard("totals_by_category"):
            return [
                (category_id, int(amount))
                for category_id, amount in self.session.execute(stmt).all()
            ]


class SqlTagAssociationStore(_SqlStore):
    def add(self, entry_id: int, entry_type: TransactionType, tag_id: int) -> None:
        if tag_id in self.tag_ids_for_entry(entry_id, entry_type):
            return
        with self._guard("add tag"):
            self.session.execute(
                insert(transaction_tags).values(
                    transaction_id=entry_id,
                    transaction_type=entry_type,
                    tag_id=tag_id,
                )
            )

    def tag_ids_for_entry(self, entry_id: int, entry_type: TransactionType) -> list[int]:
        stmt = (
            select(transaction_tags.c.tag_id)
            .where(
                transaction_tags.c.transaction_id == entry_id,
                transaction_tags.c.transaction_type == entry_type,
            )
            .order_by(transaction_tags.c.tag_id)
        )
        with self._guard("tag_ids_for_entry"):
            return list(self.session.scalars(stmt).all())

    def delete_all_for_entry(self, entry_id: int, entry_type: TransactionType) -> int:
        with self._guard("delete tags for entry"):
            result = self.session.execute(
                delete(transaction_tags).where(
                    transaction_tags.c.transaction_id == entry_id,
                    transaction_tags.c.transaction_type == entry_type,
                )
            )
        return result.rowcount or 0

    def delete_all_for_tag(self, tag_id: int) -> int:
        with self._guard("delete tags for tag"):
            result = self.session.execute(
                delete(transaction_tags).where(transaction_tags.c.tag_id == tag_id)
            )
        return result.rowcount or 0
