from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from budgets import BudgetAlert, BudgetCheck, BudgetMonitor, log_budget_alert
from config import get_settings, local_now
from integrity import ReferentialIntegrityPolicy
from models import (
    ENTRY_MODELS,
    Account,
    Budget,
    Category,
    Expense,
    Income,
    RecurringTemplate,
    Tag,
    TransactionType,
)
from recurrence import ProcessingReport, RecurrenceEngine
from schemas import (
    AccountIn,
    BudgetIn,
    CategoryIn,
    EntryIn,
    RecurringTemplateIn,
    TagIn,
)
from schedule import month_bounds
from seed import DEFAULT_ACCOUNT_ID
from stores import (
    EntryFilters,
    SqlLedgerStore,
    SqlRecurringTemplateStore,
    SqlTagAssociationStore,
)

logger = logging.getLogger(__name__)

LedgerEntry = Union[Expense, Income]


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, type: Optional[TransactionType] = None) -> list[Category]:
        stmt = select(Category).order_by(
            Category.type, Category.sort_order, Category.name
        )
        if type is not None:
            stmt = stmt.where(Category.type == type)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise ValueError("Category not found")
        return category

    def _name_taken(
        self, type: TransactionType, name: str, exclude_id: Optional[int] = None
    ) -> bool:
        key = name.strip().casefold()
        return any(
            category.name.casefold() == key and category.id != exclude_id
            for category in self.list_all(type)
        )

    def create(self, data: CategoryIn) -> Category:
        if self._name_taken(data.type, data.name):
            raise ValueError("Category with this name already exists")
        category = Category(
            name=data.name.strip(),
            type=data.type,
            icon=data.icon,
            color=data.color,
            is_custom=True,
            sort_order=data.sort_order,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def rename(self, category_id: int, name: str) -> Category:
        category = self.get(category_id)
        if not name.strip():
            raise ValueError("Category name cannot be empty")
        if self._name_taken(category.type, name, exclude_id=category.id):
            raise ValueError("Category with this name already exists")
        category.name = name.strip()
        self.session.commit()
        return category

    def delete(self, category_id: int, now: Optional[datetime] = None) -> None:
        ReferentialIntegrityPolicy(self.session).delete_category(
            category_id, now or local_now()
        )


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Account]:
        stmt = select(Account).order_by(Account.sort_order, Account.name)
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise ValueError("Account not found")
        return account

    def create(self, data: AccountIn, now: Optional[datetime] = None) -> Account:
        key = data.name.strip().casefold()
        if any(account.name.casefold() == key for account in self.list_all()):
            raise ValueError("Account with this name already exists")
        now = now or local_now()
        account = Account(
            name=data.name.strip(),
            type=data.type,
            icon=data.icon,
            color=data.color,
            is_custom=True,
            sort_order=data.sort_order,
            created_at=now,
            modified_at=now,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def transaction_count(self, account_id: int) -> int:
        return SqlLedgerStore(self.session).count_by_account(account_id)

    def delete(
        self,
        account_id: int,
        replacement_account_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        return ReferentialIntegrityPolicy(self.session).delete_account(
            account_id, replacement_account_id, now or local_now()
        )


class TagService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Tag]:
        return self.session.scalars(select(Tag).order_by(Tag.name)).all()

    def _find(self, name: str) -> Optional[Tag]:
        return self.session.scalar(
            select(Tag).where(Tag.name_key == Tag.key_for(name))
        )

    def get_or_create(self, name: str) -> Tag:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Tag name cannot be empty")
        existing = self._find(clean_name)
        if existing:
            return existing
        tag = Tag(name=clean_name)
        self.session.add(tag)
        self.session.flush()
        return tag

    def create(self, data: TagIn) -> Tag:
        clean_name = data.name.strip()
        if not clean_name:
            raise ValueError("Tag name cannot be empty")
        if self._find(clean_name):
            raise ValueError("Tag already exists")
        tag = Tag(name=clean_name, color=data.color)
        self.session.add(tag)
        self.session.commit()
        self.session.refresh(tag)
        return tag

    def tags_for_entry(self, entry_id: int, entry_type: TransactionType) -> list[Tag]:
        tag_ids = SqlTagAssociationStore(self.session).tag_ids_for_entry(
            entry_id, entry_type
        )
        if not tag_ids:
            return []
        return self.session.scalars(
            select(Tag).where(Tag.id.in_(tag_ids)).order_by(Tag.name)
        ).all()

    def delete(self, tag_id: int) -> None:
        ReferentialIntegrityPolicy(self.session).delete_tag(tag_id)


class LedgerService:
    def __init__(
        self,
        session: Session,
        notifier: Callable[[BudgetAlert], None] = log_budget_alert,
    ) -> None:
        self.session = session
        self.store = SqlLedgerStore(session)
        self.tags = SqlTagAssociationStore(session)
        self.notifier = notifier

    def _validate_refs(self, data: EntryIn) -> int:
        if data.category_id is not None:
            category = self.session.get(Category, data.category_id)
            if not category:
                raise ValueError("Category not found")
            if category.type != data.type:
                raise ValueError("Category type mismatch")
        account_id = data.account_id or DEFAULT_ACCOUNT_ID
        if self.session.get(Account, account_id) is None:
            raise ValueError("Account not found")
        return account_id

    def _attach_tags(
        self, entry_id: int, entry_type: TransactionType, names: list[str]
    ) -> None:
        tag_service = TagService(self.session)
        for name in names:
            tag = tag_service.get_or_create(name)
            self.tags.add(entry_id, entry_type, tag.id)

    def create(self, data: EntryIn, now: Optional[datetime] = None) -> LedgerEntry:
        now = now or local_now()
        account_id = self._validate_refs(data)
        model = ENTRY_MODELS[data.type]
        entry = model(
            amount_minor=data.amount_minor,
            category_id=data.category_id,
            account_id=account_id,
            date=data.date,
            description=data.description,
            created_at=now,
            modified_at=now,
        )
        if data.type == TransactionType.expense:
            self.store.insert_expense(entry)
        else:
            self.store.insert_income(entry)
        self._attach_tags(entry.id, data.type, data.tags)
        self.store.commit()
        if data.type == TransactionType.expense:
            self.check_budgets(entry)
        return entry

    def get(self, entry_id: int, entry_type: TransactionType) -> LedgerEntry:
        entry = self.store.get(entry_id, entry_type)
        if not entry:
            raise ValueError(f"{entry_type.value.capitalize()} not found")
        return entry

    def update(
        self,
        entry_id: int,
        data: EntryIn,
        now: Optional[datetime] = None,
    ) -> LedgerEntry:
        entry = self.get(entry_id, data.type)
        account_id = self._validate_refs(data)
        entry.amount_minor = data.amount_minor
        entry.category_id = data.category_id
        entry.account_id = account_id
        entry.date = data.date
        entry.description = data.description
        entry.modified_at = now or local_now()
        self.tags.delete_all_for_entry(entry.id, data.type)
        self._attach_tags(entry.id, data.type, data.tags)
        self.store.commit()
        if data.type == TransactionType.expense:
            self.check_budgets(entry)
        return entry

    def list(
        self,
        entry_type: TransactionType,
        filters: Optional[EntryFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[LedgerEntry]:
        return self.store.list_entries(
            entry_type, filters or EntryFilters(), limit=limit, offset=offset
        )

    def month_summary(
        self, entry_type: TransactionType, year: int, month: int
    ) -> dict[str, object]:
        start, end = month_bounds(year, month)
        return {
            "total_minor": self.store.total_between(entry_type, start, end),
            "by_category": [
                {"category_id": category_id, "total_minor": total}
                for category_id, total in self.store.totals_by_category(
                    entry_type, start, end
                )
            ],
        }

    def delete(self, entry_id: int, entry_type: TransactionType) -> None:
        ReferentialIntegrityPolicy(self.session, self.store, self.tags).delete_entry(
            entry_id, entry_type
        )

    def check_budgets(self, entry: Expense) -> list[BudgetCheck]:
        monitor = BudgetMonitor(self.session, self.notifier, self.store)
        return monitor.check_for_date(entry.date, entry.category_id)


class RecurringTemplateService:
    def __init__(
        self,
        session: Session,
        notifier: Callable[[BudgetAlert], None] = log_budget_alert,
    ) -> None:
        self.session = session
        self.store = SqlRecurringTemplateStore(session)
        self.notifier = notifier

    def list(self) -> list[RecurringTemplate]:
        return list(self.store.list_all())

    def get(self, template_id: int) -> RecurringTemplate:
        template = self.store.get(template_id)
        if not template:
            raise ValueError("Recurring template not found")
        return template

    def _validate(self, data: RecurringTemplateIn) -> None:
        if data.category_id is not None:
            category = self.session.get(Category, data.category_id)
            if not category:
                raise ValueError("Category not found")
            if category.type != data.transaction_type:
                raise ValueError("Category type mismatch")
        if data.account_id is not None:
            if self.session.get(Account, data.account_id) is None:
                raise ValueError("Account not found")

    def create(self, data: RecurringTemplateIn) -> RecurringTemplate:
        self._validate(data)
        template = RecurringTemplate(**data.model_dump(), last_processed=None)
        self.store.save(template)
        self.store.commit()
        return template

    def update(self, template_id: int, data: RecurringTemplateIn) -> RecurringTemplate:
        template = self.get(template_id)
        self._validate(data)
        # Schedule state belongs to the engine once the template has run.
        payload = data.model_dump()
        if template.last_processed is not None:
            payload.pop("next_date")
        for field, value in payload.items():
            setattr(template, field, value)
        self.store.save(template)
        self.store.commit()
        return template

    def delete(self, template_id: int) -> None:
        template = self.get(template_id)
        self.store.delete(template)
        self.store.commit()

    def engine(self) -> RecurrenceEngine:
        return RecurrenceEngine(
            self.store,
            SqlLedgerStore(self.session),
            catch_up_months=get_settings().catch_up_months,
        )

    def process_due(self, now: Optional[datetime] = None) -> ProcessingReport:
        now = now or local_now()
        report = self.engine().process_all(now)
        if report.failures:
            logger.warning(
                f"recurring_process: now={now.isoformat()} "
                f"failed_occurrences={len(report.failures)}"
            )
        monitor = BudgetMonitor(self.session, self.notifier)
        checked: set[tuple[int, int]] = set()
        for entry in report.created:
            if not isinstance(entry, Expense):
                continue
            month = (entry.date.year, entry.date.month)
            if month in checked:
                continue
            checked.add(month)
            monitor.check_month(*month)
        return report


class BudgetService:
    def __init__(
        self,
        session: Session,
        notifier: Callable[[BudgetAlert], None] = log_budget_alert,
    ) -> None:
        self.session = session
        self.notifier = notifier

    def list_for_month(self, year: int, month: int) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.year == year, Budget.month == month)
            .order_by(Budget.category_id.is_(None).desc(), Budget.category_id)
        )
        return self.session.scalars(stmt).all()

    def upsert(self, data: BudgetIn, now: Optional[datetime] = None) -> Budget:
        if data.category_id is not None:
            category = self.session.get(Category, data.category_id)
            if not category:
                raise ValueError("Category not found")
            if category.type != TransactionType.expense:
                raise ValueError("Budgets can only be set for expense categories")

        stmt = select(Budget).where(
            Budget.year == data.year,
            Budget.month == data.month,
            Budget.category_id.is_(None)
            if data.category_id is None
            else Budget.category_id == data.category_id,
        )
        now = now or local_now()
        budget = self.session.scalar(stmt)
        if budget:
            budget.amount_minor = data.amount_minor
            budget.modified_at = now
        else:
            budget = Budget(
                year=data.year,
                month=data.month,
                category_id=data.category_id,
                amount_minor=data.amount_minor,
                created_at=now,
                modified_at=now,
            )
            self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.session.get(Budget, budget_id)
        if not budget:
            raise ValueError("Budget not found")
        self.session.delete(budget)
        self.session.commit()

    def progress_for_month(
        self, year: int, month: int
    ) -> dict[Optional[int], dict[str, int]]:
        monitor = BudgetMonitor(self.session, self.notifier)
        progress: dict[Optional[int], dict[str, int]] = {}
        for check in monitor.check_month(year, month):
            progress[check.budget.category_id] = {
                "budget_id": check.budget.id,
                "cap_minor": check.budget.amount_minor,
                "spent_minor": check.spent_minor,
                "remaining_minor": check.remaining_minor,
                "basis_points": check.basis_points,
            }
        return progress
