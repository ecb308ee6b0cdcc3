from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from config import local_now
from database import Base


class TransactionType(str, Enum):
    expense = "expense"
    income = "income"


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


class AccountType(str, Enum):
    bank = "bank"
    card = "card"
    wallet = "wallet"
    cash = "cash"
    loan = "loan"
    investment = "investment"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=local_now, nullable=False
    )
    modified_at: Mapped[datetime] = mapped_column(
        DateTime, default=local_now, onupdate=local_now, nullable=False
    )


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False, default=TransactionType.expense
    )
    icon: Mapped[str] = mapped_column(String(40), nullable=False, default="category")
    color: Mapped[Optional[str]] = mapped_column(String(9))
    is_custom: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("type", "name", name="uq_category_type_name"),
        Index("ix_categories_sort_order", "sort_order"),
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    type: Mapped[AccountType] = mapped_column(
        SAEnum(AccountType), nullable=False, default=AccountType.bank
    )
    icon: Mapped[str] = mapped_column(String(40), nullable=False, default="bank")
    color: Mapped[Optional[str]] = mapped_column(String(9))
    is_custom: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    # Casefolded copy of name; SQLite lower() only folds ASCII.
    name_key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    color: Mapped[Optional[str]] = mapped_column(String(9))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=local_now, nullable=False
    )

    @staticmethod
    def key_for(name: str) -> str:
        return name.strip().casefold()

    @validates("name")
    def _sync_name_key(self, _key: str, value: str) -> str:
        self.name_key = Tag.key_for(value)
        return value


# transaction_id points into either expenses or incomes, so it carries no
# foreign key. Rows must be removed explicitly when an entry is deleted.
transaction_tags = Table(
    "transaction_tags",
    Base.metadata,
    Column("transaction_id", Integer, primary_key=True),
    Column("transaction_type", SAEnum(TransactionType), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
    Index("ix_transaction_tags_tag", "tag_id"),
    Index("ix_transaction_tags_entry", "transaction_id", "transaction_type"),
)


class LedgerEntryMixin(TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    amount_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")


class Expense(Base, LedgerEntryMixin):
    __tablename__ = "expenses"

    entry_type = TransactionType.expense

    category: Mapped[Optional["Category"]] = relationship("Category")
    account: Mapped["Account"] = relationship("Account")

    __table_args__ = (
        Index("ix_expenses_date", "date"),
        Index("ix_expenses_category", "category_id"),
        Index("ix_expenses_account", "account_id"),
        CheckConstraint("amount_minor >= 0", name="ck_expenses_amount_positive"),
    )


class Income(Base, LedgerEntryMixin):
    __tablename__ = "incomes"

    entry_type = TransactionType.income

    category: Mapped[Optional["Category"]] = relationship("Category")
    account: Mapped["Account"] = relationship("Account")

    __table_args__ = (
        Index("ix_incomes_date", "date"),
        Index("ix_incomes_category", "category_id"),
        Index("ix_incomes_account", "account_id"),
        CheckConstraint("amount_minor >= 0", name="ck_incomes_amount_positive"),
    )


ENTRY_MODELS: dict[TransactionType, type] = {
    TransactionType.expense: Expense,
    TransactionType.income: Income,
}


class RecurringTemplate(Base, TimestampMixin):
    __tablename__ = "recurring_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    frequency: Mapped[Frequency] = mapped_column(SAEnum(Frequency), nullable=False)
    next_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_processed: Mapped[Optional[datetime]] = mapped_column(DateTime)

    category: Mapped[Optional["Category"]] = relationship("Category")

    __table_args__ = (
        Index("ix_recurring_templates_next_date", "next_date"),
        CheckConstraint("amount_minor >= 0", name="ck_template_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    amount_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    notified_75: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notified_100: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    category: Mapped[Optional["Category"]] = relationship("Category")

    @property
    def is_overall(self) -> bool:
        return self.category_id is None

    __table_args__ = (
        CheckConstraint("amount_minor >= 0", name="ck_budget_amount_positive"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month_range"),
        Index("ix_budgets_month", "year", "month"),
    )


# A plain unique constraint treats NULLs as distinct, so the overall budget
# (category_id IS NULL) needs the coalesced expression.
Index(
    "uq_budget_scope_month",
    func.coalesce(Budget.category_id, -1),
    Budget.month,
    Budget.year,
    unique=True,
)
