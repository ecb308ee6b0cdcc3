from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import AccountType, Frequency, TransactionType
from money import parse_amount


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType = TransactionType.expense
    icon: str = Field(default="category", max_length=40)
    color: Optional[str] = Field(default=None, max_length=9)
    sort_order: int = 0


class CategoryRename(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType = AccountType.bank
    icon: str = Field(default="bank", max_length=40)
    color: Optional[str] = Field(default=None, max_length=9)
    sort_order: int = 0


class TagIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: Optional[str] = Field(default=None, max_length=9)


class EntryIn(BaseModel):
    type: TransactionType
    amount_minor: int = Field(..., ge=0)
    category_id: Optional[int] = None
    account_id: Optional[int] = None
    date: datetime
    description: str = Field(default="", max_length=200)
    tags: list[str] = Field(default_factory=list)


class EntryForm(BaseModel):
    """Ledger entry as typed by a user, with the amount as a decimal string."""

    model_config = ConfigDict(extra="forbid")

    amount: str
    category_id: Optional[int] = None
    account_id: Optional[int] = None
    date: datetime
    description: str = Field(default="", max_length=200)
    tags: list[str] = Field(default_factory=list)

    def to_entry(self, entry_type: TransactionType) -> EntryIn:
        return EntryIn(
            type=entry_type,
            amount_minor=parse_amount(self.amount),
            category_id=self.category_id,
            account_id=self.account_id,
            date=self.date,
            description=self.description,
            tags=self.tags,
        )


class RecurringTemplateIn(BaseModel):
    transaction_type: TransactionType
    amount_minor: int = Field(..., ge=0)
    category_id: Optional[int] = None
    account_id: Optional[int] = None
    description: str = Field(default="", max_length=200)
    frequency: Frequency
    next_date: datetime


class BudgetIn(BaseModel):
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)
    category_id: Optional[int] = None
    amount_minor: int = Field(..., ge=0)
