"""Explicit delete rules for categories, accounts, tags and ledger entries.

Nothing here relies on ON DELETE actions in the database. Each public method
runs as one unit: rule checks happen before any write, and a storage error
rolls the whole unit back before it is re-raised as ``StorageFailure``.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import PolicyViolation, StorageFailure
from models import (
    ENTRY_MODELS,
    Account,
    Budget,
    Category,
    RecurringTemplate,
    Tag,
    TransactionType,
)
from seed import DEFAULT_ACCOUNT_ID, PROTECTED_CATEGORY_IDS
from stores import (
    LedgerStore,
    SqlLedgerStore,
    SqlTagAssociationStore,
    TagAssociationStore,
)

logger = logging.getLogger(__name__)


class ReferentialIntegrityPolicy:
    def __init__(
        self,
        session: Session,
        ledger: Optional[LedgerStore] = None,
        tags: Optional[TagAssociationStore] = None,
    ) -> None:
        self.session = session
        self.ledger = ledger or SqlLedgerStore(session)
        self.tags = tags or SqlTagAssociationStore(session)

    @contextmanager
    def _unit(self, action: str) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure(f"{action} failed: {exc}") from exc
        except Exception:
            self.session.rollback()
            raise

    def delete_category(self, category_id: int, now: datetime) -> None:
        if category_id in PROTECTED_CATEGORY_IDS:
            raise PolicyViolation("Default categories cannot be deleted")
        category = self.session.get(Category, category_id)
        if not category:
            raise ValueError("Category not found")

        with self._unit("delete_category"):
            cleared = self.ledger.nullify_category(category_id, now)
            self.session.execute(
                update(RecurringTemplate)
                .where(RecurringTemplate.category_id == category_id)
                .values(category_id=None, modified_at=now)
            )
            self._nullify_budgets(category_id, now)
            self.session.delete(category)
            self.session.flush()
        logger.info(
            f"category_deleted: category={category_id} entries_uncategorized={cleared}"
        )

    def _nullify_budgets(self, category_id: int, now: datetime) -> None:
        budgets = self.session.scalars(
            select(Budget).where(Budget.category_id == category_id)
        ).all()
        for budget in budgets:
            overall = self.session.scalar(
                select(Budget.id).where(
                    Budget.category_id.is_(None),
                    Budget.month == budget.month,
                    Budget.year == budget.year,
                )
            )
            if overall is not None:
                # The month already has an overall budget; keep that one.
                self.session.delete(budget)
            else:
                budget.category_id = None
                budget.modified_at = now
            # Flush per budget so the next lookup sees a newly nullified row.
            self.session.flush()

    def delete_account(
        self,
        account_id: int,
        replacement_account_id: Optional[int],
        now: datetime,
    ) -> int:
        if account_id == DEFAULT_ACCOUNT_ID:
            raise PolicyViolation("The default account cannot be deleted")
        if replacement_account_id is None:
            raise PolicyViolation(
                "A replacement account is required to delete an account"
            )
        if replacement_account_id == account_id:
            raise PolicyViolation("Replacement account must differ from the account")
        account = self.session.get(Account, account_id)
        if not account:
            raise ValueError("Account not found")
        if self.session.get(Account, replacement_account_id) is None:
            raise PolicyViolation("Replacement account not found")

        with self._unit("delete_account"):
            moved = self.ledger.reassign_account(
                account_id, replacement_account_id, now
            )
            self.session.execute(
                update(RecurringTemplate)
                .where(RecurringTemplate.account_id == account_id)
                .values(account_id=replacement_account_id, modified_at=now)
            )
            self.session.delete(account)
            self.session.flush()
        logger.info(
            f"account_deleted: account={account_id} "
            f"replacement={replacement_account_id} entries_moved={moved}"
        )
        return moved

    def delete_tag(self, tag_id: int) -> None:
        tag = self.session.get(Tag, tag_id)
        if not tag:
            raise ValueError("Tag not found")
        with self._unit("delete_tag"):
            self.tags.delete_all_for_tag(tag_id)
            self.session.delete(tag)
            self.session.flush()

    def delete_entry(self, entry_id: int, entry_type: TransactionType) -> None:
        model = ENTRY_MODELS[entry_type]
        entry = self.session.get(model, entry_id)
        if not entry:
            raise ValueError(f"{entry_type.value.capitalize()} not found")
        with self._unit("delete_entry"):
            self.tags.delete_all_for_entry(entry_id, entry_type)
            self.session.delete(entry)
            self.session.flush()
