from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Account, AccountType, Category, TransactionType

DEFAULT_ACCOUNT_ID = 1
MISC_EXPENSE_CATEGORY_ID = 13
OTHER_INCOME_CATEGORY_ID = 110

PROTECTED_CATEGORY_IDS = frozenset({MISC_EXPENSE_CATEGORY_ID, OTHER_INCOME_CATEGORY_ID})

PREDEFINED_EXPENSE_CATEGORIES = [
    (1, "Food & Dining", "restaurant", "#FF6B6B"),
    (2, "Travel", "flight", "#4ECDC4"),
    (3, "Rent", "home", "#95E1D3"),
    (4, "Utilities", "lightbulb", "#FECA57"),
    (5, "Services", "build", "#48DBFB"),
    (6, "Shopping", "shopping_cart", "#FF9FF3"),
    (7, "Media", "movie", "#54A0FF"),
    (8, "Healthcare", "local_hospital", "#EE5A6F"),
    (9, "Gifts", "card_giftcard", "#C44569"),
    (10, "Education", "school", "#00D2D3"),
    (11, "Investments", "trending_up", "#1DD1A1"),
    (12, "Groceries", "local_grocery_store", "#10AC84"),
    (MISC_EXPENSE_CATEGORY_ID, "Misc", "category", "#9E9E9E"),
]

PREDEFINED_INCOME_CATEGORIES = [
    (101, "Salary", "briefcase", "#2E7D32"),
    (102, "Freelance", "laptop", "#00897B"),
    (103, "Business", "storefront", "#1976D2"),
    (104, "Investments", "trending_up", "#1DD1A1"),
    (105, "Rental", "home", "#7B1FA2"),
    (106, "Interest", "bank", "#E65100"),
    (107, "Gifts", "card_giftcard", "#C44569"),
    (108, "Refund", "receipt", "#00ACC1"),
    (109, "Bonus", "gift", "#F57C00"),
    (OTHER_INCOME_CATEGORY_ID, "Other", "category", "#9E9E9E"),
]


def seed_reference_data(session: Session) -> bool:
    """Insert the predefined categories and the default account once.

    Returns ``False`` when the default account already exists.
    """
    if session.get(Account, DEFAULT_ACCOUNT_ID) is not None:
        return False

    session.add(
        Account(
            id=DEFAULT_ACCOUNT_ID,
            name="My Account",
            type=AccountType.bank,
            icon="bank",
            color="#00BFA5",
            is_custom=False,
            sort_order=1,
        )
    )
    existing = set(session.scalars(select(Category.id)).all())
    for txn_type, rows in (
        (TransactionType.expense, PREDEFINED_EXPENSE_CATEGORIES),
        (TransactionType.income, PREDEFINED_INCOME_CATEGORIES),
    ):
        for order, (category_id, name, icon, color) in enumerate(rows, start=1):
            if category_id in existing:
                continue
            session.add(
                Category(
                    id=category_id,
                    name=name,
                    type=txn_type,
                    icon=icon,
                    color=color,
                    is_custom=False,
                    sort_order=order,
                )
            )
    session.commit()
    return True
