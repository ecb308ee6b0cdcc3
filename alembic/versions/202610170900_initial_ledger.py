"""initial ledger schema

Revision ID: 202610170900
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610170900"
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_TYPE = sa.Enum("expense", "income", name="transactiontype")
FREQUENCY = sa.Enum("daily", "weekly", "monthly", name="frequency")
ACCOUNT_TYPE = sa.Enum(
    "bank", "card", "wallet", "cash", "loan", "investment", name="accounttype"
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("modified_at", sa.DateTime(), nullable=False),
    ]


def _ledger_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("amount_minor", sa.Integer(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True
        ),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.CheckConstraint("amount_minor >= 0", name=f"ck_{name}_amount_positive"),
    )
    op.create_index(f"ix_{name}_date", name, ["date"])
    op.create_index(f"ix_{name}_category", name, ["category_id"])
    op.create_index(f"ix_{name}_account", name, ["account_id"])


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("icon", sa.String(length=40), nullable=False),
        sa.Column("color", sa.String(length=9)),
        sa.Column("is_custom", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("type", "name", name="uq_category_type_name"),
    )
    op.create_index("ix_categories_sort_order", "categories", ["sort_order"])

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("type", ACCOUNT_TYPE, nullable=False),
        sa.Column("icon", sa.String(length=40), nullable=False),
        sa.Column("color", sa.String(length=9)),
        sa.Column("is_custom", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=50), nullable=False, unique=True),
        sa.Column("name_key", sa.String(length=100), nullable=False, unique=True),
        sa.Column("color", sa.String(length=9)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    _ledger_table("expenses")
    _ledger_table("incomes")

    op.create_table(
        "transaction_tags",
        sa.Column("transaction_id", sa.Integer(), primary_key=True),
        sa.Column("transaction_type", TRANSACTION_TYPE, primary_key=True),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id"), primary_key=True),
    )
    op.create_index("ix_transaction_tags_tag", "transaction_tags", ["tag_id"])
    op.create_index(
        "ix_transaction_tags_entry",
        "transaction_tags",
        ["transaction_id", "transaction_type"],
    )

    op.create_table(
        "recurring_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_type", TRANSACTION_TYPE, nullable=False),
        sa.Column("amount_minor", sa.Integer(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True
        ),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=True
        ),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("frequency", FREQUENCY, nullable=False),
        sa.Column("next_date", sa.DateTime(), nullable=False),
        sa.Column("last_processed", sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint("amount_minor >= 0", name="ck_template_amount_positive"),
    )
    op.create_index(
        "ix_recurring_templates_next_date", "recurring_templates", ["next_date"]
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True
        ),
        sa.Column("amount_minor", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column(
            "notified_75", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "notified_100", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_minor >= 0", name="ck_budget_amount_positive"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month_range"),
    )
    op.create_index("ix_budgets_month", "budgets", ["year", "month"])

    # Enforce one budget per (scope, month), including the NULL overall scope.
    op.execute(
        "CREATE UNIQUE INDEX uq_budget_scope_month "
        "ON budgets(coalesce(category_id, -1), month, year)"
    )


def downgrade():
    op.drop_index("uq_budget_scope_month", table_name="budgets")
    op.drop_index("ix_budgets_month", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_recurring_templates_next_date", table_name="recurring_templates")
    op.drop_table("recurring_templates")
    op.drop_index("ix_transaction_tags_entry", table_name="transaction_tags")
    op.drop_index("ix_transaction_tags_tag", table_name="transaction_tags")
    op.drop_table("transaction_tags")
    for name in ("incomes", "expenses"):
        op.drop_index(f"ix_{name}_account", table_name=name)
        op.drop_index(f"ix_{name}_category", table_name=name)
        op.drop_index(f"ix_{name}_date", table_name=name)
        op.drop_table(name)
    op.drop_table("tags")
    op.drop_table("accounts")
    op.drop_index("ix_categories_sort_order", table_name="categories")
    op.drop_table("categories")
