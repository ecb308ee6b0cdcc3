import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from models import Budget
from money import format_amount
from schedule import month_bounds
from stores import LedgerStore, SqlLedgerStore

logger = logging.getLogger(__name__)

BASIS_POINTS_PER_PERCENT = 100
FULL_BASIS_POINTS = 100 * BASIS_POINTS_PER_PERCENT

# (threshold percent, flag attribute on Budget)
THRESHOLDS = ((75, "notified_75"), (100, "notified_100"))


def progress_basis_points(spent: int, cap: int) -> int:
    if cap <= 0:
        return 0
    return (spent * FULL_BASIS_POINTS) // cap


def progress_percent(spent: int, cap: int) -> Decimal:
    return Decimal(progress_basis_points(spent, cap)) / BASIS_POINTS_PER_PERCENT


@dataclass(frozen=True)
class BudgetAlert:
    budget_id: Optional[int]
    category_id: Optional[int]
    year: int
    month: int
    threshold: int
    spent_minor: int
    cap_minor: int

    @property
    def percent(self) -> Decimal:
        return progress_percent(self.spent_minor, self.cap_minor)


def evaluate_thresholds(budget: Budget, spent: int) -> list[BudgetAlert]:
    """Mark and return thresholds crossed for the first time.

    Each threshold is checked on its own flag: reaching 100% directly also
    fires 75% if that one was never sent.
    """
    basis_points = progress_basis_points(spent, budget.amount_minor)
    alerts: list[BudgetAlert] = []
    for threshold, flag in THRESHOLDS:
        if getattr(budget, flag):
            continue
        if basis_points < threshold * BASIS_POINTS_PER_PERCENT:
            continue
        setattr(budget, flag, True)
        alerts.append(
            BudgetAlert(
                budget_id=budget.id,
                category_id=budget.category_id,
                year=budget.year,
                month=budget.month,
                threshold=threshold,
                spent_minor=spent,
                cap_minor=budget.amount_minor,
            )
        )
    return alerts


def log_budget_alert(alert: BudgetAlert) -> None:
    scope = "overall" if alert.category_id is None else f"category={alert.category_id}"
    logger.warning(
        f"budget_threshold_crossed: budget={alert.budget_id} {scope} "
        f"period={alert.year:04d}-{alert.month:02d} threshold={alert.threshold} "
        f"spent={format_amount(alert.spent_minor)} cap={format_amount(alert.cap_minor)}"
    )


@dataclass
class BudgetCheck:
    budget: Budget
    spent_minor: int
    alerts: list[BudgetAlert]

    @property
    def basis_points(self) -> int:
        return progress_basis_points(self.spent_minor, self.budget.amount_minor)

    @property
    def remaining_minor(self) -> int:
        return self.budget.amount_minor - self.spent_minor


class BudgetMonitor:
    def __init__(
        self,
        session: Session,
        notifier: Callable[[BudgetAlert], None] = log_budget_alert,
        ledger: Optional[LedgerStore] = None,
    ) -> None:
        self.session = session
        self.notifier = notifier
        self.ledger = ledger or SqlLedgerStore(session)

    def spent_for(self, budget: Budget) -> int:
        start, end = month_bounds(budget.year, budget.month)
        return self.ledger.spent_between(start, end, budget.category_id)

    def recalculate(self, budget: Budget) -> BudgetCheck:
        spent = self.spent_for(budget)
        alerts = evaluate_thresholds(budget, spent)
        if alerts:
            self.session.flush()
            self.session.commit()
        for alert in alerts:
            self.notifier(alert)
        return BudgetCheck(budget=budget, spent_minor=spent, alerts=alerts)

    def check_month(self, year: int, month: int) -> list[BudgetCheck]:
        budgets = self.session.scalars(
            select(Budget)
            .where(Budget.year == year, Budget.month == month)
            .order_by(Budget.category_id.is_(None).desc(), Budget.category_id)
        ).all()
        return [self.recalculate(budget) for budget in budgets]

    def check_for_date(
        self, moment: datetime, category_id: Optional[int]
    ) -> list[BudgetCheck]:
        """Recalculate the budgets an expense on ``moment`` counts against."""
        scope = Budget.category_id.is_(None)
        if category_id is not None:
            scope = or_(scope, Budget.category_id == category_id)
        budgets = self.session.scalars(
            select(Budget).where(
                Budget.year == moment.year, Budget.month == moment.month, scope
            )
        ).all()
        return [self.recalculate(budget) for budget in budgets]
