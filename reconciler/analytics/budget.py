"""
Budget Variance Analysis

Compares each monthly budget with the actual expense booked in its
category. Ignored rows (internal transfers) never count as spend.

Status thresholds on actual / budget:
    >= 100%  over
    >=  80%  warning
    >=  50%  on_track
    below    under
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from reconciler.models.analytics import BudgetAnalysis, BudgetAnalysisItem, BudgetStatus
from reconciler.models.transaction import (
    Budget,
    Category,
    CostCenter,
    Transaction,
    TransactionType,
)
from reconciler.transfers import count_toward_totals

ZERO = Decimal("0")


def budget_status(variance_percentage: float) -> BudgetStatus:
    """Map spend percentage to a status."""
    if variance_percentage >= 100:
        return BudgetStatus.OVER
    if variance_percentage >= 80:
        return BudgetStatus.WARNING
    if variance_percentage >= 50:
        return BudgetStatus.ON_TRACK
    return BudgetStatus.UNDER


def _in_month(day: date, month: int, year: int) -> bool:
    return day.month == month and day.year == year


def actual_spend_by_category(
    transactions: Iterable[Transaction],
    month: int,
    year: int,
) -> dict[Optional[UUID], Decimal]:
    """Sum of expense amounts per category for one month."""
    totals: dict[Optional[UUID], Decimal] = defaultdict(lambda: ZERO)
    for tx in count_toward_totals(transactions):
        if tx.type != TransactionType.EXPENSE or not _in_month(tx.date, month, year):
            continue
        totals[tx.category_id] += tx.amount
    return dict(totals)


def analyze_budgets(
    budgets: Iterable[Budget],
    transactions: Iterable[Transaction],
    month: int,
    year: int,
    categories: Optional[Iterable[Category]] = None,
    cost_centers: Optional[Iterable[CostCenter]] = None,
) -> BudgetAnalysis:
    """
    Budget vs. actual for every budget of a month.

    Items are sorted by variance_percentage, highest first, so the most
    overspent categories lead.
    """
    category_names = {c.id: c.name for c in categories or []}
    cost_center_names = {cc.id: cc.name for cc in cost_centers or []}
    actuals = actual_spend_by_category(transactions, month, year)

    items = []
    for budget in budgets:
        if budget.month != month or budget.year != year:
            continue

        actual = actuals.get(budget.category_id, ZERO)
        percentage = float(actual / budget.amount * 100) if budget.amount > 0 else 0.0

        items.append(BudgetAnalysisItem(
            category_id=budget.category_id,
            category_name=category_names.get(budget.category_id, "Uncategorized"),
            cost_center_id=budget.cost_center_id,
            cost_center_name=cost_center_names.get(budget.cost_center_id),
            budget_amount=budget.amount,
            actual_amount=actual,
            variance=budget.amount - actual,
            variance_percentage=percentage,
            status=budget_status(percentage),
        ))

    items.sort(key=lambda item: item.variance_percentage, reverse=True)

    total_budget = sum((item.budget_amount for item in items), ZERO)
    total_actual = sum((item.actual_amount for item in items), ZERO)
    return BudgetAnalysis(
        month=month,
        year=year,
        items=items,
        total_budget=total_budget,
        total_actual=total_actual,
        total_variance=total_budget - total_actual,
        over_budget_count=sum(1 for item in items if item.status == BudgetStatus.OVER),
        warning_count=sum(1 for item in items if item.status == BudgetStatus.WARNING),
    )
