"""Budget and reconciliation analytics package."""

from reconciler.analytics.budget import (
    actual_spend_by_category,
    analyze_budgets,
    budget_status,
)
from reconciler.analytics.metrics import compute_reconciliation_metrics

__all__ = [
    "actual_spend_by_category",
    "analyze_budgets",
    "budget_status",
    "compute_reconciliation_metrics",
]
