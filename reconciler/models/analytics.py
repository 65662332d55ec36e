"""
Analytics Models

Read-only views derived from transactions: budget variance and
classification-engine performance. Nothing here is persisted.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class BudgetStatus(str, Enum):
    """Spend relative to budget: ≥100% over, ≥80% warning, ≥50% on track."""
    UNDER = "under"
    ON_TRACK = "on_track"
    WARNING = "warning"
    OVER = "over"


class BudgetAnalysisItem(BaseModel):
    """Budget vs. actual for one category in one month."""

    category_id: UUID
    category_name: str = "Uncategorized"
    cost_center_id: Optional[UUID] = None
    cost_center_name: Optional[str] = None

    budget_amount: Decimal
    actual_amount: Decimal
    variance: Decimal = Field(description="budget - actual")
    variance_percentage: float = Field(description="actual / budget * 100")
    status: BudgetStatus


class BudgetAnalysis(BaseModel):
    """All budget items of a month plus totals."""

    month: int
    year: int
    items: list[BudgetAnalysisItem] = Field(default_factory=list)

    total_budget: Decimal = Decimal("0")
    total_actual: Decimal = Decimal("0")
    total_variance: Decimal = Decimal("0")
    over_budget_count: int = 0
    warning_count: int = 0


class ReconciliationMetrics(BaseModel):
    """How much work the classification engine is saving."""

    total_transactions: int = 0
    auto_validated: int = 0
    manually_validated: int = 0
    pending: int = 0

    by_rule: int = 0
    by_pattern: int = 0
    by_ai: int = 0

    auto_validation_rate: float = 0.0
    rule_match_rate: float = 0.0
    pattern_match_rate: float = 0.0

    total_patterns: int = 0
    high_confidence_patterns: int = 0

    estimated_minutes_saved: int = 0
