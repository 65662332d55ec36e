"""
Core Data Models for the Reconciler

These models define the strict schemas for everything the classification
engine reads and writes:
1. Transactions as they arrive from import/bank sync
2. User-authored reconciliation rules
3. Learned transaction patterns
4. The caller's taxonomy (categories, cost centers)
5. The transient ClassificationResult handed back to the UI

DESIGN DECISION: We use Pydantic v2 so malformed rows coming back from
storage fail loudly at the boundary instead of deep inside a matcher.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

# Alias so the ``date`` field on Transaction does not shadow the type
CalendarDate = date


def utcnow() -> datetime:
    """Timezone-aware current time, used for audit timestamps."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """Kind of money movement. The amount sign is implied by the type."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    INVESTMENT = "investment"
    REDEMPTION = "redemption"

    @property
    def opposite(self) -> Optional["TransactionType"]:
        """The other leg of an internal transfer, if any."""
        if self is TransactionType.INCOME:
            return TransactionType.EXPENSE
        if self is TransactionType.EXPENSE:
            return TransactionType.INCOME
        return None


class ValidationStatus(str, Enum):
    """
    Human-review status of a transaction.

    CRITICAL: Only rule matches and mature patterns may reach VALIDATED
    without a human. AI suggestions always stop at PENDING_VALIDATION.
    """
    VALIDATED = "validated"
    PENDING_VALIDATION = "pending_validation"
    NEEDS_REVIEW = "needs_review"


class ClassificationSource(str, Enum):
    """Which part of the system produced the current category."""
    RULE = "rule"
    PATTERN = "pattern"
    AI = "ai"
    MANUAL = "manual"
    SYSTEM = "system"
    NONE = "none"


class TransactionStatus(str, Enum):
    """Settlement status reported by the bank."""
    COMPLETED = "completed"
    PENDING = "pending"
    CANCELLED = "cancelled"


class MatchMode(str, Enum):
    """How a reconciliation rule compares descriptions."""
    EXACT = "exact"
    CONTAINS = "contains"


class ClassificationState(str, Enum):
    """
    States of the per-transaction classification state machine.

    Unclassified → RuleMatched | PatternMatched | AIMatched | Unresolved
                 → AutoValidated | PendingReview
    """
    UNCLASSIFIED = "unclassified"
    RULE_MATCHED = "rule_matched"
    PATTERN_MATCHED = "pattern_matched"
    AI_MATCHED = "ai_matched"
    UNRESOLVED = "unresolved"
    AUTO_VALIDATED = "auto_validated"
    PENDING_REVIEW = "pending_review"


class ClassificationErrorCode(str, Enum):
    """Why an automatic classification produced nothing usable."""
    AI_NOT_CONFIGURED = "ai_not_configured"
    AI_RATE_LIMITED = "ai_rate_limited"
    AI_CREDITS_EXHAUSTED = "ai_credits_exhausted"
    AI_UNAVAILABLE = "ai_unavailable"
    CLASSIFICATION_FAILED = "classification_failed"


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(BaseModel):
    """
    A single financial movement.

    Created by import/sync or manual entry as PENDING_VALIDATION / NONE.
    Mutated by the orchestrator (auto path) or by a human (manual path).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    organization_id: UUID
    account_id: UUID

    type: TransactionType
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Absolute amount; the sign is implied by type"
    )
    date: CalendarDate = Field(
        ...,
        description="Local calendar date - never shifted to UTC"
    )

    description: Optional[str] = None
    normalized_description: Optional[str] = None

    category_id: Optional[UUID] = None
    cost_center_id: Optional[UUID] = None

    validation_status: ValidationStatus = ValidationStatus.PENDING_VALIDATION
    classification_source: ClassificationSource = ClassificationSource.NONE
    is_ignored: bool = False
    status: TransactionStatus = TransactionStatus.COMPLETED

    created_at: datetime = Field(default_factory=utcnow)
    validated_at: Optional[datetime] = None

    @property
    def counts_toward_totals(self) -> bool:
        """Ignored rows never enter income/expense aggregations."""
        return not self.is_ignored and self.type in (
            TransactionType.INCOME,
            TransactionType.EXPENSE,
        )


# =============================================================================
# RULES AND PATTERNS
# =============================================================================

class ReconciliationRule(BaseModel):
    """
    A user-authored, tenant-scoped matching rule.

    Rules are the highest-trust classification source: a match always
    yields confidence 1.0 and auto-validates.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    organization_id: UUID

    description: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Literal text compared against transaction descriptions"
    )
    match_mode: MatchMode = MatchMode.CONTAINS
    amount: Optional[Decimal] = Field(
        default=None,
        description="If set, absolute amounts must be equal"
    )
    due_day: Optional[int] = Field(
        default=None,
        ge=1,
        le=31,
        description="Expected day of month (informational)"
    )

    category_id: Optional[UUID] = None
    cost_center_id: Optional[UUID] = None
    transaction_type: TransactionType

    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class TransactionPattern(BaseModel):
    """
    A learned association between a normalized description and a category.

    Unique per (organization, normalized_description, category, type).
    The same vendor string may map to several categories when users have
    corrected it differently over time.
    """

    id: UUID = Field(default_factory=uuid4)
    organization_id: UUID
    normalized_description: str = Field(..., min_length=1)
    category_id: UUID
    cost_center_id: Optional[UUID] = None
    transaction_type: TransactionType

    avg_amount: Decimal = Field(default=Decimal("0"))
    confidence: float = Field(..., ge=0.0, le=1.0)
    occurrences: int = Field(default=1, ge=1)

    last_used_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> tuple[UUID, str, UUID, TransactionType]:
        """The uniqueness key enforced by storage."""
        return (
            self.organization_id,
            self.normalized_description,
            self.category_id,
            self.transaction_type,
        )


# =============================================================================
# TAXONOMY (owned by the caller, read-only here)
# =============================================================================

class Category(BaseModel):
    """A category the organization can assign to transactions."""

    id: UUID = Field(default_factory=uuid4)
    organization_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=100)
    type: Optional[TransactionType] = None


class CostCenter(BaseModel):
    """A cost center the organization can assign to transactions."""

    id: UUID = Field(default_factory=uuid4)
    organization_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=100)


class Budget(BaseModel):
    """Monthly spending target for a category."""

    id: UUID = Field(default_factory=uuid4)
    organization_id: UUID
    category_id: UUID
    cost_center_id: Optional[UUID] = None
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    amount: Decimal = Field(..., ge=0)


# =============================================================================
# CLASSIFICATION I/O
# =============================================================================

class ClassificationRequest(BaseModel):
    """Input of a single classification, as sent by the UI or an importer."""
    model_config = ConfigDict(str_strip_whitespace=True)

    description: Optional[str] = None
    amount: Decimal = Field(default=Decimal("0"))
    type: TransactionType
    organization_id: Optional[UUID] = None
    transaction_id: Optional[UUID] = None

    @field_validator('amount')
    @classmethod
    def absolute_amount(cls, v: Decimal) -> Decimal:
        """Importers sometimes send signed amounts; the type carries the sign."""
        return abs(v)


class ClassificationResult(BaseModel):
    """
    Output of any matcher or classifier.

    CRITICAL: The field set is a contract consumed by the UI.
    Do not rename or drop fields.
    """

    category_id: Optional[UUID] = None
    category_name: Optional[str] = None
    cost_center_id: Optional[UUID] = None
    cost_center_name: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    is_transfer: bool = False
    reasoning: str = ""
    source: ClassificationSource = ClassificationSource.NONE

    auto_validated: bool = False
    normalized_description: str = ""
    error_code: Optional[ClassificationErrorCode] = None

    @property
    def has_category(self) -> bool:
        return self.category_id is not None

    @classmethod
    def empty(
        cls,
        reasoning: str = "could not classify",
        error_code: Optional[ClassificationErrorCode] = None,
        normalized_description: str = "",
    ) -> "ClassificationResult":
        """The deterministic 'nothing found' result."""
        return cls(
            reasoning=reasoning,
            error_code=error_code,
            normalized_description=normalized_description,
        )


class ClassificationOutcome(BaseModel):
    """Where one transaction ended up in the state machine."""

    transaction_id: Optional[UUID] = None
    match_state: ClassificationState
    final_state: ClassificationState
    validation_status: ValidationStatus
    result: ClassificationResult


class BulkClassificationReport(BaseModel):
    """Per-item results of a bulk run plus the count summary."""

    results: list[ClassificationResult] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def classified(self) -> int:
        return sum(1 for r in self.results if r.has_category)

    @property
    def failed(self) -> int:
        return sum(
            1 for r in self.results
            if r.error_code == ClassificationErrorCode.CLASSIFICATION_FAILED
        )

    @property
    def summary(self) -> str:
        return f"{self.classified} of {self.total} classified"


class TransferDedupResult(BaseModel):
    """What one run of the internal-transfer pass changed."""

    ignored_ids: list[UUID] = Field(default_factory=list)
    investment_ids: list[UUID] = Field(default_factory=list)
    redemption_ids: list[UUID] = Field(default_factory=list)

    @property
    def ignored(self) -> int:
        return len(self.ignored_ids)

    @property
    def reclassified(self) -> int:
        return len(self.investment_ids) + len(self.redemption_ids)
