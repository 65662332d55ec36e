"""
Data Models Package

This package contains all Pydantic models used by the reconciler.
All data flowing through the classification engine must conform to these schemas.
"""

from reconciler.models.transaction import (
    Budget,
    BulkClassificationReport,
    Category,
    ClassificationErrorCode,
    ClassificationOutcome,
    ClassificationRequest,
    ClassificationResult,
    ClassificationSource,
    ClassificationState,
    CostCenter,
    MatchMode,
    ReconciliationRule,
    Transaction,
    TransactionPattern,
    TransactionStatus,
    TransactionType,
    TransferDedupResult,
    ValidationStatus,
)
from reconciler.models.analytics import (
    BudgetAnalysis,
    BudgetAnalysisItem,
    BudgetStatus,
    ReconciliationMetrics,
)
from reconciler.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Transaction models
    "Budget",
    "BulkClassificationReport",
    "Category",
    "ClassificationErrorCode",
    "ClassificationOutcome",
    "ClassificationRequest",
    "ClassificationResult",
    "ClassificationSource",
    "ClassificationState",
    "CostCenter",
    "MatchMode",
    "ReconciliationRule",
    "Transaction",
    "TransactionPattern",
    "TransactionStatus",
    "TransactionType",
    "TransferDedupResult",
    "ValidationStatus",
    # Analytics models
    "BudgetAnalysis",
    "BudgetAnalysisItem",
    "BudgetStatus",
    "ReconciliationMetrics",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
