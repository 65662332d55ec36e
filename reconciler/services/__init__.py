"""Services package."""

from reconciler.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    PatternStorageInterface,
    RuleStorageInterface,
    StorageError,
    TaxonomyStorageInterface,
    TransactionStorageInterface,
)

__all__ = [
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "PatternStorageInterface",
    "RuleStorageInterface",
    "StorageError",
    "TaxonomyStorageInterface",
    "TransactionStorageInterface",
]
