"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The in-memory backend serves tests and local runs; Google Sheets is the
lightweight persistent backend. Both are swappable behind the interfaces.
"""

from reconciler.services.storage.interface import (
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
from reconciler.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryPatternStorage,
    InMemoryRuleStorage,
    InMemoryTaxonomyStorage,
    InMemoryTransactionStorage,
)
from reconciler.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsPatternStorage,
    GoogleSheetsRuleStorage,
    GoogleSheetsTaxonomyStorage,
    GoogleSheetsTransactionStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "PatternStorageInterface",
    "RuleStorageInterface",
    "TaxonomyStorageInterface",
    "TransactionStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryBudgetStorage",
    "InMemoryPatternStorage",
    "InMemoryRuleStorage",
    "InMemoryTaxonomyStorage",
    "InMemoryTransactionStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsBudgetStorage",
    "GoogleSheetsClient",
    "GoogleSheetsPatternStorage",
    "GoogleSheetsRuleStorage",
    "GoogleSheetsTaxonomyStorage",
    "GoogleSheetsTransactionStorage",
]
