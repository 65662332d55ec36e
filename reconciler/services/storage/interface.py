"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for the relational backend without touching matchers
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage error codes

The interface is intentionally simple - we're not building a full ORM.
Row-level authorization is the backend's job; every call is already
scoped to one organization.

IDEMPOTENT PATTERN INSERT:
Concurrent learners may race on the same pattern key. The storage's own
uniqueness check is the serialization point, so the interface exposes
``create_pattern_if_absent`` instead of a raw insert. Implementations
translate their duplicate-key failure into a ``None`` return; callers
never see storage-specific error codes. Reinforcing an existing row goes
through ``modify_pattern``, which owns the read-modify-write so no
increment is lost to a concurrent learner.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Callable, Iterable, Optional
from uuid import UUID

from reconciler.models.audit import AuditEvent
from reconciler.models.transaction import (
    Budget,
    Category,
    CostCenter,
    ReconciliationRule,
    Transaction,
    TransactionPattern,
    TransactionStatus,
    TransactionType,
)


class TransactionStorageInterface(ABC):
    """
    Abstract interface for transaction storage operations.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> bool:
        """
        Insert a new transaction.

        Raises:
            DuplicateError: If a transaction with this ID exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        """Retrieve a transaction by its ID, or None."""
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> bool:
        """
        Replace a stored transaction with the given version.

        Raises:
            NotFoundError: If the transaction doesn't exist
            StorageError: If update fails
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        organization_id: UUID,
        types: Optional[Iterable[TransactionType]] = None,
        status: Optional[TransactionStatus] = None,
        include_ignored: bool = True,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        """
        List an organization's transactions, newest first.

        Ordering is by date descending, then creation time descending.
        """
        pass

    @abstractmethod
    async def mark_ignored(self, transaction_ids: list[UUID]) -> int:
        """
        Set is_ignored = true on the given transactions.

        Returns the number of rows changed. Unknown IDs are skipped.
        """
        pass

    @abstractmethod
    async def update_type(
        self,
        transaction_ids: list[UUID],
        transaction_type: TransactionType,
    ) -> int:
        """Change the type of the given transactions. Returns rows changed."""
        pass

    @abstractmethod
    async def list_investment_account_ids(self, organization_id: UUID) -> set[UUID]:
        """IDs of the organization's accounts that hold investments."""
        pass


class RuleStorageInterface(ABC):
    """Reconciliation rules. Read-only to the classification engine."""

    @abstractmethod
    async def list_rules(
        self,
        organization_id: UUID,
        transaction_type: Optional[TransactionType] = None,
        active_only: bool = True,
    ) -> list[ReconciliationRule]:
        """Rules of an organization in creation order."""
        pass

    @abstractmethod
    async def save_rule(self, rule: ReconciliationRule) -> bool:
        """Insert or replace a rule."""
        pass

    @abstractmethod
    async def delete_rule(self, rule_id: UUID) -> bool:
        """Delete a rule. Returns False if it didn't exist."""
        pass


class PatternStorageInterface(ABC):
    """
    Learned transaction patterns.

    A shared, multi-writer table. Unique per
    (organization, normalized_description, category, type).
    """

    @abstractmethod
    async def find_patterns(
        self,
        organization_id: UUID,
        normalized_description: str,
        transaction_type: TransactionType,
    ) -> list[TransactionPattern]:
        """All category candidates for one lookup key."""
        pass

    @abstractmethod
    async def create_pattern_if_absent(
        self,
        pattern: TransactionPattern,
    ) -> Optional[TransactionPattern]:
        """
        Insert a pattern unless its uniqueness key is already taken.

        Returns:
            The stored pattern, or None when another writer won the key
        """
        pass

    @abstractmethod
    async def modify_pattern(
        self,
        organization_id: UUID,
        normalized_description: str,
        category_id: UUID,
        transaction_type: TransactionType,
        change: Callable[[TransactionPattern], TransactionPattern],
    ) -> Optional[TransactionPattern]:
        """
        Apply ``change`` to the current row of a key as one step.

        The row is read and written without yielding to other writers,
        so concurrent reinforcements of the same key all count.

        Returns:
            The stored pattern, or None when the key doesn't exist
        """
        pass

    @abstractmethod
    async def list_patterns(
        self,
        organization_id: UUID,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[TransactionPattern]:
        """All patterns of an organization."""
        pass

    @abstractmethod
    async def delete_pattern(self, pattern_id: UUID) -> bool:
        """Administrative delete. Returns False if it didn't exist."""
        pass


class TaxonomyStorageInterface(ABC):
    """The caller's categories and cost centers."""

    @abstractmethod
    async def list_categories(
        self,
        organization_id: Optional[UUID] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[Category]:
        """
        Categories visible to an organization.

        Categories without an organization are shared by everyone.
        Categories without a type apply to every transaction type.
        Without an organization_id only the shared categories are listed.
        """
        pass

    @abstractmethod
    async def list_cost_centers(
        self,
        organization_id: Optional[UUID] = None,
    ) -> list[CostCenter]:
        """Cost centers visible to an organization (shared ones only if None)."""
        pass


class BudgetStorageInterface(ABC):
    """Monthly budgets."""

    @abstractmethod
    async def list_budgets(
        self,
        organization_id: UUID,
        month: int,
        year: int,
    ) -> list[Budget]:
        """Budgets of one organization for one month."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event to the log. Returns True if logged."""
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one operation, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
