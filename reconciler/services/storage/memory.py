"""
In-Memory Storage Implementation

Used by the test suite and for local runs without a backend.
Behaves like the real stores where it matters to the engine:
- copies on read and write, so callers can't mutate stored rows
- newest-first ordering for transactions
- a real uniqueness check on the pattern key
"""

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
from reconciler.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    DuplicateError,
    NotFoundError,
    PatternStorageInterface,
    RuleStorageInterface,
    TaxonomyStorageInterface,
    TransactionStorageInterface,
)


class InMemoryTransactionStorage(TransactionStorageInterface):
    """Transactions kept in a dict keyed by ID."""

    def __init__(
        self,
        transactions: Optional[Iterable[Transaction]] = None,
        investment_account_ids: Optional[dict[UUID, set[UUID]]] = None,
    ):
        self._rows: dict[UUID, Transaction] = {}
        # organization_id -> account ids
        self._investment_accounts = investment_account_ids or {}
        for tx in transactions or []:
            self._rows[tx.id] = tx.model_copy(deep=True)

    def add_investment_account(self, organization_id: UUID, account_id: UUID) -> None:
        self._investment_accounts.setdefault(organization_id, set()).add(account_id)

    async def save_transaction(self, transaction: Transaction) -> bool:
        if transaction.id in self._rows:
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        self._rows[transaction.id] = transaction.model_copy(deep=True)
        return True

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        tx = self._rows.get(transaction_id)
        return tx.model_copy(deep=True) if tx else None

    async def update_transaction(self, transaction: Transaction) -> bool:
        if transaction.id not in self._rows:
            raise NotFoundError(f"Transaction not found: {transaction.id}")
        self._rows[transaction.id] = transaction.model_copy(deep=True)
        return True

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
        wanted_types = set(types) if types is not None else None

        rows = []
        for tx in self._rows.values():
            if tx.organization_id != organization_id:
                continue
            if wanted_types is not None and tx.type not in wanted_types:
                continue
            if status and tx.status != status:
                continue
            if not include_ignored and tx.is_ignored:
                continue
            if date_from and tx.date < date_from:
                continue
            if date_to and tx.date > date_to:
                continue
            rows.append(tx)

        rows.sort(key=lambda t: (t.date, t.created_at), reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return [tx.model_copy(deep=True) for tx in rows]

    async def mark_ignored(self, transaction_ids: list[UUID]) -> int:
        changed = 0
        for tx_id in transaction_ids:
            tx = self._rows.get(tx_id)
            if tx is None:
                continue
            self._rows[tx_id] = tx.model_copy(update={"is_ignored": True})
            changed += 1
        return changed

    async def update_type(
        self,
        transaction_ids: list[UUID],
        transaction_type: TransactionType,
    ) -> int:
        changed = 0
        for tx_id in transaction_ids:
            tx = self._rows.get(tx_id)
            if tx is None:
                continue
            self._rows[tx_id] = tx.model_copy(update={"type": transaction_type})
            changed += 1
        return changed

    async def list_investment_account_ids(self, organization_id: UUID) -> set[UUID]:
        return set(self._investment_accounts.get(organization_id, set()))


class InMemoryRuleStorage(RuleStorageInterface):
    """Rules kept in insertion order."""

    def __init__(self, rules: Optional[Iterable[ReconciliationRule]] = None):
        self._rows: dict[UUID, ReconciliationRule] = {}
        for rule in rules or []:
            self._rows[rule.id] = rule.model_copy(deep=True)

    async def list_rules(
        self,
        organization_id: UUID,
        transaction_type: Optional[TransactionType] = None,
        active_only: bool = True,
    ) -> list[ReconciliationRule]:
        rules = [
            rule for rule in self._rows.values()
            if rule.organization_id == organization_id
            and (transaction_type is None or rule.transaction_type == transaction_type)
            and (rule.is_active or not active_only)
        ]
        rules.sort(key=lambda r: r.created_at)
        return [rule.model_copy(deep=True) for rule in rules]

    async def save_rule(self, rule: ReconciliationRule) -> bool:
        self._rows[rule.id] = rule.model_copy(deep=True)
        return True

    async def delete_rule(self, rule_id: UUID) -> bool:
        return self._rows.pop(rule_id, None) is not None


class InMemoryPatternStorage(PatternStorageInterface):
    """Patterns with a uniqueness index on the pattern key."""

    def __init__(self, patterns: Optional[Iterable[TransactionPattern]] = None):
        self._rows: dict[UUID, TransactionPattern] = {}
        self._by_key: dict[tuple, UUID] = {}
        for pattern in patterns or []:
            self._insert(pattern)

    def _insert(self, pattern: TransactionPattern) -> TransactionPattern:
        """Raw insert; the uniqueness index is the serialization point."""
        if pattern.key in self._by_key:
            raise DuplicateError(f"Pattern key already exists: {pattern.key}")
        stored = pattern.model_copy(deep=True)
        self._rows[stored.id] = stored
        self._by_key[stored.key] = stored.id
        return stored.model_copy(deep=True)

    async def find_patterns(
        self,
        organization_id: UUID,
        normalized_description: str,
        transaction_type: TransactionType,
    ) -> list[TransactionPattern]:
        return [
            p.model_copy(deep=True) for p in self._rows.values()
            if p.organization_id == organization_id
            and p.normalized_description == normalized_description
            and p.transaction_type == transaction_type
        ]

    async def create_pattern_if_absent(
        self,
        pattern: TransactionPattern,
    ) -> Optional[TransactionPattern]:
        try:
            return self._insert(pattern)
        except DuplicateError:
            return None

    async def modify_pattern(
        self,
        organization_id: UUID,
        normalized_description: str,
        category_id: UUID,
        transaction_type: TransactionType,
        change: Callable[[TransactionPattern], TransactionPattern],
    ) -> Optional[TransactionPattern]:
        # No await between read and write: atomic on the event loop
        key = (organization_id, normalized_description, category_id, transaction_type)
        pattern_id = self._by_key.get(key)
        if pattern_id is None:
            return None
        changed = change(self._rows[pattern_id].model_copy(deep=True))
        self._rows[pattern_id] = changed.model_copy(deep=True)
        return changed

    async def list_patterns(
        self,
        organization_id: UUID,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[TransactionPattern]:
        return [
            p.model_copy(deep=True) for p in self._rows.values()
            if p.organization_id == organization_id
            and (transaction_type is None or p.transaction_type == transaction_type)
        ]

    async def delete_pattern(self, pattern_id: UUID) -> bool:
        pattern = self._rows.pop(pattern_id, None)
        if pattern is None:
            return False
        self._by_key.pop(pattern.key, None)
        return True


class InMemoryTaxonomyStorage(TaxonomyStorageInterface):
    """Fixed categories and cost centers."""

    def __init__(
        self,
        categories: Optional[Iterable[Category]] = None,
        cost_centers: Optional[Iterable[CostCenter]] = None,
    ):
        self._categories = list(categories or [])
        self._cost_centers = list(cost_centers or [])

    async def list_categories(
        self,
        organization_id: Optional[UUID] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[Category]:
        return [
            c for c in self._categories
            if c.organization_id in (None, organization_id)
            and (transaction_type is None or c.type is None or c.type == transaction_type)
        ]

    async def list_cost_centers(
        self,
        organization_id: Optional[UUID] = None,
    ) -> list[CostCenter]:
        return [
            cc for cc in self._cost_centers
            if cc.organization_id in (None, organization_id)
        ]


class InMemoryBudgetStorage(BudgetStorageInterface):
    """Fixed list of budgets."""

    def __init__(self, budgets: Optional[Iterable[Budget]] = None):
        self._budgets = list(budgets or [])

    async def list_budgets(
        self,
        organization_id: UUID,
        month: int,
        year: int,
    ) -> list[Budget]:
        return [
            b for b in self._budgets
            if b.organization_id == organization_id
            and b.month == month
            and b.year == year
        ]


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self.events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
