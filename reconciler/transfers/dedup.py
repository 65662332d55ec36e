"""
Internal Transfer Detection

Moving money between two of the organization's own accounts produces two
rows: an expense in the source account and an income in the target.
Counted as-is, both inflate income and expense totals. This pass finds
such pairs and sets is_ignored on them.

A pair is:
- an income and an expense
- in different accounts
- with amounts differing by less than the tolerance (0.01)
- dated at most one calendar day apart

INVESTMENT ACCOUNTS:
When exactly one side lives in an investment account, the movement is a
contribution or a redemption, which does matter for reporting:
- expense in a regular account, income in an investment account:
  the expense becomes "investment", the income side is ignored
- expense in an investment account, income in a regular account:
  the income becomes "redemption", the expense side is ignored

The scan is greedy (first match wins) over a newest-first snapshot, and
matched rows leave the pool. Ignored rows are outside the window on the
next run, so running the pass twice changes nothing.
"""

from decimal import Decimal
from typing import Iterable, Iterator, Optional
from uuid import UUID

import structlog

from reconciler.audit import AuditLogger, create_correlation_id
from reconciler.config import TransferSettings, get_settings
from reconciler.models.transaction import (
    Transaction,
    TransactionStatus,
    TransactionType,
    TransferDedupResult,
)
from reconciler.services.storage import TransactionStorageInterface

logger = structlog.get_logger(__name__)


def _is_pair(
    tx: Transaction,
    other: Transaction,
    amount_tolerance: Decimal,
    max_day_gap: int,
) -> bool:
    return (
        tx.account_id != other.account_id
        and tx.type.opposite == other.type
        and abs(tx.amount - other.amount) < amount_tolerance
        and abs((tx.date - other.date).days) <= max_day_gap
    )


def pair_transfers(
    transactions: list[Transaction],
    investment_account_ids: Optional[set[UUID]] = None,
    amount_tolerance: Decimal = Decimal("0.01"),
    max_day_gap: int = 1,
) -> TransferDedupResult:
    """
    Decide what to ignore and what to reclassify. Pure; touches no storage.

    Args:
        transactions: The window, newest first
        investment_account_ids: Accounts that hold investments
        amount_tolerance: Amounts must differ by less than this
        max_day_gap: Maximum calendar days between the two legs
    """
    investment_accounts = investment_account_ids or set()
    result = TransferDedupResult()
    processed: set[UUID] = set()

    for i, tx in enumerate(transactions):
        if tx.id in processed or tx.type.opposite is None:
            continue

        for other in transactions[i + 1:]:
            if other.id in processed:
                continue
            if not _is_pair(tx, other, amount_tolerance, max_day_gap):
                continue

            expense, income = (tx, other) if tx.type == TransactionType.EXPENSE else (other, tx)
            expense_invests = expense.account_id in investment_accounts
            income_invests = income.account_id in investment_accounts

            if income_invests and not expense_invests:
                result.investment_ids.append(expense.id)
                result.ignored_ids.append(income.id)
            elif expense_invests and not income_invests:
                result.redemption_ids.append(income.id)
                result.ignored_ids.append(expense.id)
            else:
                result.ignored_ids.extend([tx.id, other.id])

            processed.update((tx.id, other.id))
            break

    return result


def _chunks(ids: list[UUID], size: int) -> Iterator[list[UUID]]:
    for start in range(0, len(ids), size):
        yield ids[start:start + size]


class TransferDeduplicator:
    """Runs pair_transfers over storage and applies the outcome."""

    def __init__(
        self,
        transaction_storage: TransactionStorageInterface,
        settings: Optional[TransferSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = transaction_storage
        self._settings = settings or get_settings().transfers
        self._audit = audit_logger or AuditLogger()

    async def detect_and_ignore_transfers(
        self,
        organization_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> TransferDedupResult:
        """
        Find internal transfers among recent transactions and ignore them.

        Returns:
            What was ignored and what was reclassified
        """
        correlation_id = correlation_id or create_correlation_id()

        window = await self._storage.list_transactions(
            organization_id,
            types=[TransactionType.INCOME, TransactionType.EXPENSE],
            status=TransactionStatus.COMPLETED,
            include_ignored=False,
            limit=self._settings.window_size,
        )
        if not window:
            return TransferDedupResult()

        investment_accounts = await self._storage.list_investment_account_ids(organization_id)
        result = pair_transfers(
            window,
            investment_account_ids=investment_accounts,
            amount_tolerance=Decimal(str(self._settings.amount_tolerance)),
            max_day_gap=self._settings.max_day_gap,
        )

        await self._apply(result)

        logger.info(
            "transfers_detected",
            organization_id=str(organization_id),
            window=len(window),
            ignored=result.ignored,
            reclassified=result.reclassified,
        )
        if result.ignored or result.reclassified:
            await self._audit.log_transfers_ignored(
                organization_id=organization_id,
                ignored=result.ignored,
                reclassified=result.reclassified,
                correlation_id=correlation_id,
            )
        return result

    async def _apply(self, result: TransferDedupResult) -> None:
        batch_size = self._settings.update_batch_size

        for chunk in _chunks(result.ignored_ids, batch_size):
            await self._storage.mark_ignored(chunk)
        for chunk in _chunks(result.investment_ids, batch_size):
            await self._storage.update_type(chunk, TransactionType.INVESTMENT)
        for chunk in _chunks(result.redemption_ids, batch_size):
            await self._storage.update_type(chunk, TransactionType.REDEMPTION)


def count_toward_totals(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Rows that income/expense aggregations may use."""
    return [tx for tx in transactions if tx.counts_toward_totals]
