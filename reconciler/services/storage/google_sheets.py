"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is kept as a lightweight backend because:
1. Small organizations can inspect and fix their rules directly in Sheets
2. No database setup required
3. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data
- No transactions and no unique constraints; the pattern-key check in
  ``create_pattern_if_absent`` is read-then-append and ``modify_pattern``
  is read-then-write, both only atomic within one process
- Limited query capabilities (we filter in Python)

Every entity is one row; columns follow the model's field names.
"""

import json
from datetime import date
from typing import Callable, Iterable, Optional, Type, TypeVar
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from pydantic import BaseModel, ValidationError
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

import structlog

from reconciler.config import get_settings
from reconciler.models.audit import AuditEvent, AuditEventType, AuditSeverity
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
    ConnectionError,
    DuplicateError,
    NotFoundError,
    PatternStorageInterface,
    RuleStorageInterface,
    StorageError,
    TaxonomyStorageInterface,
    TransactionStorageInterface,
)

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


# Column mappings, one list per worksheet
TRANSACTION_COLUMNS = [
    "id",
    "organization_id",
    "account_id",
    "type",
    "amount",
    "date",
    "description",
    "normalized_description",
    "category_id",
    "cost_center_id",
    "validation_status",
    "classification_source",
    "is_ignored",
    "status",
    "created_at",
    "validated_at",
]

RULE_COLUMNS = [
    "id",
    "organization_id",
    "description",
    "match_mode",
    "amount",
    "due_day",
    "category_id",
    "cost_center_id",
    "transaction_type",
    "is_active",
    "created_at",
]

PATTERN_COLUMNS = [
    "id",
    "organization_id",
    "normalized_description",
    "category_id",
    "cost_center_id",
    "transaction_type",
    "avg_amount",
    "confidence",
    "occurrences",
    "last_used_at",
    "created_at",
]

CATEGORY_COLUMNS = ["id", "organization_id", "name", "type"]

COST_CENTER_COLUMNS = ["id", "organization_id", "name"]

BUDGET_COLUMNS = [
    "id",
    "organization_id",
    "category_id",
    "cost_center_id",
    "month",
    "year",
    "amount",
]

ACCOUNT_COLUMNS = ["id", "organization_id", "name", "account_type"]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


def _model_to_row(model: BaseModel, columns: list[str]) -> list:
    """Serialize a model to cells; None becomes an empty cell."""
    data = model.model_dump(mode="json")
    row = []
    for column in columns:
        value = data.get(column)
        if value is None:
            row.append("")
        elif isinstance(value, bool):
            row.append("true" if value else "false")
        else:
            row.append(str(value))
    return row


def _row_to_model(cls: Type[ModelT], row: list, columns: list[str]) -> ModelT:
    """Parse cells back into a model; empty cells become missing fields."""
    data = {}
    for index, column in enumerate(columns):
        try:
            value = row[index]
        except IndexError:
            continue
        if value != "":
            data[column] = value
    return cls.model_validate(data)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @property
    def settings(self):
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


class _SheetTable:
    """Shared row plumbing for one worksheet holding one model type."""

    model: Type[BaseModel]
    columns: list[str]

    def __init__(self, client: GoogleSheetsClient, sheet_name: str):
        self._client = client
        self._sheet_name = sheet_name

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self._sheet_name, self.columns)

    def _read_all(self) -> list:
        """All parseable rows as models, in sheet order."""
        try:
            all_rows = self._sheet().get_all_values()[1:]  # Skip header
        except Exception as e:
            raise StorageError(f"Failed to read {self._sheet_name}: {e}")

        items = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                items.append(_row_to_model(self.model, row, self.columns))
            except (ValidationError, ValueError):
                logger.warning(
                    "sheets_row_skipped",
                    sheet=self._sheet_name,
                    row_id=row[0],
                )
        return items

    def _find_row_index(self, entity_id: UUID) -> Optional[int]:
        """1-based sheet row of an entity (row 1 is the header)."""
        ids = self._sheet().col_values(1)
        for idx, value in enumerate(ids[1:], start=2):
            if value == str(entity_id):
                return idx
        return None

    def _append(self, item: BaseModel) -> None:
        self._sheet().append_row(
            _model_to_row(item, self.columns),
            value_input_option="RAW",
        )

    def _replace(self, row_index: int, item: BaseModel) -> None:
        self._sheet().update(
            range_name=rowcol_to_a1(row_index, 1),
            values=[_model_to_row(item, self.columns)],
            value_input_option="RAW",
        )

    def _set_cells(self, entity_ids: list[UUID], column: str, value: str) -> int:
        """Write one column for many rows in a single batch call."""
        col_index = self.columns.index(column) + 1
        sheet = self._sheet()
        positions = {value_: idx for idx, value_ in enumerate(sheet.col_values(1)[1:], start=2)}

        updates = []
        for entity_id in entity_ids:
            row_index = positions.get(str(entity_id))
            if row_index is not None:
                updates.append({
                    "range": rowcol_to_a1(row_index, col_index),
                    "values": [[value]],
                })
        if updates:
            sheet.batch_update(updates, value_input_option="RAW")
        return len(updates)


class GoogleSheetsTransactionStorage(_SheetTable, TransactionStorageInterface):
    """Google Sheets implementation of transaction storage."""

    model = Transaction
    columns = TRANSACTION_COLUMNS

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        super().__init__(client, client.settings.transactions_sheet_name)

    @retry(
        retry=retry_if_not_exception_type(DuplicateError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_transaction(self, transaction: Transaction) -> bool:
        if self._find_row_index(transaction.id) is not None:
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        try:
            self._append(transaction)
            return True
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        for tx in self._read_all():
            if tx.id == transaction_id:
                return tx
        return None

    async def update_transaction(self, transaction: Transaction) -> bool:
        try:
            row_index = self._find_row_index(transaction.id)
            if row_index is None:
                raise NotFoundError(f"Transaction not found: {transaction.id}")
            self._replace(row_index, transaction)
            return True
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update transaction: {e}")

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
        for tx in self._read_all():
            # Apply filters
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

        # Sort by date descending (newest first)
        rows.sort(key=lambda t: (t.date, t.created_at), reverse=True)
        return rows[:limit] if limit is not None else rows

    async def mark_ignored(self, transaction_ids: list[UUID]) -> int:
        try:
            return self._set_cells(transaction_ids, "is_ignored", "true")
        except Exception as e:
            raise StorageError(f"Failed to mark transactions ignored: {e}")

    async def update_type(
        self,
        transaction_ids: list[UUID],
        transaction_type: TransactionType,
    ) -> int:
        try:
            return self._set_cells(transaction_ids, "type", transaction_type.value)
        except Exception as e:
            raise StorageError(f"Failed to update transaction type: {e}")

    async def list_investment_account_ids(self, organization_id: UUID) -> set[UUID]:
        try:
            sheet = self._client.get_worksheet(
                self._client.settings.accounts_sheet_name,
                ACCOUNT_COLUMNS,
            )
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to read accounts: {e}")

        ids = set()
        for row in all_rows:
            if len(row) < 4 or not row[0]:
                continue
            if row[1] == str(organization_id) and row[3].lower() == "investment":
                ids.add(UUID(row[0]))
        return ids


class GoogleSheetsRuleStorage(_SheetTable, RuleStorageInterface):
    """Reconciliation rules, one per row, in creation order."""

    model = ReconciliationRule
    columns = RULE_COLUMNS

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        super().__init__(client, client.settings.rules_sheet_name)

    async def list_rules(
        self,
        organization_id: UUID,
        transaction_type: Optional[TransactionType] = None,
        active_only: bool = True,
    ) -> list[ReconciliationRule]:
        rules = [
            rule for rule in self._read_all()
            if rule.organization_id == organization_id
            and (transaction_type is None or rule.transaction_type == transaction_type)
            and (rule.is_active or not active_only)
        ]
        rules.sort(key=lambda r: r.created_at)
        return rules

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_rule(self, rule: ReconciliationRule) -> bool:
        try:
            row_index = self._find_row_index(rule.id)
            if row_index is None:
                self._append(rule)
            else:
                self._replace(row_index, rule)
            return True
        except Exception as e:
            raise StorageError(f"Failed to save rule: {e}")

    async def delete_rule(self, rule_id: UUID) -> bool:
        try:
            row_index = self._find_row_index(rule_id)
            if row_index is None:
                return False
            self._sheet().delete_rows(row_index)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete rule: {e}")


class GoogleSheetsPatternStorage(_SheetTable, PatternStorageInterface):
    """Learned patterns, one per row."""

    model = TransactionPattern
    columns = PATTERN_COLUMNS

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        super().__init__(client, client.settings.patterns_sheet_name)

    async def find_patterns(
        self,
        organization_id: UUID,
        normalized_description: str,
        transaction_type: TransactionType,
    ) -> list[TransactionPattern]:
        return [
            p for p in self._read_all()
            if p.organization_id == organization_id
            and p.normalized_description == normalized_description
            and p.transaction_type == transaction_type
        ]

    def _insert(self, pattern: TransactionPattern) -> TransactionPattern:
        existing = {p.key for p in self._read_all()}
        if pattern.key in existing:
            raise DuplicateError(f"Pattern key already exists: {pattern.key}")
        self._append(pattern)
        return pattern

    async def create_pattern_if_absent(
        self,
        pattern: TransactionPattern,
    ) -> Optional[TransactionPattern]:
        try:
            return self._insert(pattern)
        except DuplicateError:
            return None
        except Exception as e:
            raise StorageError(f"Failed to create pattern: {e}")

    async def modify_pattern(
        self,
        organization_id: UUID,
        normalized_description: str,
        category_id: UUID,
        transaction_type: TransactionType,
        change: Callable[[TransactionPattern], TransactionPattern],
    ) -> Optional[TransactionPattern]:
        # gspread calls are blocking, so nothing else runs on this event
        # loop between the read and the write
        key = (organization_id, normalized_description, category_id, transaction_type)
        try:
            for pattern in self._read_all():
                if pattern.key == key:
                    changed = change(pattern)
                    self._replace(self._find_row_index(pattern.id), changed)
                    return changed
            return None
        except Exception as e:
            raise StorageError(f"Failed to modify pattern: {e}")

    async def list_patterns(
        self,
        organization_id: UUID,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[TransactionPattern]:
        return [
            p for p in self._read_all()
            if p.organization_id == organization_id
            and (transaction_type is None or p.transaction_type == transaction_type)
        ]

    async def delete_pattern(self, pattern_id: UUID) -> bool:
        try:
            row_index = self._find_row_index(pattern_id)
            if row_index is None:
                return False
            self._sheet().delete_rows(row_index)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete pattern: {e}")


class GoogleSheetsTaxonomyStorage(TaxonomyStorageInterface):
    """Categories and cost centers maintained by hand in two worksheets."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        self._categories = _CategoryTable(client, client.settings.categories_sheet_name)
        self._cost_centers = _CostCenterTable(client, client.settings.cost_centers_sheet_name)

    async def list_categories(
        self,
        organization_id: Optional[UUID] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[Category]:
        return [
            c for c in self._categories._read_all()
            if c.organization_id in (None, organization_id)
            and (transaction_type is None or c.type is None or c.type == transaction_type)
        ]

    async def list_cost_centers(
        self,
        organization_id: Optional[UUID] = None,
    ) -> list[CostCenter]:
        return [
            cc for cc in self._cost_centers._read_all()
            if cc.organization_id in (None, organization_id)
        ]


class _CategoryTable(_SheetTable):
    model = Category
    columns = CATEGORY_COLUMNS


class _CostCenterTable(_SheetTable):
    model = CostCenter
    columns = COST_CENTER_COLUMNS


class GoogleSheetsBudgetStorage(_SheetTable, BudgetStorageInterface):
    """Monthly budgets, one per row."""

    model = Budget
    columns = BUDGET_COLUMNS

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        client = client or GoogleSheetsClient()
        super().__init__(client, client.settings.budgets_sheet_name)

    async def list_budgets(
        self,
        organization_id: UUID,
        month: int,
        year: int,
    ) -> list[Budget]:
        return [
            b for b in self._read_all()
            if b.organization_id == organization_id
            and b.month == month
            and b.year == year
        ]


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=safe_get(1),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    def _read_events(self) -> list[AuditEvent]:
        try:
            all_rows = self._sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValidationError, ValueError):
                continue
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        self._sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._read_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = self._read_events()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
