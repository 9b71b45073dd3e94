"""
Value types shared by the reconciliation and cash-flow engines.

Everything here is a plain record:
- Ledger side: LedgerEntry, TrialBalanceRow, MonthlyBalance
- Derived comparison output: ComparisonRecord, ComparisonResult, Alert, DiscrepancyReport
- Cash flow output: CashFlowStatement, WaterfallStep, CashFlowSummary, CashFlowLink
- Reference indexes: SortCode, AccountIndexRecord, IndexSyncRecord and their inputs
- Import plumbing: TargetField, ColumnMapping

Ingested records are frozen. Derived records are rebuilt from scratch by the
computation that owns them and are never mutated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from reconciliation.config import ZERO


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


SEVERITY_ORDER = {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.INFO: 2}


class AlertCategory(str, Enum):
    DISCREPANCY = "discrepancy"
    CASH = "cash"
    TREND = "trend"
    THRESHOLD = "threshold"


class ReportType(str, Enum):
    INCOME = "income"
    COGS = "cogs"
    OPERATING = "operating"
    FINANCIAL = "financial"
    OTHER = "other"


class AccountType(str, Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    BANK = "bank"
    CASH = "cash"
    EXPENSE = "expense"
    INCOME = "income"
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    OTHER = "other"


class IndexKind(str, Enum):
    """Reference index handled by the reconciler; value is the audit index_type."""

    SORT_CODE = "sort_codes"
    ACCOUNT = "accounts"


class SyncStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SyncSource(str, Enum):
    HASHAVSHEVET_EXPORT = "hashavshevet_export"
    MANUAL = "manual"
    API = "api"


class UpsertAction(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Ledger inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerEntry:
    """A single ledger (biurim) line. Income is negative, expense positive."""

    account_key: Optional[int]
    amount: Any
    month: int
    account_name: str = ""
    sort_code: Optional[int] = None
    sort_code_name: str = ""
    year: Optional[int] = None


@dataclass(frozen=True)
class TrialBalanceRow:
    account_key: Optional[int]
    monthly_totals: Mapping[int, Any] = field(default_factory=dict)
    account_name: str = ""
    sort_code: Optional[int] = None
    sort_code_name: str = ""


@dataclass(frozen=True)
class MonthlyBalance:
    account_key: int
    month: int
    year: int
    opening_balance: Decimal
    closing_balance: Decimal
    account_name: str = ""
    account_type: str = ""

    @property
    def change(self) -> Decimal:
        return self.closing_balance - self.opening_balance


# ---------------------------------------------------------------------------
# Comparison output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DataQualityIssue:
    code: str
    message: str
    account_key: Optional[int] = None
    month: Optional[int] = None


@dataclass(frozen=True)
class MonthlyComparison:
    month: int
    ledger: Decimal
    balance: Decimal
    diff: Decimal


@dataclass(frozen=True)
class ComparisonRecord:
    account_key: int
    account_name: str
    sort_code: Optional[int]
    sort_code_name: str
    ledger_total: Decimal
    balance_total: Decimal
    difference: Decimal
    match_rate: Decimal
    per_month: tuple[MonthlyComparison, ...] = ()


@dataclass(frozen=True)
class ComparisonResult:
    records: tuple[ComparisonRecord, ...]
    diagnostics: tuple[DataQualityIssue, ...] = ()

    @property
    def excluded_entries(self) -> int:
        return sum(1 for issue in self.diagnostics if issue.code.startswith("EXCLUDED_"))

    def __iter__(self):
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class DiscrepancySummary:
    total_accounts: int
    matched_accounts: int
    discrepancy_accounts: int
    match_rate: Decimal
    total_discrepancy_amount: Decimal
    critical_count: int
    warning_count: int
    info_count: int
    excluded_entries: int = 0


@dataclass(frozen=True)
class DiscrepancyByCode:
    code: Optional[int]
    name: str
    discrepancy_amount: Decimal
    discrepancy_count: int
    percentage: Decimal


@dataclass(frozen=True)
class MonthlyDiscrepancy:
    month: int
    total_discrepancy: Decimal
    accounts_with_discrepancy: int
    match_rate: Decimal


@dataclass(frozen=True)
class Alert:
    id: str
    severity: Severity
    category: AlertCategory
    title: str
    message: str
    value: Decimal
    timestamp: datetime
    threshold: Optional[Decimal] = None
    account_key: Optional[int] = None
    account_name: Optional[str] = None
    month: Optional[int] = None


@dataclass(frozen=True)
class DiscrepancyReport:
    summary: DiscrepancySummary
    alerts: tuple[Alert, ...]
    by_code: tuple[DiscrepancyByCode, ...]
    by_month: tuple[MonthlyDiscrepancy, ...]


# ---------------------------------------------------------------------------
# Cash flow output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CashFlowStatement:
    month: int
    net_income: Decimal
    accounts_receivable_change: Decimal
    inventory_change: Decimal
    accounts_payable_change: Decimal
    operating_cash_flow: Decimal
    property_purchase: Decimal
    property_sale: Decimal
    investing_cash_flow: Decimal
    loan_proceeds: Decimal
    loan_repayments: Decimal
    financing_cash_flow: Decimal
    net_cash_change: Decimal
    opening_cash: Decimal
    closing_cash: Decimal
    depreciation: Decimal = ZERO
    other_operating: Decimal = ZERO
    reconciliation_warning: Optional[str] = None
    diagnostics: tuple[DataQualityIssue, ...] = ()

    @property
    def components_total(self) -> Decimal:
        return self.operating_cash_flow + self.investing_cash_flow + self.financing_cash_flow

    @property
    def is_reconciled(self) -> bool:
        return self.reconciliation_warning is None


@dataclass(frozen=True)
class WaterfallStep:
    name: str
    value: Decimal
    cumulative: Decimal
    is_subtotal: bool = False
    is_total: bool = False


@dataclass(frozen=True)
class CashFlowSummary:
    month: int
    year: Optional[int]
    operating: Decimal
    investing: Decimal
    financing: Decimal
    net_change: Decimal
    closing_balance: Decimal


@dataclass(frozen=True)
class CashFlowLink:
    source: str
    target: str
    value: Decimal


# ---------------------------------------------------------------------------
# Reference indexes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SortCodeInput:
    code: Optional[int]
    name: str
    parent_code: Optional[int] = None
    report_type: Optional[ReportType] = None
    sort_order: Optional[int] = None

    @property
    def natural_key(self) -> Optional[int]:
        return self.code


@dataclass(frozen=True)
class AccountIndexInput:
    account_key: Optional[int]
    account_name: str
    sort_code: Optional[int] = None
    account_type: Optional[AccountType] = None
    id_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    current_balance: Optional[Decimal] = None
    balance_date: Optional[date] = None

    @property
    def natural_key(self) -> Optional[int]:
        return self.account_key


@dataclass
class SortCode:
    tenant_id: str
    code: int
    name: str
    parent_code: Optional[int] = None
    report_type: Optional[ReportType] = None
    sort_order: int = 0
    is_active: bool = True


@dataclass
class AccountIndexRecord:
    tenant_id: str
    account_key: int
    account_name: str
    sort_code: Optional[int] = None
    account_type: Optional[AccountType] = None
    id_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    current_balance: Decimal = ZERO
    balance_date: Optional[date] = None
    is_active: bool = True


@dataclass(frozen=True)
class IndexSyncRecord:
    tenant_id: str
    index_type: IndexKind
    source: SyncSource
    total: int
    added: int
    updated: int
    status: SyncStatus
    timestamp: datetime
    deleted: int = 0
    error_message: Optional[str] = None
    actor: Optional[str] = None


@dataclass(frozen=True)
class UpsertOutcome:
    natural_key: Optional[int]
    action: UpsertAction
    error: Optional[str] = None


@dataclass(frozen=True)
class ReconcileResult:
    added: int
    updated: int
    errors: tuple[str, ...]
    invalid: int
    sync_record: IndexSyncRecord

    @property
    def total(self) -> int:
        return self.added + self.updated + len(self.errors)


# ---------------------------------------------------------------------------
# Column mapping
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TargetField:
    name: str
    label: str
    # Other header spellings seen in accounting exports.
    aliases: tuple[str, ...] = ()


@dataclass
class ColumnMapping:
    source_column_name: str
    target_field_name: Optional[str] = None

    @property
    def is_mapped(self) -> bool:
        return bool(self.target_field_name)
