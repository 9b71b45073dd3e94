from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, Field

from reconciliation.models import LedgerEntry, MonthlyBalance, TrialBalanceRow


def _check_month(value: int) -> int:
    if not 1 <= value <= 12:
        raise ValueError("month must be between 1 and 12")
    return value


Month = Annotated[int, AfterValidator(_check_month)]


class LedgerEntryIn(BaseModel):
    account_key: int | None = None
    account_name: str = ""
    sort_code: int | None = None
    sort_code_name: str = ""
    # Raw value; missing or non-finite amounts come back as diagnostics.
    amount: Any = None
    month: int
    year: int | None = None

    def to_domain(self) -> LedgerEntry:
        return LedgerEntry(**self.model_dump())


class TrialBalanceRowIn(BaseModel):
    account_key: int | None = None
    account_name: str = ""
    sort_code: int | None = None
    sort_code_name: str = ""
    monthly_totals: dict[int, Any] = Field(default_factory=dict)

    def to_domain(self) -> TrialBalanceRow:
        return TrialBalanceRow(**self.model_dump())


class MonthlyBalanceIn(BaseModel):
    account_key: int
    account_name: str = ""
    account_type: str = ""
    month: Month
    year: int
    opening_balance: Decimal
    closing_balance: Decimal

    def to_domain(self) -> MonthlyBalance:
        return MonthlyBalance(**self.model_dump())


class ComparisonRequest(BaseModel):
    ledger: list[LedgerEntryIn] = Field(default_factory=list)
    trial_balance: list[TrialBalanceRowIn] = Field(default_factory=list)
    active_months: list[Month]
    balances: list[MonthlyBalanceIn] = Field(default_factory=list)


class CashFlowRequest(BaseModel):
    balances: list[MonthlyBalanceIn]
    month: Month
    year: int | None = None
    active_months: list[Month] | None = None


class ClassificationIn(BaseModel):
    buckets: dict[str, list[str]]


class ClassificationOut(BaseModel):
    tenant_id: str
    buckets: dict[str, list[str]]


class ColumnMappingIn(BaseModel):
    source_column_name: str
    target_field_name: str | None = None


class MappingSuggestRequest(BaseModel):
    upload_type: str
    columns: list[str]


class MappingSuggestResponse(BaseModel):
    upload_type: str
    mapping: list[ColumnMappingIn]
    missing_required: list[str]
    duplicate_targets: dict[str, list[str]] = Field(default_factory=dict)


class IndexUploadRequest(BaseModel):
    csv_content: str | None = None
    rows: list[dict[str, Any]] | None = None
    mapping: list[ColumnMappingIn] | None = None
    actor: str | None = None


class ParseErrorOut(BaseModel):
    row: int
    message: str
    field: str | None = None


class ReconcileResponse(BaseModel):
    index_type: str
    status: str
    total: int
    added: int
    updated: int
    invalid: int
    errors: list[str]
    parse_errors: list[ParseErrorOut] = Field(default_factory=list)


class SyncRecordOut(BaseModel):
    index_type: str
    source: str
    status: str
    total: int
    added: int
    updated: int
    deleted: int
    error_message: str | None = None
    actor: str | None = None
    timestamp: datetime


class LastSyncResponse(BaseModel):
    last_sync: SyncRecordOut | None = None
