"""
Canonical account / sort-code classification.

Every "which bucket does this key belong to" question goes through
PrefixClassifier: keys are matched by string prefix of their decimal
representation and the longest matching prefix wins. Tables are plain
mappings of bucket -> prefixes so they can be stored per tenant and injected.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence, Union

from reconciliation.models import AccountType, ReportType


class CashFlowBucket(str, Enum):
    CASH = "cash"
    BANK = "bank"
    CUSTOMERS = "customers"
    SUPPLIERS = "suppliers"
    INVENTORY = "inventory"
    FIXED_ASSETS = "fixedAssets"
    LOANS = "loans"


CASH_BANK_BUCKETS = (CashFlowBucket.CASH, CashFlowBucket.BANK)

Prefix = Union[str, int]
ClassificationTable = Mapping[str, Sequence[Prefix]]

# Chart-of-accounts layout the product ships with; tenants may override it.
DEFAULT_CASH_FLOW_CLASSIFICATION: dict[str, tuple[str, ...]] = {
    CashFlowBucket.CASH.value: ("1000", "1100", "1200"),
    CashFlowBucket.BANK.value: ("1300", "1400", "1500"),
    CashFlowBucket.CUSTOMERS.value: ("1600", "1700"),
    CashFlowBucket.SUPPLIERS.value: ("2000", "2100", "2200"),
    CashFlowBucket.INVENTORY.value: ("1800", "1900"),
    CashFlowBucket.FIXED_ASSETS.value: ("1001", "1002"),
    CashFlowBucket.LOANS.value: ("2500", "2600"),
}

# Coarser layout used by the dashboard indicators.
DEFAULT_KPI_CLASSIFICATION: dict[str, tuple[str, ...]] = {
    CashFlowBucket.CASH.value: ("1",),
    CashFlowBucket.CUSTOMERS.value: ("16", "17"),
    CashFlowBucket.SUPPLIERS.value: ("20", "21"),
}

REPORT_TYPE_BY_SORT_CODE: dict[str, tuple[str, ...]] = {
    ReportType.INCOME.value: ("6",),
    ReportType.COGS.value: ("7",),
    ReportType.OPERATING.value: ("8",),
    ReportType.FINANCIAL.value: ("9",),
}

ACCOUNT_TYPE_BY_SORT_CODE: dict[str, tuple[str, ...]] = {
    AccountType.CUSTOMER.value: ("1",),
    AccountType.SUPPLIER.value: ("2",),
    AccountType.INCOME.value: ("6",),
    AccountType.EXPENSE.value: ("8",),
}


class PrefixClassifier:
    def __init__(self, table: ClassificationTable):
        if table is None:
            raise ValueError("classification table is required")
        self._prefixes: list[tuple[str, str]] = []
        for bucket, prefixes in table.items():
            bucket_name = bucket.value if isinstance(bucket, Enum) else str(bucket)
            for prefix in prefixes:
                text = str(prefix).strip()
                if text:
                    self._prefixes.append((text, bucket_name))
        # Longest prefix first; ties keep table order.
        self._prefixes.sort(key=lambda item: -len(item[0]))

    @property
    def buckets(self) -> set[str]:
        return {bucket for _, bucket in self._prefixes}

    def classify(self, key: Optional[int]) -> Optional[str]:
        if key is None:
            return None
        text = str(key)
        for prefix, bucket in self._prefixes:
            if text.startswith(prefix):
                return bucket
        return None

    def matches(self, key: Optional[int], buckets: Iterable[str]) -> bool:
        wanted = {b.value if isinstance(b, Enum) else b for b in buckets}
        return self.classify(key) in wanted


def normalize_table(table: ClassificationTable) -> dict[str, tuple[str, ...]]:
    return {
        (bucket.value if isinstance(bucket, Enum) else str(bucket)): tuple(
            str(p).strip() for p in prefixes if str(p).strip()
        )
        for bucket, prefixes in table.items()
    }


_REPORT_TYPES = PrefixClassifier(REPORT_TYPE_BY_SORT_CODE)
_ACCOUNT_TYPES = PrefixClassifier(ACCOUNT_TYPE_BY_SORT_CODE)


def detect_report_type(sort_code: Optional[int]) -> Optional[ReportType]:
    bucket = _REPORT_TYPES.classify(sort_code)
    return ReportType(bucket) if bucket else None


def detect_account_type(sort_code: Optional[int]) -> AccountType:
    bucket = _ACCOUNT_TYPES.classify(sort_code)
    return AccountType(bucket) if bucket else AccountType.OTHER
