"""
Ledger vs trial-balance comparison.

Joins ledger (biurim) entries with trial-balance rows per account and month:
- Ledger totals sum every usable entry for the account
- Trial-balance totals sum only the active months
- Accounts present on one side only are compared against zero

Entries that cannot be aggregated (missing key, missing or non-finite amount)
are left out and reported as DataQualityIssue diagnostics.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from reconciliation.amounts import coerce_amount
from reconciliation.config import ZERO, ReconciliationConfig
from reconciliation.models import (
    ComparisonRecord,
    ComparisonResult,
    DataQualityIssue,
    LedgerEntry,
    MonthlyComparison,
    TrialBalanceRow,
)


def match_rate(ledger_total: Decimal, balance_total: Decimal) -> Decimal:
    if balance_total != 0:
        rate = ReconciliationConfig.FULL_MATCH - (
            abs(ledger_total - balance_total) / abs(balance_total) * 100
        )
        return max(Decimal("0"), rate)
    if ledger_total == 0:
        return ReconciliationConfig.FULL_MATCH
    return Decimal("0")


class _AccountAggregate:
    __slots__ = ("account_name", "sort_code", "sort_code_name", "total", "by_month")

    def __init__(self):
        self.account_name = ""
        self.sort_code: Optional[int] = None
        self.sort_code_name = ""
        self.total = ZERO
        self.by_month: dict[int, Decimal] = defaultdict(lambda: ZERO)

    def describe(self, account_name, sort_code, sort_code_name) -> None:
        # First non-empty value wins.
        if not self.account_name and account_name:
            self.account_name = account_name
        if self.sort_code is None and sort_code is not None:
            self.sort_code = sort_code
        if not self.sort_code_name and sort_code_name:
            self.sort_code_name = sort_code_name


class ComparisonEngine:
    """
    Build one ComparisonRecord per account key found in either input.

    Usage:
        result = ComparisonEngine.compare(ledger, trial_balance, active_months=[1, 2, 3])
        for record in result.records:
            print(record.account_key, record.difference, record.match_rate)
    """

    @staticmethod
    def compare(
        ledger: Sequence[LedgerEntry],
        balances: Sequence[TrialBalanceRow],
        active_months: Iterable[int],
    ) -> ComparisonResult:
        if ledger is None or balances is None or active_months is None:
            raise ValueError("ledger, balances and active_months are required")

        months = sorted(set(active_months))
        diagnostics: list[DataQualityIssue] = []

        ledger_by_account = ComparisonEngine._aggregate_ledger(ledger, diagnostics)
        balance_by_account = ComparisonEngine._aggregate_balances(balances, diagnostics)

        records = [
            ComparisonEngine._build_record(
                account_key,
                ledger_by_account.get(account_key),
                balance_by_account.get(account_key),
                months,
            )
            for account_key in sorted(set(ledger_by_account) | set(balance_by_account))
        ]
        return ComparisonResult(records=tuple(records), diagnostics=tuple(diagnostics))

    @staticmethod
    def _aggregate_ledger(
        ledger: Sequence[LedgerEntry], diagnostics: list[DataQualityIssue]
    ) -> dict[int, _AccountAggregate]:
        accounts: dict[int, _AccountAggregate] = {}
        for entry in ledger:
            if entry.account_key is None:
                diagnostics.append(
                    DataQualityIssue(
                        code="EXCLUDED_MISSING_ACCOUNT_KEY",
                        message="Ledger entry without an account key was excluded.",
                        month=entry.month,
                    )
                )
                continue
            amount = coerce_amount(entry.amount)
            if amount is None:
                diagnostics.append(
                    DataQualityIssue(
                        code="EXCLUDED_INVALID_AMOUNT",
                        message=f"Ledger entry for account {entry.account_key} has a missing or non-finite amount ({entry.amount!r}).",
                        account_key=entry.account_key,
                        month=entry.month,
                    )
                )
                continue

            account = accounts.get(entry.account_key)
            if account is None:
                account = accounts[entry.account_key] = _AccountAggregate()
            account.describe(entry.account_name, entry.sort_code, entry.sort_code_name)
            account.total += amount
            account.by_month[entry.month] += amount
        return accounts

    @staticmethod
    def _aggregate_balances(
        balances: Sequence[TrialBalanceRow], diagnostics: list[DataQualityIssue]
    ) -> dict[int, _AccountAggregate]:
        accounts: dict[int, _AccountAggregate] = {}
        for row in balances:
            if row.account_key is None:
                diagnostics.append(
                    DataQualityIssue(
                        code="EXCLUDED_MISSING_ACCOUNT_KEY",
                        message="Trial-balance row without an account key was excluded.",
                    )
                )
                continue

            account = accounts.get(row.account_key)
            if account is None:
                account = accounts[row.account_key] = _AccountAggregate()
            else:
                diagnostics.append(
                    DataQualityIssue(
                        code="DUPLICATE_TRIAL_BALANCE_ROW",
                        message=f"Account {row.account_key} appears more than once in the trial balance; monthly figures were summed.",
                        account_key=row.account_key,
                    )
                )
            account.describe(row.account_name, row.sort_code, row.sort_code_name)

            for month, raw in (row.monthly_totals or {}).items():
                if raw is None:
                    continue
                amount = coerce_amount(raw)
                if amount is None:
                    diagnostics.append(
                        DataQualityIssue(
                            code="EXCLUDED_INVALID_AMOUNT",
                            message=f"Trial-balance figure for account {row.account_key} month {month} is not a finite number ({raw!r}).",
                            account_key=row.account_key,
                            month=int(month),
                        )
                    )
                    continue
                account.by_month[int(month)] += amount
        return accounts

    @staticmethod
    def _build_record(
        account_key: int,
        ledger: Optional[_AccountAggregate],
        balance: Optional[_AccountAggregate],
        months: list[int],
    ) -> ComparisonRecord:
        ledger_total = ledger.total if ledger else ZERO
        balance_total = (
            sum((balance.by_month.get(month, ZERO) for month in months), ZERO)
            if balance
            else ZERO
        )

        per_month = []
        for month in months:
            ledger_amount = ledger.by_month.get(month, ZERO) if ledger else ZERO
            balance_amount = balance.by_month.get(month, ZERO) if balance else ZERO
            per_month.append(
                MonthlyComparison(
                    month=month,
                    ledger=ledger_amount,
                    balance=balance_amount,
                    diff=ledger_amount - balance_amount,
                )
            )

        def _pick(attr: str, empty):
            for source in (ledger, balance):
                if source is not None:
                    value = getattr(source, attr)
                    if value not in (None, ""):
                        return value
            return empty

        return ComparisonRecord(
            account_key=account_key,
            account_name=_pick("account_name", ""),
            sort_code=_pick("sort_code", None),
            sort_code_name=_pick("sort_code_name", ""),
            ledger_total=ledger_total,
            balance_total=balance_total,
            difference=ledger_total - balance_total,
            match_rate=match_rate(ledger_total, balance_total),
            per_month=tuple(per_month),
        )


def compare(
    ledger: Sequence[LedgerEntry],
    balances: Sequence[TrialBalanceRow],
    active_months: Iterable[int],
) -> ComparisonResult:
    return ComparisonEngine.compare(ledger, balances, active_months)
