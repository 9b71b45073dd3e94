"""
Dashboard indicators derived from balances, ledger entries and a discrepancy report.

Customer and supplier days are the simplified turnover ratios:
    customer days = customer balance / (revenue / 365)
    supplier days = |supplier balance| / (operating cost / 365)
Revenue and cost are |amount| sums of ledger entries whose sort code is an
income (6xx) or operating expense (8xx) code. A ratio with no revenue or cost
behind it is 0.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from reconciliation.amounts import coerce_amount
from reconciliation.classification import (
    DEFAULT_KPI_CLASSIFICATION,
    CashFlowBucket,
    ClassificationTable,
    PrefixClassifier,
    detect_report_type,
)
from reconciliation.config import ZERO
from reconciliation.models import DiscrepancyReport, LedgerEntry, MonthlyBalance, ReportType

DAYS_IN_YEAR = Decimal("365")


@dataclass(frozen=True)
class DashboardKpis:
    cash_balance: Decimal
    previous_cash_balance: Decimal
    cash_change_pct: Decimal
    match_rate: Decimal
    total_discrepancy: Decimal
    customer_days: Decimal
    supplier_days: Decimal
    active_alerts: int


def _closing_total(
    balances: Iterable[MonthlyBalance],
    month: Optional[int],
    classifier: PrefixClassifier,
    bucket: CashFlowBucket,
    absolute: bool = False,
) -> Decimal:
    if month is None:
        return ZERO
    total = ZERO
    for balance in balances:
        if balance.month != month or not classifier.matches(balance.account_key, [bucket]):
            continue
        closing = coerce_amount(balance.closing_balance)
        if closing is None:
            continue
        total += abs(closing) if absolute else closing
    return total


def ledger_volume(ledger: Iterable[LedgerEntry], report_type: ReportType) -> Decimal:
    total = ZERO
    for entry in ledger:
        if detect_report_type(entry.sort_code) is not report_type:
            continue
        amount = coerce_amount(entry.amount)
        if amount is not None:
            total += abs(amount)
    return total


def turnover_days(balance: Decimal, volume: Decimal) -> Decimal:
    if volume <= 0:
        return ZERO
    return balance / (volume / DAYS_IN_YEAR)


def calculate_kpis(
    balances: Sequence[MonthlyBalance],
    ledger: Sequence[LedgerEntry],
    active_months: Iterable[int],
    report: DiscrepancyReport,
    classification: Optional[ClassificationTable] = None,
) -> DashboardKpis:
    """Indicators for the last active month, compared against the one before it."""
    classifier = PrefixClassifier(classification or DEFAULT_KPI_CLASSIFICATION)
    months = sorted(set(active_months))
    current = months[-1] if months else None
    previous = months[-2] if len(months) > 1 else None

    cash = _closing_total(balances, current, classifier, CashFlowBucket.CASH)
    previous_cash = _closing_total(balances, previous, classifier, CashFlowBucket.CASH)
    cash_change = (cash - previous_cash) / previous_cash * 100 if previous_cash != 0 else ZERO

    customers = _closing_total(balances, current, classifier, CashFlowBucket.CUSTOMERS)
    suppliers = _closing_total(balances, current, classifier, CashFlowBucket.SUPPLIERS, absolute=True)

    return DashboardKpis(
        cash_balance=cash,
        previous_cash_balance=previous_cash,
        cash_change_pct=cash_change,
        match_rate=report.summary.match_rate,
        total_discrepancy=report.summary.total_discrepancy_amount,
        customer_days=turnover_days(customers, ledger_volume(ledger, ReportType.INCOME)),
        supplier_days=turnover_days(suppliers, ledger_volume(ledger, ReportType.OPERATING)),
        active_alerts=len(report.alerts),
    )
