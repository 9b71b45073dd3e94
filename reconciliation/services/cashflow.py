"""
Cash flow derivation (indirect method) from monthly account balances.

For the target month each balance's change (closing - opening) is summed into
the bucket its account key classifies to. Buckets then feed a simplified
indirect-method statement:

    net income  = cash/bank + customers - suppliers        (heuristic proxy)
    operating   = net income - customers + suppliers - inventory
    investing   = -fixed assets
    financing   = loans
    net change  = closing cash - opening cash               (cash + bank)

The decomposition is an approximation. When the three activities do not add up
to the net cash change within AMOUNT_TOLERANCE the statement carries a
reconciliation_warning instead of hiding the gap.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from reconciliation.amounts import coerce_amount
from reconciliation.classification import (
    CASH_BANK_BUCKETS,
    DEFAULT_CASH_FLOW_CLASSIFICATION,
    CashFlowBucket,
    ClassificationTable,
    PrefixClassifier,
)
from reconciliation.config import ZERO, exceeds_tolerance
from reconciliation.models import (
    Alert,
    AlertCategory,
    CashFlowLink,
    CashFlowStatement,
    CashFlowSummary,
    DataQualityIssue,
    MonthlyBalance,
    Severity,
    WaterfallStep,
)

logger = logging.getLogger(__name__)

# The net income figure below is derived from balance-sheet movements, not
# from the P&L. It must never be presented as an audited net income.
NET_INCOME_IS_HEURISTIC = True


class _BucketTotals:
    def __init__(self):
        self.change: dict[str, Decimal] = {}
        self.opening: dict[str, Decimal] = {}
        self.closing: dict[str, Decimal] = {}

    def add(self, bucket: str, opening: Decimal, closing: Decimal) -> None:
        self.change[bucket] = self.change.get(bucket, ZERO) + (closing - opening)
        self.opening[bucket] = self.opening.get(bucket, ZERO) + opening
        self.closing[bucket] = self.closing.get(bucket, ZERO) + closing

    def delta(self, *buckets) -> Decimal:
        return sum((self.change.get(_name(b), ZERO) for b in buckets), ZERO)

    def opening_total(self, *buckets) -> Decimal:
        return sum((self.opening.get(_name(b), ZERO) for b in buckets), ZERO)

    def closing_total(self, *buckets) -> Decimal:
        return sum((self.closing.get(_name(b), ZERO) for b in buckets), ZERO)


def _name(bucket) -> str:
    return bucket.value if isinstance(bucket, CashFlowBucket) else bucket


def _usable_balances(
    balances: Iterable[MonthlyBalance],
    month: int,
    diagnostics: list[DataQualityIssue],
) -> list[tuple[MonthlyBalance, Decimal, Decimal]]:
    usable = []
    for balance in balances:
        if balance.month != month:
            continue
        opening = coerce_amount(balance.opening_balance)
        closing = coerce_amount(balance.closing_balance)
        if opening is None or closing is None:
            diagnostics.append(
                DataQualityIssue(
                    code="EXCLUDED_INVALID_BALANCE",
                    message=f"Balance for account {balance.account_key} month {month} has a missing or non-finite figure.",
                    account_key=balance.account_key,
                    month=month,
                )
            )
            continue
        usable.append((balance, opening, closing))
    return usable


def _bucket_totals(
    balances: Sequence[MonthlyBalance],
    month: int,
    classifier: PrefixClassifier,
    diagnostics: list[DataQualityIssue],
) -> _BucketTotals:
    totals = _BucketTotals()
    for balance, opening, closing in _usable_balances(balances, month, diagnostics):
        bucket = classifier.classify(balance.account_key)
        if bucket is not None:
            totals.add(bucket, opening, closing)
    return totals


def _validate_month(month: int) -> None:
    if not isinstance(month, int) or not 1 <= month <= 12:
        raise ValueError(f"month must be between 1 and 12, got {month!r}")


class CashFlowDeriver:
    """
    Derive a CashFlowStatement for one month.

    The classification table is injected so tenants with a different chart of
    accounts can supply their own prefixes.

    Usage:
        deriver = CashFlowDeriver(tenant_table)
        statement = deriver.derive(balances, month=3)
        steps = build_waterfall(statement)
    """

    def __init__(self, classification: Optional[ClassificationTable] = None):
        self.classification = classification or DEFAULT_CASH_FLOW_CLASSIFICATION
        self.classifier = PrefixClassifier(self.classification)

    def derive(self, balances: Sequence[MonthlyBalance], month: int) -> CashFlowStatement:
        if balances is None:
            raise ValueError("balances are required")
        _validate_month(month)

        diagnostics: list[DataQualityIssue] = []
        totals = _bucket_totals(balances, month, self.classifier, diagnostics)

        customers = totals.delta(CashFlowBucket.CUSTOMERS)
        suppliers = totals.delta(CashFlowBucket.SUPPLIERS)
        inventory = totals.delta(CashFlowBucket.INVENTORY)
        cash_bank = totals.delta(*CASH_BANK_BUCKETS)
        fixed_assets = totals.delta(CashFlowBucket.FIXED_ASSETS)
        loans = totals.delta(CashFlowBucket.LOANS)

        net_income = cash_bank + customers - suppliers
        operating = net_income - customers + suppliers - inventory
        investing = -fixed_assets
        financing = loans

        opening_cash = totals.opening_total(*CASH_BANK_BUCKETS)
        closing_cash = totals.closing_total(*CASH_BANK_BUCKETS)
        net_cash_change = closing_cash - opening_cash

        gap = operating + investing + financing - net_cash_change
        warning = None
        if exceeds_tolerance(gap):
            warning = (
                f"Operating ({operating}) + investing ({investing}) + financing ({financing}) "
                f"differs from net cash change ({net_cash_change}) by {gap}."
            )
            logger.warning("Cash flow for month %s does not reconcile: gap %s", month, gap)

        return CashFlowStatement(
            month=month,
            net_income=net_income,
            accounts_receivable_change=customers,
            inventory_change=inventory,
            accounts_payable_change=suppliers,
            operating_cash_flow=operating,
            property_purchase=fixed_assets if fixed_assets > 0 else ZERO,
            property_sale=-fixed_assets if fixed_assets < 0 else ZERO,
            investing_cash_flow=investing,
            loan_proceeds=loans if loans > 0 else ZERO,
            loan_repayments=-loans if loans < 0 else ZERO,
            financing_cash_flow=financing,
            net_cash_change=net_cash_change,
            opening_cash=opening_cash,
            closing_cash=closing_cash,
            reconciliation_warning=warning,
            diagnostics=tuple(diagnostics),
        )

    def monthly_summaries(
        self,
        balances: Sequence[MonthlyBalance],
        active_months: Iterable[int],
        year: Optional[int] = None,
    ) -> list[CashFlowSummary]:
        """Per-month trend: working-capital operating proxy, total change, closing cash."""
        summaries = []
        for month in sorted(set(active_months)):
            _validate_month(month)
            usable = _usable_balances(balances, month, [])
            totals = _BucketTotals()
            for balance, opening, closing in usable:
                bucket = self.classifier.classify(balance.account_key)
                if bucket is not None:
                    totals.add(bucket, opening, closing)
            summaries.append(
                CashFlowSummary(
                    month=month,
                    year=year,
                    operating=totals.delta(CashFlowBucket.SUPPLIERS) - totals.delta(CashFlowBucket.CUSTOMERS),
                    investing=ZERO,
                    financing=ZERO,
                    net_change=sum((closing - opening for _, opening, closing in usable), ZERO),
                    closing_balance=totals.closing_total(*CASH_BANK_BUCKETS),
                )
            )
        return summaries


def derive(
    balances: Sequence[MonthlyBalance],
    month: int,
    classification: Optional[ClassificationTable] = None,
) -> CashFlowStatement:
    return CashFlowDeriver(classification).derive(balances, month)


# Adjustment lines in the order they appear between net income and the
# operating subtotal. The sign maps the statement field onto its cash effect.
WATERFALL_ADJUSTMENTS = (
    ("Depreciation", "depreciation", 1),
    ("AR Change", "accounts_receivable_change", -1),
    ("Inventory", "inventory_change", -1),
    ("AP Change", "accounts_payable_change", 1),
    ("Other Operating", "other_operating", 1),
)


def build_waterfall(statement: CashFlowStatement) -> list[WaterfallStep]:
    cumulative = statement.net_income
    steps = [WaterfallStep(name="Net Income", value=statement.net_income, cumulative=cumulative)]

    for name, attr, sign in WATERFALL_ADJUSTMENTS:
        value = getattr(statement, attr) * sign
        if value == 0:
            continue
        cumulative += value
        steps.append(WaterfallStep(name=name, value=value, cumulative=cumulative))

    operating = statement.operating_cash_flow
    steps.append(
        WaterfallStep(name="Operating CF", value=operating, cumulative=operating, is_subtotal=True)
    )
    cumulative = operating

    if statement.investing_cash_flow != 0:
        cumulative += statement.investing_cash_flow
        steps.append(
            WaterfallStep(name="Investing CF", value=statement.investing_cash_flow, cumulative=cumulative)
        )

    if statement.financing_cash_flow != 0:
        cumulative += statement.financing_cash_flow
        steps.append(
            WaterfallStep(name="Financing CF", value=statement.financing_cash_flow, cumulative=cumulative)
        )

    steps.append(
        WaterfallStep(
            name="Net Change",
            value=statement.net_cash_change,
            cumulative=statement.net_cash_change,
            is_total=True,
        )
    )
    return steps


def build_flow_links(statement: CashFlowStatement) -> list[CashFlowLink]:
    """Source -> target money movements for a flow diagram; only positive values."""
    links = [
        CashFlowLink("Net Income", "Operating Activities", statement.net_income),
        CashFlowLink("Supplier Credit", "Operating Activities", statement.accounts_payable_change),
        CashFlowLink("Operating Activities", "Customer Increase", statement.accounts_receivable_change),
        CashFlowLink("Operating Activities", "Inventory Increase", statement.inventory_change),
    ]

    operating = statement.operating_cash_flow
    if operating > 0:
        links.append(CashFlowLink("Operating Activities", "Cash Balance", operating))
    elif operating < 0:
        links.append(CashFlowLink("Cash Balance", "Operating Activities", -operating))

    investing = statement.investing_cash_flow
    if investing < 0:
        links.append(CashFlowLink("Cash Balance", "Investments", -investing))
    elif investing > 0:
        links.append(CashFlowLink("Asset Sales", "Cash Balance", investing))

    links.append(CashFlowLink("Loan Proceeds", "Cash Balance", statement.loan_proceeds))
    links.append(CashFlowLink("Cash Balance", "Loan Repayments", statement.loan_repayments))
    return [link for link in links if link.value > 0]


def cash_flow_alerts(statement: CashFlowStatement, now: Optional[datetime] = None) -> list[Alert]:
    timestamp = now or datetime.now(timezone.utc)
    alerts = []
    if statement.closing_cash < 0:
        alerts.append(
            Alert(
                id=f"cash-negative-{statement.month}",
                severity=Severity.CRITICAL,
                category=AlertCategory.CASH,
                title="Negative cash balance",
                message=f"Closing cash for month {statement.month} is {statement.closing_cash}",
                value=statement.closing_cash,
                threshold=ZERO,
                month=statement.month,
                timestamp=timestamp,
            )
        )
    if statement.reconciliation_warning:
        alerts.append(
            Alert(
                id=f"cash-reconciliation-{statement.month}",
                severity=Severity.WARNING,
                category=AlertCategory.CASH,
                title="Cash flow does not reconcile",
                message=statement.reconciliation_warning,
                value=statement.components_total - statement.net_cash_change,
                month=statement.month,
                timestamp=timestamp,
            )
        )
    return alerts
