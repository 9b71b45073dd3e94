from decimal import Decimal

from reconciliation.amounts import coerce_amount, parse_int
from reconciliation.classification import (
    PrefixClassifier,
    detect_account_type,
    detect_report_type,
)
from reconciliation.models import AccountType, LedgerEntry, MonthlyBalance, ReportType
from reconciliation.services.discrepancy_classifier import classify
from reconciliation.services.kpis import calculate_kpis, turnover_days


def closing(key, amount, month):
    return MonthlyBalance(
        account_key=key,
        month=month,
        year=2024,
        opening_balance=Decimal("0"),
        closing_balance=Decimal(amount),
    )


class TestKpis:
    def test_dashboard_indicators(self):
        balances = [
            closing(1000, "1000", 1),
            closing(1000, "1500", 2),
            closing(1600, "365", 2),
            closing(2000, "-730", 2),
        ]
        ledger = [
            LedgerEntry(account_key=6100, amount=Decimal("-3650"), month=2, sort_code=610),
            LedgerEntry(account_key=8100, amount=Decimal("7300"), month=2, sort_code=810),
            LedgerEntry(account_key=3000, amount=Decimal("999"), month=2, sort_code=300),
        ]
        report = classify([], [1, 2])

        kpis = calculate_kpis(balances, ledger, [1, 2], report)

        assert kpis.cash_balance == Decimal("1500")
        assert kpis.previous_cash_balance == Decimal("1000")
        assert kpis.cash_change_pct == 50
        assert kpis.customer_days == Decimal("36.5")
        assert kpis.supplier_days == Decimal("36.5")
        assert kpis.match_rate == 100
        assert kpis.total_discrepancy == 0
        assert kpis.active_alerts == 0

    def test_no_activity(self):
        kpis = calculate_kpis([], [], [], classify([]))

        assert kpis.cash_balance == 0
        assert kpis.cash_change_pct == 0
        assert kpis.customer_days == 0
        assert kpis.supplier_days == 0

    def test_turnover_days_without_volume(self):
        assert turnover_days(Decimal("500"), Decimal("0")) == 0


class TestClassification:
    def test_longest_prefix_wins(self):
        classifier = PrefixClassifier({"cash": ["1"], "customers": ["16", "17"]})

        assert classifier.classify(1600) == "customers"
        assert classifier.classify(1500) == "cash"
        assert classifier.classify(2000) is None
        assert classifier.classify(None) is None
        assert classifier.buckets == {"cash", "customers"}

    def test_report_type(self):
        assert detect_report_type(610) is ReportType.INCOME
        assert detect_report_type(720) is ReportType.COGS
        assert detect_report_type(850) is ReportType.OPERATING
        assert detect_report_type(990) is ReportType.FINANCIAL
        assert detect_report_type(500) is None
        assert detect_report_type(None) is None

    def test_account_type(self):
        assert detect_account_type(150) is AccountType.CUSTOMER
        assert detect_account_type(250) is AccountType.SUPPLIER
        assert detect_account_type(650) is AccountType.INCOME
        assert detect_account_type(850) is AccountType.EXPENSE
        assert detect_account_type(350) is AccountType.OTHER
        assert detect_account_type(None) is AccountType.OTHER


class TestAmounts:
    def test_coerce_amount(self):
        assert coerce_amount("1,234.50") == Decimal("1234.50")
        assert coerce_amount(0.1) == Decimal("0.1")
        assert coerce_amount(12) == Decimal("12")
        assert coerce_amount(" -5 ") == Decimal("-5")

    def test_unusable_amounts(self):
        for value in (None, "", "abc", "nan", float("inf"), Decimal("NaN"), True):
            assert coerce_amount(value) is None

    def test_parse_int(self):
        assert parse_int("610") == 610
        assert parse_int("6.5") is None
        assert parse_int(None) is None
