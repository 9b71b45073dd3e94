"""
Severity classification for comparison output.

Turns ComparisonRecords into:
- DiscrepancySummary (account counts, overall match rate, severity counts)
- Alerts (critical / warning / info per discrepant account, trend warnings
  for months with a low match rate)
- Rollups by sort code and by month
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from reconciliation.config import ZERO, ReconciliationConfig, exceeds_tolerance
from reconciliation.models import (
    SEVERITY_ORDER,
    Alert,
    AlertCategory,
    ComparisonRecord,
    DiscrepancyByCode,
    DiscrepancyReport,
    DiscrepancySummary,
    MonthlyDiscrepancy,
    Severity,
)


def severity_for(difference: Decimal) -> Severity:
    magnitude = abs(difference)
    if magnitude > ReconciliationConfig.CRITICAL_THRESHOLD:
        return Severity.CRITICAL
    if magnitude > ReconciliationConfig.WARNING_THRESHOLD:
        return Severity.WARNING
    return Severity.INFO


def is_discrepant(record: ComparisonRecord) -> bool:
    return exceeds_tolerance(record.difference)


def sort_alerts(alerts: Iterable[Alert]) -> list[Alert]:
    # sorted() is stable, so ties keep their emission order.
    return sorted(alerts, key=lambda alert: SEVERITY_ORDER[alert.severity])


def _rate(total: int, discrepant: int) -> Decimal:
    if total == 0:
        return ReconciliationConfig.FULL_MATCH
    return Decimal(total - discrepant) / Decimal(total) * 100


class DiscrepancyClassifier:
    """
    Classify comparison records by severity.

    Usage:
        report = DiscrepancyClassifier().classify(result.records, active_months=[1, 2, 3])
        report.summary.critical_count
    """

    _ALERT_TEXT = {
        Severity.CRITICAL: ("Significant discrepancy", "Difference of {amount} found in account {name}"),
        Severity.WARNING: ("Moderate discrepancy", "Difference of {amount} in account {name}"),
        Severity.INFO: ("Minor discrepancy", "Difference of {amount} in account {name}"),
    }

    _ALERT_THRESHOLD = {
        Severity.CRITICAL: ReconciliationConfig.CRITICAL_THRESHOLD,
        Severity.WARNING: ReconciliationConfig.WARNING_THRESHOLD,
        Severity.INFO: ReconciliationConfig.AMOUNT_TOLERANCE,
    }

    def __init__(
        self,
        max_warning_alerts: Optional[int] = ReconciliationConfig.MAX_WARNING_ALERTS,
        low_match_rate_threshold: Decimal = ReconciliationConfig.LOW_MATCH_RATE_THRESHOLD,
    ):
        self.max_warning_alerts = max_warning_alerts
        self.low_match_rate_threshold = low_match_rate_threshold

    def classify(
        self,
        records: Sequence[ComparisonRecord],
        active_months: Optional[Iterable[int]] = None,
        *,
        excluded_entries: int = 0,
        now: Optional[datetime] = None,
    ) -> DiscrepancyReport:
        if records is None:
            raise ValueError("records are required")

        timestamp = now or datetime.now(timezone.utc)
        records = list(records)
        if active_months is None:
            months = sorted({m.month for record in records for m in record.per_month})
        else:
            months = sorted(set(active_months))

        discrepant = [record for record in records if is_discrepant(record)]
        summary = self._summarize(records, discrepant, excluded_entries)
        by_code = self._by_code(discrepant)
        by_month = self._by_month(records, months)
        alerts = sort_alerts(
            self._discrepancy_alerts(discrepant, timestamp)
            + self._trend_alerts(by_month, timestamp)
        )
        return DiscrepancyReport(
            summary=summary,
            alerts=tuple(alerts),
            by_code=tuple(by_code),
            by_month=tuple(by_month),
        )

    @staticmethod
    def _summarize(
        records: list[ComparisonRecord],
        discrepant: list[ComparisonRecord],
        excluded_entries: int,
    ) -> DiscrepancySummary:
        severities = [severity_for(record.difference) for record in discrepant]
        return DiscrepancySummary(
            total_accounts=len(records),
            matched_accounts=len(records) - len(discrepant),
            discrepancy_accounts=len(discrepant),
            match_rate=_rate(len(records), len(discrepant)),
            total_discrepancy_amount=sum((abs(r.difference) for r in discrepant), ZERO),
            critical_count=severities.count(Severity.CRITICAL),
            warning_count=severities.count(Severity.WARNING),
            info_count=severities.count(Severity.INFO),
            excluded_entries=excluded_entries,
        )

    @staticmethod
    def _by_code(discrepant: list[ComparisonRecord]) -> list[DiscrepancyByCode]:
        groups: "OrderedDict[Optional[int], dict]" = OrderedDict()
        for record in discrepant:
            group = groups.setdefault(
                record.sort_code,
                {"name": record.sort_code_name, "amount": ZERO, "count": 0},
            )
            group["amount"] += abs(record.difference)
            group["count"] += 1

        grand_total = sum((g["amount"] for g in groups.values()), ZERO)
        rows = [
            DiscrepancyByCode(
                code=code,
                name=group["name"],
                discrepancy_amount=group["amount"],
                discrepancy_count=group["count"],
                percentage=(group["amount"] / grand_total * 100) if grand_total > 0 else Decimal("0"),
            )
            for code, group in groups.items()
        ]
        rows.sort(key=lambda row: row.discrepancy_amount, reverse=True)
        return rows

    @staticmethod
    def _by_month(records: list[ComparisonRecord], months: list[int]) -> list[MonthlyDiscrepancy]:
        result = []
        for month in months:
            diffs = []
            for record in records:
                entry = next((m for m in record.per_month if m.month == month), None)
                diffs.append(abs(entry.diff) if entry else ZERO)
            flagged = sum(1 for diff in diffs if exceeds_tolerance(diff))
            result.append(
                MonthlyDiscrepancy(
                    month=month,
                    total_discrepancy=sum(diffs, ZERO),
                    accounts_with_discrepancy=flagged,
                    match_rate=_rate(len(records), flagged),
                )
            )
        return result

    def _discrepancy_alerts(self, discrepant: list[ComparisonRecord], timestamp: datetime) -> list[Alert]:
        alerts: list[Alert] = []
        warnings_emitted = 0
        for record in discrepant:
            severity = severity_for(record.difference)
            if severity is Severity.WARNING:
                if self.max_warning_alerts is not None and warnings_emitted >= self.max_warning_alerts:
                    continue
                warnings_emitted += 1
            title, template = self._ALERT_TEXT[severity]
            alerts.append(
                Alert(
                    id=f"disc-{severity.value}-{record.account_key}",
                    severity=severity,
                    category=AlertCategory.DISCREPANCY,
                    title=title,
                    message=template.format(amount=abs(record.difference), name=record.account_name or record.account_key),
                    value=record.difference,
                    threshold=self._ALERT_THRESHOLD[severity],
                    account_key=record.account_key,
                    account_name=record.account_name,
                    timestamp=timestamp,
                )
            )
        return alerts

    def _trend_alerts(self, by_month: list[MonthlyDiscrepancy], timestamp: datetime) -> list[Alert]:
        return [
            Alert(
                id=f"match-{month.month}",
                severity=Severity.WARNING,
                category=AlertCategory.TREND,
                title="Low match rate",
                message=f"Match rate for month {month.month} is only {month.match_rate:.1f}%",
                value=month.match_rate,
                threshold=self.low_match_rate_threshold,
                month=month.month,
                timestamp=timestamp,
            )
            for month in by_month
            if month.match_rate < self.low_match_rate_threshold
        ]


def classify(
    records: Sequence[ComparisonRecord],
    active_months: Optional[Iterable[int]] = None,
    **kwargs,
) -> DiscrepancyReport:
    return DiscrepancyClassifier().classify(records, active_months, **kwargs)
