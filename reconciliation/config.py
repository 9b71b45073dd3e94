"""
Reconciliation engine thresholds.

Adjust ReconciliationConfig constants to tune classification behavior:
- AMOUNT_TOLERANCE: Differences at or below this value count as a match
  (absorbs rounding noise in exported figures)
- CRITICAL_THRESHOLD: Absolute difference above which a discrepancy is critical
- WARNING_THRESHOLD: Absolute difference above which a discrepancy is a warning
- LOW_MATCH_RATE_THRESHOLD: Monthly match rate (percent) below which a trend
  warning is raised
- MAX_WARNING_ALERTS: Optional cap on emitted warning-level discrepancy alerts
  (None = uncapped)
"""

from decimal import Decimal
from typing import Optional


class ReconciliationConfig:
    AMOUNT_TOLERANCE: Decimal = Decimal("0.01")

    CRITICAL_THRESHOLD: Decimal = Decimal("10000")
    WARNING_THRESHOLD: Decimal = Decimal("1000")

    LOW_MATCH_RATE_THRESHOLD: Decimal = Decimal("80")

    MAX_WARNING_ALERTS: Optional[int] = None

    FULL_MATCH: Decimal = Decimal("100")


AMOUNT_TOLERANCE = ReconciliationConfig.AMOUNT_TOLERANCE
ZERO = Decimal("0.00")


def exceeds_tolerance(value: Decimal) -> bool:
    return abs(value) > AMOUNT_TOLERANCE
