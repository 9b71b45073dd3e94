from decimal import Decimal, InvalidOperation
from typing import Any, Optional


def coerce_amount(value: Any) -> Optional[Decimal]:
    """
    Convert a raw amount to Decimal.

    Returns None for missing, unparsable or non-finite values so callers can
    report them instead of folding them into totals as zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, float):
        # str() keeps the shortest repr (0.1 -> "0.1") instead of the binary expansion
        value = str(value)
    if isinstance(value, str):
        value = value.replace(",", "").strip()
        if not value:
            return None
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return None
    return amount if amount.is_finite() else None


def parse_int(value: Any) -> Optional[int]:
    amount = coerce_amount(value)
    if amount is None or amount != amount.to_integral_value():
        return None
    return int(amount)
