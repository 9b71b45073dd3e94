"""
Turn uploaded index rows into reconciler inputs.

Rows may carry canonical field names (after apply_mapping) or the raw column
headers of a Hashavshevet export; the first non-empty alias wins. Rows are
never dropped here: a row without a key or name becomes an input the
reconciler rejects and reports, so every uploaded row is accounted for.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

from reconciliation.amounts import coerce_amount, parse_int
from reconciliation.classification import detect_account_type, detect_report_type
from reconciliation.csv_parser import parse_date
from reconciliation.models import AccountIndexInput, AccountType, SortCodeInput

SORT_CODE_ALIASES = {
    "code": ("code", "קוד מיון", "קוד"),
    "name": ("name", "שם קוד מיון", "שם"),
    "parent_code": ("parent_code", "קוד אב"),
    "sort_order": ("sort_order", "סדר"),
}

ACCOUNT_ALIASES = {
    "account_key": ("account_key", "מפתח", "key"),
    "account_name": ("account_name", "שם", "name"),
    "sort_code": ("sort_code", "קוד מיון"),
    "account_type": ("account_type", "סוג"),
    "id_number": ("id_number", "מספר זהות", "ח.פ"),
    "address": ("address", "כתובת"),
    "city": ("city", "עיר"),
    "phone": ("phone", "טלפון"),
    "email": ("email", "דואר אלקטרוני"),
    "current_balance": ("current_balance", "יתרה"),
    "balance_date": ("balance_date", "תאריך יתרה"),
}

FORCED_ACCOUNT_TYPES = {
    "customers": AccountType.CUSTOMER,
    "suppliers": AccountType.SUPPLIER,
}


def _pick(row: Mapping[str, Any], aliases: Iterable[str]) -> Any:
    for alias in aliases:
        value = row.get(alias)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip() or None


def parse_sort_code_rows(rows: Iterable[Mapping[str, Any]]) -> list[SortCodeInput]:
    inputs = []
    for row in rows:
        code = parse_int(_pick(row, SORT_CODE_ALIASES["code"]))
        inputs.append(
            SortCodeInput(
                code=code,
                name=_text(_pick(row, SORT_CODE_ALIASES["name"])) or "",
                parent_code=parse_int(_pick(row, SORT_CODE_ALIASES["parent_code"])),
                report_type=detect_report_type(code),
                sort_order=parse_int(_pick(row, SORT_CODE_ALIASES["sort_order"])),
            )
        )
    return inputs


def _account_type(row: Mapping[str, Any], sort_code: Optional[int], upload_type: str) -> AccountType:
    forced = FORCED_ACCOUNT_TYPES.get(upload_type)
    if forced is not None:
        return forced
    explicit = _text(_pick(row, ACCOUNT_ALIASES["account_type"]))
    if explicit:
        try:
            return AccountType(explicit.casefold())
        except ValueError:
            pass
    return detect_account_type(sort_code)


def parse_account_rows(
    rows: Iterable[Mapping[str, Any]],
    upload_type: str = "accounts",
) -> list[AccountIndexInput]:
    """
    Build AccountIndexInput records.

    upload_type "customers" / "suppliers" forces the account type; for a
    general "accounts" upload an explicit type column is honoured, otherwise
    the type is derived from the sort code.
    """
    inputs = []
    for row in rows:
        sort_code = parse_int(_pick(row, ACCOUNT_ALIASES["sort_code"]))
        inputs.append(
            AccountIndexInput(
                account_key=parse_int(_pick(row, ACCOUNT_ALIASES["account_key"])),
                account_name=_text(_pick(row, ACCOUNT_ALIASES["account_name"])) or "",
                sort_code=sort_code,
                account_type=_account_type(row, sort_code, upload_type),
                id_number=_text(_pick(row, ACCOUNT_ALIASES["id_number"])),
                address=_text(_pick(row, ACCOUNT_ALIASES["address"])),
                city=_text(_pick(row, ACCOUNT_ALIASES["city"])),
                phone=_text(_pick(row, ACCOUNT_ALIASES["phone"])),
                email=_text(_pick(row, ACCOUNT_ALIASES["email"])),
                current_balance=coerce_amount(_pick(row, ACCOUNT_ALIASES["current_balance"])),
                balance_date=parse_date(_pick(row, ACCOUNT_ALIASES["balance_date"])),
            )
        )
    return inputs


def parse_index_rows(rows: Iterable[Mapping[str, Any]], upload_type: str):
    if upload_type == "sort_codes":
        return parse_sort_code_rows(rows)
    if upload_type in ("accounts", "customers", "suppliers"):
        return parse_account_rows(rows, upload_type)
    raise ValueError(f"Unknown index upload type: {upload_type!r}")
