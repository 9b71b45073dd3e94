"""
Column mapping for uploaded files.

Source files come from accounting exports whose header rows vary between
tenants (English names, Hebrew display labels, stray whitespace). A mapping
ties each source column to at most one canonical target field:

1. suggest_mapping() proposes a mapping by exact name/label/alias match
2. The operator reviews it with update_mapping(); duplicate_targets() flags
   targets proposed for more than one column
3. validate_required_fields() / ensure_required_fields() gate the upload
4. apply_mapping() renames row keys before parsing
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Sequence

from reconciliation.exceptions import MissingRequiredColumnsError
from reconciliation.models import ColumnMapping, TargetField


TARGET_FIELDS: dict[str, tuple[TargetField, ...]] = {
    "transactions": (
        TargetField("koteret", "מספר מסמך"),
        TargetField("sort_code", "קוד מיון"),
        TargetField("sort_code_name", "שם קוד מיון"),
        TargetField("account_key", "מפתח חשבון"),
        TargetField("account_name", "שם חשבון"),
        TargetField("amount", "סכום"),
        TargetField("details", "פרטים"),
        TargetField("transaction_date", "תאריך"),
        TargetField("counter_account_name", "שם חשבון נגדי"),
        TargetField("counter_account_number", "מספר חשבון נגדי"),
    ),
    "balances": (
        TargetField("account_key", "מפתח חשבון"),
        TargetField("account_name", "שם חשבון"),
        TargetField("month", "חודש"),
        TargetField("year", "שנה"),
        TargetField("opening_balance", "יתרת פתיחה"),
        TargetField("closing_balance", "יתרת סגירה"),
    ),
    "categories": (
        TargetField("code", "קוד"),
        TargetField("name", "שם"),
        TargetField("type", "סוג"),
        TargetField("parent_code", "קוד הורה"),
        TargetField("sort_order", "סדר"),
    ),
    "accounts": (
        TargetField("account_key", "מפתח", aliases=("key",)),
        TargetField("account_name", "שם", aliases=("name",)),
        TargetField("sort_code", "קוד מיון"),
        TargetField("account_type", "סוג"),
        TargetField("id_number", "מספר זהות", aliases=("ח.פ",)),
        TargetField("address", "כתובת"),
        TargetField("city", "עיר"),
        TargetField("phone", "טלפון"),
        TargetField("email", "דואר אלקטרוני"),
        TargetField("current_balance", "יתרה"),
        TargetField("balance_date", "תאריך יתרה"),
        TargetField("category_code", "קוד קטגוריה"),
    ),
    "vendors": (
        TargetField("vendor_key", "מפתח ספק"),
        TargetField("vendor_name", "שם ספק"),
        TargetField("category", "קטגוריה"),
    ),
    "sort_codes": (
        TargetField("code", "קוד מיון", aliases=("קוד",)),
        TargetField("name", "שם קוד מיון", aliases=("שם",)),
        TargetField("parent_code", "קוד אב"),
        TargetField("sort_order", "סדר"),
    ),
}

# Customer and supplier index exports share the account layout.
TARGET_FIELDS["customers"] = TARGET_FIELDS["accounts"]
TARGET_FIELDS["suppliers"] = TARGET_FIELDS["accounts"]

REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "transactions": ("transaction_date", "amount"),
    "balances": ("account_key", "month", "year"),
    "categories": ("code", "name"),
    "accounts": ("account_key", "account_name"),
    "customers": ("account_key", "account_name"),
    "suppliers": ("account_key", "account_name"),
    "vendors": ("vendor_key", "vendor_name"),
    "sort_codes": ("code", "name"),
}


def _normalize(text: Any) -> str:
    if text is None:
        return ""
    return str(text).strip().casefold()


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def target_fields_for(upload_type: str) -> tuple[TargetField, ...]:
    try:
        return TARGET_FIELDS[upload_type]
    except KeyError:
        raise ValueError(f"Unknown upload type: {upload_type!r}") from None


def suggest_mapping(
    source_columns: Iterable[str],
    target_fields: Sequence[TargetField],
) -> list[ColumnMapping]:
    """
    Propose a target field for every source column.

    Each column is matched on its own against the canonical name, display
    label and aliases of every field, after trimming and case-folding; the
    first field that matches wins. Two columns may be proposed the same
    target; duplicate_targets() lists those for review.
    """
    lookup: dict[str, str] = {}
    for target in target_fields:
        for alias in (target.name, target.label, *target.aliases):
            lookup.setdefault(_normalize(alias), target.name)
    lookup.pop("", None)

    return [
        ColumnMapping(source_column_name=column, target_field_name=lookup.get(_normalize(column)))
        for column in source_columns
    ]


def duplicate_targets(mapping: Sequence[ColumnMapping]) -> dict[str, list[str]]:
    """Targets proposed for more than one source column, with those columns in order."""
    columns: dict[str, list[str]] = {}
    for entry in mapping:
        if entry.is_mapped:
            columns.setdefault(entry.target_field_name, []).append(entry.source_column_name)
    return {target: names for target, names in columns.items() if len(names) > 1}


def validate_required_fields(
    mapping: Sequence[ColumnMapping],
    required_field_names: Iterable[str],
) -> list[str]:
    """Return the required fields that no column is mapped to, in the given order."""
    mapped = {m.target_field_name for m in mapping if m.is_mapped}
    return [name for name in required_field_names if name not in mapped]


def ensure_required_fields(
    mapping: Sequence[ColumnMapping],
    required_field_names: Iterable[str],
) -> None:
    missing = validate_required_fields(mapping, required_field_names)
    if missing:
        raise MissingRequiredColumnsError(missing)


def update_mapping(
    mapping: list[ColumnMapping],
    source_column: str,
    target_field: Optional[str],
) -> list[ColumnMapping]:
    """
    Set, replace or clear the target of one source column.

    Assigning a target that another column already holds moves it, so a target
    field is never mapped twice. Unknown source columns are appended.
    """
    target_field = target_field or None
    if target_field:
        for entry in mapping:
            if entry.target_field_name == target_field and entry.source_column_name != source_column:
                entry.target_field_name = None

    for entry in mapping:
        if entry.source_column_name == source_column:
            entry.target_field_name = target_field
            break
    else:
        mapping.append(ColumnMapping(source_column_name=source_column, target_field_name=target_field))
    return mapping


def apply_mapping(
    rows: Iterable[Mapping[str, Any]],
    mapping: Sequence[ColumnMapping],
) -> list[dict[str, Any]]:
    """
    Rename row keys to their mapped target fields; unmapped columns are dropped.

    When several columns map to one target, the first non-empty value in
    column order is kept.
    """
    renames = [(m.source_column_name, m.target_field_name) for m in mapping if m.is_mapped]
    mapped_rows = []
    for row in rows:
        mapped: dict[str, Any] = {}
        for column, target in renames:
            if column not in row:
                continue
            value = row[column]
            if target not in mapped or _is_blank(mapped[target]):
                mapped[target] = value
        mapped_rows.append(mapped)
    return mapped_rows


class ColumnMapper:
    """
    Mapping workflow for one upload type.

    Usage:
        mapper = ColumnMapper("accounts")
        mapping = mapper.suggest(parsed.header)
        mapper.ensure_complete(mapping)
        rows = apply_mapping(parsed.rows, mapping)
    """

    def __init__(self, upload_type: str):
        self.upload_type = upload_type
        self.target_fields = target_fields_for(upload_type)
        self.required_fields = REQUIRED_FIELDS.get(upload_type, ())

    def suggest(self, source_columns: Iterable[str]) -> list[ColumnMapping]:
        return suggest_mapping(source_columns, self.target_fields)

    def missing_required(self, mapping: Sequence[ColumnMapping]) -> list[str]:
        return validate_required_fields(mapping, self.required_fields)

    def duplicates(self, mapping: Sequence[ColumnMapping]) -> dict[str, list[str]]:
        return duplicate_targets(mapping)

    def ensure_complete(self, mapping: Sequence[ColumnMapping]) -> None:
        ensure_required_fields(mapping, self.required_fields)
