import csv
import io
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional, Union


@dataclass(frozen=True)
class ParseError:
    row: int
    message: str
    field: Optional[str] = None


@dataclass
class ParsedFile:
    header: list[str] = field(default_factory=list)
    rows: list[dict[str, str]] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


def read_csv(content: Union[str, bytes], delimiter: str = ",") -> ParsedFile:
    """
    Parse a CSV export with a header row into dict rows.

    Blank lines are skipped. Missing trailing cells read as "". Rows with more
    cells than the header are kept with the extra cells dropped and reported
    in `errors`.
    Row numbers in errors are 1-based data rows, not counting the header.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8-sig", errors="replace")
    content = content.lstrip("\ufeff")

    reader = csv.DictReader(io.StringIO(content), delimiter=delimiter, restval="")
    try:
        header = [name.strip() for name in (reader.fieldnames or [])]
    except csv.Error as exc:
        return ParsedFile(errors=[ParseError(row=0, message=str(exc))])
    reader.fieldnames = header

    parsed = ParsedFile(header=header)
    row_number = 0
    try:
        for row in reader:
            values = [v for k, v in row.items() if k is not None]
            if not any((v or "").strip() for v in values) and None not in row:
                continue
            row_number += 1
            extra = row.pop(None, None)
            if extra:
                parsed.errors.append(
                    ParseError(row=row_number, message=f"Too many fields: expected {len(header)}, got {len(header) + len(extra)}")
                )
            parsed.rows.append({key: (value or "").strip() for key, value in row.items()})
    except csv.Error as exc:
        parsed.errors.append(ParseError(row=row_number + 1, message=str(exc)))
    return parsed


def parse_date(value: Any) -> Optional[date]:
    """Accept DD/MM/YYYY (export format) or ISO YYYY-MM-DD."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    for fmt in ("%d/%m/%Y", "%Y-%m-%d"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None
