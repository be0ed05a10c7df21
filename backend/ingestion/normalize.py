"""
Row Normalization

Applies the column mapping, checks required fields and coerces numbers
and dates for one data type.

Numeric coercion has two modes:
  - lenient (default): an unparseable number loads as 0 and the row is
    counted as coerced, so a dirty export still lands in full
  - strict: the row is rejected with a row error instead

JSON uploads can carry typed values. Numbers bound for text columns (sku,
location, user ids) are stored as text; objects and arrays are row errors.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import pandas as pd

from ingestion.mappings import (
    DATE_FIELDS,
    NUMERIC_FIELDS,
    REQUIRED_FIELDS,
    DataType,
    apply_mapping,
)


@dataclass
class RowError:
    row: int  # 1-based position in the parsed file
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "message": self.message}


@dataclass
class NormalizedRow:
    fields: dict[str, Any]
    raw: dict[str, Any]


@dataclass
class NormalizationResult:
    rows: list[NormalizedRow] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    coerced: int = 0


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _scalar_text(value: int | float) -> str:
    """Text form of a numeric JSON value bound for a text column (12345.0 -> "12345")."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def coerce_number(value: Any) -> float | None:
    """Parse a quantity. Returns None when the value is not a finite number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "")
        try:
            number = float(text)
        except ValueError:
            return None
    if pd.isna(number) or number in (float("inf"), float("-inf")):
        return None
    return number


def coerce_timestamp(value: Any) -> datetime | None:
    """Parse a date/time cell to a naive UTC datetime. Returns None if unparseable."""
    try:
        parsed = pd.to_datetime(value, utc=True)
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.tz_convert(None).to_pydatetime()


def normalize_records(
    records: list[dict[str, Any]],
    data_type: DataType,
    mapping: dict[str, str],
    strict: bool = False,
) -> NormalizationResult:
    """Map, validate and coerce parsed rows for one data type."""
    result = NormalizationResult()
    required = REQUIRED_FIELDS[data_type]
    numeric = NUMERIC_FIELDS[data_type]
    date_field = DATE_FIELDS[data_type]

    for index, record in enumerate(records, start=1):
        mapped = apply_mapping(record, mapping, data_type)

        missing = [name for name in required if _is_blank(mapped.get(name))]
        if missing:
            result.errors.append(RowError(index, f"Missing required fields: {', '.join(missing)}"))
            continue

        nested = [name for name, value in mapped.items() if isinstance(value, (dict, list))]
        if nested:
            result.errors.append(RowError(index, f"Nested value for {', '.join(sorted(nested))}"))
            continue

        coerced_fields = []
        for name in numeric:
            if name not in mapped or _is_blank(mapped[name]):
                mapped.pop(name, None)
                continue
            number = coerce_number(mapped[name])
            if number is None:
                coerced_fields.append(name)
                number = 0.0
            mapped[name] = number

        if coerced_fields and strict:
            result.errors.append(
                RowError(index, f"Non-numeric value for {', '.join(coerced_fields)}")
            )
            continue

        if date_field in mapped and not _is_blank(mapped[date_field]):
            timestamp = coerce_timestamp(mapped[date_field])
            if timestamp is None:
                result.errors.append(RowError(index, f"Unparseable date for {date_field}: {mapped[date_field]}"))
                continue
            mapped[date_field] = timestamp
        else:
            mapped.pop(date_field, None)

        for name, value in list(mapped.items()):
            if isinstance(value, str):
                mapped[name] = value.strip()
            elif name not in numeric and isinstance(value, (int, float)):
                mapped[name] = _scalar_text(value)

        if coerced_fields:
            result.coerced += 1
        result.rows.append(NormalizedRow(fields=mapped, raw=dict(record)))

    return result
