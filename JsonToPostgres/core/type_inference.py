# Contains column type inference and value casting
import datetime
import decimal
import json
import logging
import math
import re
import warnings
from typing import Any, List, Optional, Tuple

import pandas as pd

from ..config import get_settings
from .models import CastingResult, CastingRule, ColumnTypeInfo, PostgresType

logger = logging.getLogger(__name__)

INT32_MIN, INT32_MAX = -2147483648, 2147483647
INT64_MIN, INT64_MAX = -9223372036854775808, 9223372036854775807

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
_INTEGER_RE = re.compile(r"^-?\d+$")
_OBJECT_ID_RE = re.compile(r"^[0-9a-f]{24}$", re.IGNORECASE)
_BOOLEAN_STRINGS = {"true", "false", "yes", "no", "1", "0", "t", "f", "y", "n"}
_TRUE_STRINGS = {"true", "yes", "1", "t", "y"}

# (pattern, candidate formats); slashed and dashed dates are ambiguous between
# month-first and day-first so both are tried
_DATE_FORMATS = [
    (re.compile(r"^\d{4}-\d{2}-\d{2}$"), ("%Y-%m-%d",)),
    (re.compile(r"^\d{2}/\d{2}/\d{4}$"), ("%m/%d/%Y", "%d/%m/%Y")),
    (re.compile(r"^\d{2}-\d{2}-\d{4}$"), ("%m-%d-%Y", "%d-%m-%Y")),
]

PK_NAME_PATTERN = re.compile(r"^(id|uuid|_id|pk|primary_key)$", re.IGNORECASE)
INDEX_NAME_PATTERN = re.compile(
    r"(email|username|name|code|status|type|category|created|updated)", re.IGNORECASE
)


def is_missing(value):
    """None, empty string or NaN."""
    if value is None:
        return True
    if isinstance(value, (dict, list)):
        return False
    if isinstance(value, str):
        return value == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _is_number(value):
    # bool is a subclass of int but never a number here
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# --- Type predicates --------------------------------------------------------

def is_uuid(value):
    return isinstance(value, str) and bool(_UUID_RE.match(value))


def is_mongo_object_id(value):
    """24-char hex string (MongoDB ObjectId)."""
    return isinstance(value, str) and bool(_OBJECT_ID_RE.match(value))


def is_boolean(value):
    # JSON numbers 0/1 are not booleans
    if isinstance(value, bool):
        return True
    if not isinstance(value, str):
        return False
    return value.strip().lower() in _BOOLEAN_STRINGS


def _integer_in_range(value, low, high):
    if _is_number(value):
        if isinstance(value, float):
            if not math.isfinite(value) or not value.is_integer():
                return False
        return low <= int(value) <= high
    if not isinstance(value, str):
        return False
    trimmed = value.strip()
    if not _INTEGER_RE.match(trimmed):
        return False
    return low <= int(trimmed) <= high


def is_integer(value):
    return _integer_in_range(value, INT32_MIN, INT32_MAX)


def is_bigint(value):
    return _integer_in_range(value, INT64_MIN, INT64_MAX)


def _to_decimal(text):
    try:
        number = decimal.Decimal(text.strip())
    except decimal.InvalidOperation:
        return None
    return number if number.is_finite() else None


def is_numeric(value):
    # ints of any size are exact; only floats can be NaN or infinite
    if isinstance(value, int) and not isinstance(value, bool):
        return True
    if isinstance(value, float):
        return math.isfinite(value)
    if not isinstance(value, str):
        return False
    return _to_decimal(value) is not None


def _parse_date(text, fmt):
    parsed = pd.to_datetime(text, format=fmt, errors="coerce")
    return None if pd.isna(parsed) else parsed


def parse_date_only(value, date_format=None):
    """Return a Timestamp for a date-only string, or None."""
    trimmed = value.strip()
    if date_format:
        return _parse_date(trimmed, date_format)
    for pattern, formats in _DATE_FORMATS:
        if pattern.match(trimmed):
            for fmt in formats:
                parsed = _parse_date(trimmed, fmt)
                if parsed is not None:
                    return parsed
            return None
    return None


def is_date_only(value):
    if isinstance(value, datetime.date) and not isinstance(value, datetime.datetime):
        return True
    if not isinstance(value, str):
        return False
    return parse_date_only(value) is not None


def parse_timestamp(value):
    """Return a Timestamp for a free-form date/time string, or None."""
    trimmed = value.strip()
    if len(trimmed) <= 10 or not any(ch.isdigit() for ch in trimmed):
        return None
    with warnings.catch_warnings():
        # Ambiguous day/month order warnings; a parse is all we need here
        warnings.simplefilter("ignore")
        try:
            parsed = pd.to_datetime(trimmed, errors="coerce")
        except (ValueError, TypeError, OverflowError):
            return None
    return None if pd.isna(parsed) else parsed


def is_timestamp(value):
    if isinstance(value, datetime.datetime):
        return True
    if not isinstance(value, str):
        return False
    return parse_timestamp(value) is not None


def is_json_value(value):
    """Decoded objects/arrays, or strings holding a JSON object/array."""
    if isinstance(value, (dict, list)):
        return True
    if not isinstance(value, str):
        return False
    trimmed = value.strip()
    if not ((trimmed.startswith("{") and trimmed.endswith("}")) or
            (trimmed.startswith("[") and trimmed.endswith("]"))):
        return False
    try:
        json.loads(trimmed)
        return True
    except ValueError:
        return False


# Order matters: integers also pass the BIGINT and NUMERIC checks
TYPE_TESTS = [
    (PostgresType.UUID, is_uuid),
    (PostgresType.BOOLEAN, is_boolean),
    (PostgresType.INTEGER, is_integer),
    (PostgresType.BIGINT, is_bigint),
    (PostgresType.NUMERIC, is_numeric),
    (PostgresType.DATE, is_date_only),
    (PostgresType.TIMESTAMP, is_timestamp),
]


def _unique_key(value):
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def infer_column_type(values: List[Any], column_name: str,
                      sample_size: Optional[int] = None,
                      threshold: Optional[float] = None) -> ColumnTypeInfo:
    """
    Infer the PostgreSQL type for a column based on sample values.

    Args:
        values: Column values in row order
        column_name: Sanitized column name (used for key/index suggestions)
        sample_size: Number of leading values to inspect (default: settings, 1000)
        threshold: Fraction of non-null values a type test must pass (default: 0.95)

    Returns:
        ColumnTypeInfo: Inferred type, nullability and suggestions
    """
    settings = get_settings()
    sample_size = sample_size or settings.type_sample_size
    threshold = threshold if threshold is not None else settings.type_threshold

    sample = list(values[:sample_size])
    non_null = [v for v in sample if not is_missing(v)]
    nullable = len(non_null) < len(sample)

    if not non_null:
        return ColumnTypeInfo(
            name=column_name,
            inferred_type=PostgresType.TEXT,
            nullable=True,
            unique_ratio=0.0,
            sample_values=sample[:5],
            casting_success_rate=1.0,
            suggest_primary_key=False,
            suggest_index=False,
        )

    unique_ratio = len({_unique_key(v) for v in non_null}) / len(non_null)

    inferred_type = PostgresType.TEXT
    casting_success_rate = 1.0
    for pg_type, test in TYPE_TESTS:
        rate = sum(1 for v in non_null if test(v)) / len(non_null)
        if rate >= threshold:
            inferred_type = pg_type
            casting_success_rate = rate
            break

    if inferred_type == PostgresType.TEXT:
        json_rate = sum(1 for v in non_null if is_json_value(v)) / len(non_null)
        if json_rate >= threshold:
            inferred_type = PostgresType.JSONB
            casting_success_rate = json_rate

    suggest_primary_key = bool(PK_NAME_PATTERN.match(column_name)) and unique_ratio > 0.99 and not nullable
    suggest_index = (unique_ratio > 0.8 or bool(INDEX_NAME_PATTERN.search(column_name))) and not suggest_primary_key

    logger.debug("Inferred %s for column %s (%.0f%% castable)",
                 inferred_type.value, column_name, casting_success_rate * 100)

    return ColumnTypeInfo(
        name=column_name,
        inferred_type=inferred_type,
        nullable=nullable,
        unique_ratio=unique_ratio,
        sample_values=non_null[:5],
        casting_success_rate=casting_success_rate,
        suggest_primary_key=suggest_primary_key,
        suggest_index=suggest_index,
    )


def infer_type(values) -> PostgresType:
    """Shortcut returning only the inferred type."""
    return infer_column_type(values, "").inferred_type


# --- Casting ------------------------------------------------------------------

def _to_boolean(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_STRINGS


def _convert(value, target_type, rule):
    """Return (ok, converted) for one non-empty value."""
    date_format = rule.date_format if rule else None

    if target_type == PostgresType.TEXT:
        if isinstance(value, (dict, list)):
            return True, json.dumps(value)
        return True, str(value)
    if target_type == PostgresType.INTEGER and is_integer(value):
        return True, int(str(value).strip()) if isinstance(value, str) else int(value)
    if target_type == PostgresType.BIGINT and is_bigint(value):
        return True, str(int(str(value).strip()) if isinstance(value, str) else int(value))
    if target_type == PostgresType.NUMERIC and is_numeric(value):
        # Decimal keeps every digit of long literals
        return True, _to_decimal(value) if isinstance(value, str) else value
    if target_type == PostgresType.BOOLEAN and is_boolean(value):
        return True, _to_boolean(value)
    if target_type == PostgresType.DATE:
        if isinstance(value, datetime.date):
            return True, value.isoformat()[:10]
        if isinstance(value, str):
            parsed = parse_date_only(value, date_format)
            if parsed is not None:
                return True, parsed.date().isoformat()
    if target_type == PostgresType.TIMESTAMP:
        if isinstance(value, datetime.datetime):
            return True, value.isoformat()
        if isinstance(value, str):
            parsed = parse_timestamp(value)
            if parsed is not None:
                return True, parsed.isoformat()
    if target_type == PostgresType.UUID and is_uuid(value):
        return True, value.lower()
    if target_type == PostgresType.JSONB and is_json_value(value):
        return True, value if isinstance(value, str) else json.dumps(value)
    return False, None


def attempt_cast(value: Any, target_type: PostgresType,
                 rule: Optional[CastingRule] = None) -> CastingResult:
    """
    Attempt to cast a value to the target type.

    Args:
        value: Raw value from the import
        target_type: PostgreSQL type to cast to
        rule: Optional per-column casting rule

    Returns:
        CastingResult: success flag, converted value and error message
    """
    target_type = PostgresType(target_type)

    if value is None:
        return CastingResult(success=True, value=None, original_value=value)

    processed = value
    if rule and rule.trim_whitespace and isinstance(processed, str):
        processed = processed.strip()

    if processed == "":
        return CastingResult(success=True, value=None, original_value=value)

    ok, converted = _convert(processed, target_type, rule)
    if ok:
        return CastingResult(success=True, value=converted, original_value=value)

    if rule and rule.null_on_failure:
        return CastingResult(success=True, value=None, original_value=value)

    return CastingResult(
        success=False,
        value=None,
        original_value=value,
        error=f'Cannot cast "{value}" to {target_type.value}',
    )


def validate_column_casting(values: List[Any], target_type: PostgresType,
                            rule: Optional[CastingRule] = None) -> Tuple[float, List[dict]]:
    """
    Validate all values in a column can be cast to the target type.

    Returns:
        tuple: (success_rate, failures) where each failure is
            ``{"row": 1-based row number, "value": ..., "error": ...}``
    """
    failures = []
    success_count = 0

    for index, value in enumerate(values):
        result = attempt_cast(value, target_type, rule)
        if result.success:
            success_count += 1
        else:
            failures.append({"row": index + 1, "value": value, "error": result.error or "Cast failed"})

    success_rate = success_count / len(values) if values else 1.0
    return success_rate, failures


def generate_column_definition(name, pg_type, nullable, is_primary_key=False,
                               is_unique=False, default_value=None):
    """Render one column definition, e.g. ``"email" TEXT NOT NULL UNIQUE``."""
    type_sql = pg_type.value if isinstance(pg_type, PostgresType) else str(pg_type)
    escaped_name = str(name).replace('"', '""')
    parts = [f'"{escaped_name}"', type_sql]

    if is_primary_key:
        parts.append("PRIMARY KEY")
    else:
        if not nullable:
            parts.append("NOT NULL")
        if is_unique:
            parts.append("UNIQUE")

    if default_value is not None:
        parts.append(f"DEFAULT {default_value}")

    return " ".join(parts)
