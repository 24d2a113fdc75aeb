import json
from collections.abc import Mapping
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict


# -----------------------------------------------------------------------------
# VALUE KINDS
# Purpose: one closed set of shapes a filter value or a stored column value
# can take, shared by the compiler (literal rendering) and the executor
# (row reshaping).
# -----------------------------------------------------------------------------


class ValueKind(Enum):
    NULL = "null"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    TIMESTAMP = "timestamp"
    BYTES = "bytes"
    SEQUENCE = "sequence"
    MAPPING = "mapping"
    OTHER = "other"


def classify(value: Any) -> ValueKind:
    """
    Map a Python value onto its ValueKind.
    bool is checked before int because bool subclasses int.
    """
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, int):
        return ValueKind.INTEGER
    if isinstance(value, (float, Decimal)):
        return ValueKind.FLOAT
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, (datetime, date)):
        return ValueKind.TIMESTAMP
    if isinstance(value, (bytes, bytearray, memoryview)):
        return ValueKind.BYTES
    if isinstance(value, (list, tuple)):
        return ValueKind.SEQUENCE
    if isinstance(value, Mapping):
        return ValueKind.MAPPING
    return ValueKind.OTHER


def format_timestamp(value: date) -> str:
    """
    Render a timestamp as RFC 3339 with second precision, e.g.
    2025-01-15T10:30:00Z. Naive datetimes are taken to be UTC.
    """
    if not isinstance(value, datetime):
        return value.isoformat()

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)

    text = value.isoformat(timespec="seconds")
    if text.endswith("+00:00"):
        return text[:-6] + "Z"
    return text


def parse_timestamp(text: str) -> datetime:
    """Inverse of format_timestamp. Raises ValueError on bad input."""
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def quote_string(text: str) -> str:
    # Single quotes are doubled, the standard SQL string escape
    return "'" + text.replace("'", "''") + "'"


def format_literal(value: Any) -> str:
    """
    Render a filter value as inline SQL text.

    Only used for the human readable `sql` echo; the statement that is
    executed carries the value as a bound parameter.

    Example:
        format_literal("O'Brien")  ->  'O''Brien'
    """
    kind = classify(value)

    if kind is ValueKind.NULL:
        return "NULL"
    if kind is ValueKind.BOOLEAN:
        return "true" if value else "false"
    if kind is ValueKind.INTEGER:
        return str(value)
    if kind is ValueKind.FLOAT:
        return f"{value:f}"
    if kind is ValueKind.STRING:
        return quote_string(value)
    if kind is ValueKind.TIMESTAMP:
        return quote_string(format_timestamp(value))
    if kind is ValueKind.BYTES:
        return quote_string(bytes(value).decode("utf-8", errors="replace"))

    # SEQUENCE, MAPPING, OTHER
    return quote_string(str(value))


def normalize_value(value: Any) -> Any:
    """
    Turn a column value returned by the driver into a JSON friendly value.

    Binary payloads are tried as embedded JSON first and fall back to text.
    Timestamps use the same RFC 3339 form as the compiler.
    """
    kind = classify(value)

    if kind is ValueKind.BYTES:
        raw = bytes(value)
        try:
            return json.loads(raw)
        except ValueError:
            return raw.decode("utf-8", errors="replace")
    if kind is ValueKind.TIMESTAMP:
        return format_timestamp(value)
    if kind is ValueKind.NULL:
        return None
    return value


def normalize_row(row: Mapping) -> Dict[str, Any]:
    # Every column is kept, NULLs included
    return {str(column): normalize_value(value) for column, value in row.items()}
