from __future__ import annotations
from datetime import date, datetime
from typing import Any, List, Optional, Sequence, Tuple
from auditsource.errors import RowConversionError
from auditsource.models import AuditEvent, FieldValue
from auditsource.schema import ColumnDescriptor, SqlType

_TRUE_TEXT = ("1", "true", "t", "y", "yes")


def format_timestamp(value: Any) -> str:
    """Millisecond precision, ``T`` separator, zone dropped: 2016-02-09T09:34:51.244"""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip())
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if not isinstance(value, datetime):
        raise TypeError(f"not a timestamp: {value!r}")
    return f"{value:%Y-%m-%dT%H:%M:%S}.{value.microsecond // 1000:03d}"


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_TEXT
    return bool(value)


def _as_text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def convert_value(value: Any, sql_type: SqlType) -> FieldValue:
    if value is None:
        return None
    if sql_type is SqlType.INTEGER:
        return int(value)
    if sql_type is SqlType.BOOLEAN:
        return _as_bool(value)
    if sql_type is SqlType.FLOATING_POINT:
        return float(value)
    if sql_type is SqlType.TIMESTAMP:
        return format_timestamp(value)
    return _as_text(value)


def cursor_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return _as_text(value)


def map_row(row: Sequence[Any], columns: List[ColumnDescriptor], cursor_ordinal: int) -> Tuple[AuditEvent, Optional[str]]:
    event = AuditEvent()
    for col in columns:
        raw = row[col.ordinal_position - 1]
        try:
            event.add_field(col.name, convert_value(raw, col.sql_type))
        except (TypeError, ValueError, ArithmeticError) as e:
            raise RowConversionError(
                f"cannot convert column {col.name} ({col.sql_type.value}) value {raw!r}: {e}") from e
    return event, cursor_text(row[cursor_ordinal - 1])
