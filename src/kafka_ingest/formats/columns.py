"""Column mapping shared by all record formats."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from kafka_ingest.config.models import ColumnConfig, ColumnType
from kafka_ingest.formats.base import Record


class RecordConversionError(ValueError):
    """A record value could not be mapped onto the output schema."""


def decode_key(key: bytes | None) -> str | None:
    if key is None:
        return None
    return key.decode("utf-8", errors="replace")


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off"):
            return False
    msg = f"cannot convert {value!r} to boolean"
    raise ValueError(msg)


def _to_long(value: Any) -> int:
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return int(float(value))
    return int(value)


def _to_double(value: Any) -> float:
    return float(value)


def _to_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError as exc:
        msg = f"unknown timezone '{name}'"
        raise ValueError(msg) from exc


def _to_timestamp(value: Any, column: ColumnConfig, default_timezone: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        msg = f"cannot convert {value!r} to timestamp"
        raise ValueError(msg)
    elif isinstance(value, (int, float)):
        # epoch milliseconds, as Kafka and Avro timestamp-millis carry them
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    elif isinstance(value, str):
        if column.format:
            parsed = datetime.strptime(value, column.format)
        else:
            parsed = datetime.fromisoformat(value)
    else:
        msg = f"cannot convert {value!r} to timestamp"
        raise ValueError(msg)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_zone(column.timezone or default_timezone))
    return parsed


def coerce(value: Any, column: ColumnConfig, *, default_timezone: str = "UTC") -> Any:
    """Convert *value* to the Python type of *column*; None passes through."""
    if value is None:
        return None
    try:
        match column.type:
            case ColumnType.BOOLEAN:
                return _to_bool(value)
            case ColumnType.LONG:
                return _to_long(value)
            case ColumnType.DOUBLE:
                return _to_double(value)
            case ColumnType.STRING:
                return _to_string(value)
            case ColumnType.TIMESTAMP:
                return _to_timestamp(value, column, default_timezone)
            case ColumnType.JSON:
                return value
    except (TypeError, ValueError, OverflowError) as exc:
        msg = f"column '{column.name}' ({column.type}): {exc}"
        raise RecordConversionError(msg) from exc
    msg = f"Unsupported column type: {column.type}"
    raise RecordConversionError(msg)


def build_row(
    record: Record,
    fields: Mapping[str, Any],
    schema: Sequence[ColumnConfig],
    *,
    key_column_name: str,
    partition_column_name: str,
    default_timezone: str = "UTC",
) -> dict[str, Any]:
    """Map decoded value *fields* onto *schema* and add the synthetic columns.

    The record key and partition always appear under their configured
    names. A schema column with one of those names is typed from the
    synthetic value instead of being looked up in the value.
    """
    synthetic = {
        key_column_name: decode_key(record.key),
        partition_column_name: record.partition,
    }
    row: dict[str, Any] = dict(synthetic)
    for column in schema:
        if column.name in synthetic:
            raw = synthetic[column.name]
        else:
            raw = fields.get(column.name)
        row[column.name] = coerce(raw, column, default_timezone=default_timezone)
    return row
