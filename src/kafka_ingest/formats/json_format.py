"""Plain JSON record values."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from kafka_ingest.config.models import ColumnConfig, KafkaInputConfig
from kafka_ingest.formats.base import Record
from kafka_ingest.formats.columns import RecordConversionError, build_row


class JsonRecordSink:
    """Maps top-level JSON object fields onto output columns by name."""

    def __init__(self, config: KafkaInputConfig) -> None:
        self._key_column = config.key_column_name
        self._partition_column = config.partition_column_name
        self._default_timezone = config.default_timezone

    def decode(self, record: Record) -> dict[str, Any]:
        assert record.value is not None
        try:
            value = json.loads(record.value)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            msg = (
                f"Invalid JSON at {record.topic}:{record.partition}"
                f"@{record.offset}: {exc}"
            )
            raise RecordConversionError(msg) from exc
        if not isinstance(value, dict):
            msg = (
                f"Expected a JSON object at {record.topic}:{record.partition}"
                f"@{record.offset}, got {type(value).__name__}"
            )
            raise RecordConversionError(msg)
        return value

    def to_row(self, record: Record, schema: Sequence[ColumnConfig]) -> dict[str, Any]:
        return build_row(
            record,
            self.decode(record),
            schema,
            key_column_name=self._key_column,
            partition_column_name=self._partition_column,
            default_timezone=self._default_timezone,
        )
