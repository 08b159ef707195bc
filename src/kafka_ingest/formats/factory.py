"""RecordSink factory: maps RecordFormat to concrete sink classes."""

from __future__ import annotations

from kafka_ingest.config.models import KafkaInputConfig, RecordFormat
from kafka_ingest.formats.avro import AvroRecordSink
from kafka_ingest.formats.base import RecordSink
from kafka_ingest.formats.json_format import JsonRecordSink

_SINK_REGISTRY: dict[RecordFormat, type] = {
    RecordFormat.JSON: JsonRecordSink,
    RecordFormat.AVRO_WITH_SCHEMA_REGISTRY: AvroRecordSink,
}


def create_record_sink(config: KafkaInputConfig) -> RecordSink:
    """Create the record sink for the configured serialize format."""
    cls = _SINK_REGISTRY.get(config.serialize_format)
    if cls is None:
        msg = f"Unknown serialize format: {config.serialize_format}"
        raise ValueError(msg)
    return cls(config)  # type: ignore[no-any-return]
