"""Avro record values resolved through a Confluent Schema Registry."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

from confluent_kafka.schema_registry import (
    SchemaRegistryClient,
    record_subject_name_strategy,
    topic_record_subject_name_strategy,
    topic_subject_name_strategy,
)
from confluent_kafka.schema_registry.avro import AvroDeserializer
from confluent_kafka.serialization import MessageField, SerializationContext

from kafka_ingest.config.models import ColumnConfig, ConfigError, KafkaInputConfig
from kafka_ingest.formats.base import Record
from kafka_ingest.formats.columns import RecordConversionError, build_row

# Accepts both the short names and the Java serializer class names
_SUBJECT_NAME_STRATEGIES: dict[str, Callable[..., Any]] = {
    "topic_name": topic_subject_name_strategy,
    "record_name": record_subject_name_strategy,
    "topic_record_name": topic_record_subject_name_strategy,
    "io.confluent.kafka.serializers.subject.TopicNameStrategy": (
        topic_subject_name_strategy
    ),
    "io.confluent.kafka.serializers.subject.RecordNameStrategy": (
        record_subject_name_strategy
    ),
    "io.confluent.kafka.serializers.subject.TopicRecordNameStrategy": (
        topic_record_subject_name_strategy
    ),
}


def resolve_subject_name_strategy(name: str) -> Callable[..., Any]:
    strategy = _SUBJECT_NAME_STRATEGIES.get(name)
    if strategy is None:
        allowed = ", ".join(k for k in _SUBJECT_NAME_STRATEGIES if "." not in k)
        msg = (
            f"Unknown value subject name strategy '{name}'. "
            f"Supported strategies are {allowed}"
        )
        raise ConfigError(msg)
    return strategy


def create_value_deserializer(config: KafkaInputConfig) -> AvroDeserializer:
    """Create the registry-backed value deserializer for *config*."""
    registry = SchemaRegistryClient({"url": config.require_schema_registry_url()})
    conf: dict[str, Any] = {}
    if config.value_subject_name_strategy:
        conf["subject.name.strategy"] = resolve_subject_name_strategy(
            config.value_subject_name_strategy
        )
    return AvroDeserializer(registry, conf=conf or None)


class AvroRecordSink:
    """Maps decoded Avro record fields onto output columns by name."""

    def __init__(
        self,
        config: KafkaInputConfig,
        deserializer: Callable[[bytes, SerializationContext], Any] | None = None,
    ) -> None:
        self._deserializer = deserializer or create_value_deserializer(config)
        self._key_column = config.key_column_name
        self._partition_column = config.partition_column_name
        self._default_timezone = config.default_timezone

    def decode(self, record: Record) -> dict[str, Any]:
        ctx = SerializationContext(record.topic, MessageField.VALUE)
        value = self._deserializer(record.value, ctx)
        if not isinstance(value, dict):
            msg = (
                f"Expected an Avro record at {record.topic}:{record.partition}"
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
