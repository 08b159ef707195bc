"""Pydantic configuration models for Kafka ingestion tasks."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, Field, field_validator, model_validator


class ConfigError(ValueError):
    """Raised when ingestion configuration is invalid or incomplete."""


class RecordFormat(StrEnum):
    """Wire formats a record value may be serialized with."""

    JSON = "json"
    AVRO_WITH_SCHEMA_REGISTRY = "avro_with_schema_registry"


class SeekMode(StrEnum):
    """Where each task positions its read cursor before polling."""

    EARLIEST = "earliest"
    TIMESTAMP = "timestamp"


class TerminationMode(StrEnum):
    """When a task considers its partitions fully read."""

    OFFSET_AT_START = "offset_at_start"
    ENDLESS = "endless"


class ColumnType(StrEnum):
    """Output column types."""

    BOOLEAN = "boolean"
    LONG = "long"
    DOUBLE = "double"
    STRING = "string"
    TIMESTAMP = "timestamp"
    JSON = "json"


def _parse_enum(enum_cls: type[StrEnum], value: Any, label: str) -> Any:
    if isinstance(value, enum_cls) or not isinstance(value, str):
        return value
    normalized = value.lower()
    for member in enum_cls:
        if member.value == normalized:
            return member
    allowed = ", ".join(m.value for m in enum_cls)
    kind = label.rsplit(" ", 1)[-1]
    msg = f"Unknown {label} '{value}'. Supported {kind}s are {allowed}"
    raise ValueError(msg)


def _config_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ColumnConfig(BaseModel):
    """A single output column."""

    name: str = Field(min_length=1)
    type: ColumnType
    # strptime format for timestamp columns fed with strings; ISO-8601 when unset
    format: str | None = None
    timezone: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def parse_type(cls, v: Any) -> Any:
        return _parse_enum(ColumnType, v, "column type")


class KafkaInputConfig(BaseModel, extra="forbid"):
    """Everything one ingestion job needs: brokers, topics, format, bounds.

    ``assignments`` is empty in user-supplied configs and is filled at plan
    time with one list of ``"topic:partition"`` strings per task.
    """

    brokers: list[str] = Field(min_length=1)
    topics: list[str] = Field(min_length=1)
    serialize_format: RecordFormat
    schema_registry_url: str | None = None
    seek_mode: SeekMode = SeekMode.EARLIEST
    timestamp_for_seeking: int | None = None
    termination_mode: TerminationMode = TerminationMode.OFFSET_AT_START
    key_column_name: str = "_key"
    partition_column_name: str = "_partition"
    fetch_max_wait_ms: int = Field(default=30000, ge=0)
    max_empty_pollings: int = Field(default=2, ge=1)
    other_consumer_configs: dict[str, str] = Field(default_factory=dict)
    value_subject_name_strategy: str | None = None
    columns: list[ColumnConfig] = Field(min_length=1)
    assignments: list[list[str]] = Field(default_factory=list)
    group_id: str = "kafka-ingest"
    default_timezone: str = "UTC"

    @field_validator("serialize_format", mode="before")
    @classmethod
    def parse_serialize_format(cls, v: Any) -> Any:
        return _parse_enum(RecordFormat, v, "serialize format")

    @field_validator("seek_mode", mode="before")
    @classmethod
    def parse_seek_mode(cls, v: Any) -> Any:
        return _parse_enum(SeekMode, v, "seek mode")

    @field_validator("termination_mode", mode="before")
    @classmethod
    def parse_termination_mode(cls, v: Any) -> Any:
        return _parse_enum(TerminationMode, v, "termination mode")

    @field_validator("other_consumer_configs", mode="before")
    @classmethod
    def stringify_consumer_configs(cls, v: Any) -> Any:
        # YAML turns "1000" into an int; librdkafka wants strings
        if isinstance(v, dict):
            return {str(k): _config_str(val) for k, val in v.items()}
        return v

    @model_validator(mode="after")
    def check_column_names(self) -> Self:
        """Reject duplicate columns and clashing synthetic column names."""
        names = [c.name for c in self.columns]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            msg = f"Duplicate column names: {', '.join(duplicates)}"
            raise ValueError(msg)
        if self.key_column_name == self.partition_column_name:
            msg = "key_column_name and partition_column_name must differ"
            raise ValueError(msg)
        return self

    @property
    def bootstrap_servers(self) -> str:
        return ",".join(self.brokers)

    def require_schema_registry_url(self) -> str:
        """Return the registry URL, failing when the Avro format lacks one."""
        if not self.schema_registry_url:
            msg = "avro_with_schema_registry format needs schema_registry_url"
            raise ConfigError(msg)
        return self.schema_registry_url
