"""Record envelope and the RecordSink protocol every format implements.

A sink turns one raw Kafka record into one output row for a fixed column
schema. New formats implement this protocol and register in
``kafka_ingest.formats.factory``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from kafka_ingest.config.models import ColumnConfig


@dataclass(frozen=True, slots=True)
class Record:
    """One fetched Kafka record, still in wire form."""

    topic: str
    partition: int
    offset: int
    key: bytes | None
    value: bytes | None
    timestamp: int | None = None  # epoch ms; None when the broker has none


@runtime_checkable
class RecordSink(Protocol):
    """Protocol that every record format must satisfy."""

    def to_row(self, record: Record, schema: Sequence[ColumnConfig]) -> dict[str, Any]:
        """Build one output row from *record* for the given columns."""
        ...
