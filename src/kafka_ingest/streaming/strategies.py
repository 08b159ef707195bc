"""Seek and termination policies applied once when a task starts."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from confluent_kafka import TopicPartition

from kafka_ingest.config.models import SeekMode, TerminationMode
from kafka_ingest.streaming.assignment import PartitionRef

# Seconds to wait on watermark / offsets-for-times metadata requests
METADATA_TIMEOUT = 10.0


def termination_offsets(
    mode: TerminationMode,
    consumer: Any,
    partitions: Sequence[PartitionRef],
) -> dict[PartitionRef, int] | None:
    """Return the per-partition ceiling to stop at, or None when unbounded.

    ``OFFSET_AT_START`` snapshots each partition's end offset (high
    watermark) so one run reads a fixed amount of data even while producers
    keep appending.
    """
    match mode:
        case TerminationMode.OFFSET_AT_START:
            ceilings: dict[PartitionRef, int] = {}
            for ref in partitions:
                _, high = consumer.get_watermark_offsets(
                    TopicPartition(ref.topic, ref.partition),
                    timeout=METADATA_TIMEOUT,
                    cached=False,
                )
                ceilings[ref] = high
            return ceilings
        case TerminationMode.ENDLESS:
            return None
    msg = f"Unsupported termination mode: {mode}"
    raise ValueError(msg)


def seek_positions(
    mode: SeekMode,
    consumer: Any,
    partitions: Sequence[PartitionRef],
    timestamp: int | None,
) -> dict[PartitionRef, int]:
    """Resolve the offset each partition should start reading from.

    Partitions missing from the result get no explicit seek and start from
    the consumer's default position. That happens in ``TIMESTAMP`` mode for
    partitions with no record at or after *timestamp*, and for every
    partition when no timestamp is configured.
    """
    match mode:
        case SeekMode.EARLIEST:
            positions: dict[PartitionRef, int] = {}
            for ref in partitions:
                low, _ = consumer.get_watermark_offsets(
                    TopicPartition(ref.topic, ref.partition),
                    timeout=METADATA_TIMEOUT,
                    cached=False,
                )
                positions[ref] = low
            return positions
        case SeekMode.TIMESTAMP:
            if timestamp is None or not partitions:
                return {}
            query = [TopicPartition(r.topic, r.partition, timestamp) for r in partitions]
            resolved = consumer.offsets_for_times(query, timeout=METADATA_TIMEOUT)
            return {
                PartitionRef(tp.topic, tp.partition): tp.offset
                for tp in resolved
                if tp.error is None and tp.offset >= 0
            }
    msg = f"Unsupported seek mode: {mode}"
    raise ValueError(msg)
