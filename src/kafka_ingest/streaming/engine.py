"""Per-task bounded consumption engine.

One engine runs one task slot: it binds a consumer to the slot's partitions,
positions the read cursors, then fetches and emits rows until every
partition is retired or the empty-poll budget is spent.

The empty-poll counter is cumulative over the whole run. It is never reset
by a fetch that returns records, so a topic with sparse, bursty traffic can
end a task while data is still arriving. ``max_empty_pollings`` is therefore
a budget of idle fetches per run, not a limit on consecutive idle fetches.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog
from confluent_kafka import (
    OFFSET_INVALID,
    TIMESTAMP_NOT_AVAILABLE,
    KafkaError,
    KafkaException,
    Message,
    TopicPartition,
)

from kafka_ingest.config.models import KafkaInputConfig, SeekMode, TerminationMode
from kafka_ingest.formats.base import Record, RecordSink
from kafka_ingest.output.writers import RowWriter
from kafka_ingest.streaming.assignment import PartitionRef
from kafka_ingest.streaming.strategies import seek_positions, termination_offsets

# Upper bound on records returned by a single fetch
MAX_RECORDS_PER_FETCH = 500


class EngineState(StrEnum):
    START = "start"
    SEEKED = "seeked"
    POLLING = "polling"
    DONE = "done"


class ExitReason(StrEnum):
    NO_PARTITIONS = "no_partitions"
    EXHAUSTED = "exhausted"
    IDLE = "idle"


@dataclass
class TaskState:
    """Mutable bookkeeping for one engine run; never shared across tasks."""

    active: list[PartitionRef]
    ceilings: dict[PartitionRef, int] | None = None
    # next offset to read per partition; absent means "consumer default"
    positions: dict[PartitionRef, int] = field(default_factory=dict)
    empty_polls: int = 0
    rows_emitted: int = 0
    null_values_skipped: int = 0
    rebind: bool = False
    state: EngineState = EngineState.START


@dataclass(frozen=True)
class TaskReport:
    """Summary of one finished task."""

    task_index: int
    partitions: list[str]
    rows_emitted: int
    null_values_skipped: int
    empty_polls: int
    remaining_partitions: list[str]
    exit_reason: ExitReason


def to_record(msg: Message) -> Record:
    ts_type, ts = msg.timestamp()
    return Record(
        topic=msg.topic(),
        partition=msg.partition(),
        offset=msg.offset(),
        key=msg.key(),
        value=msg.value(),
        timestamp=None if ts_type == TIMESTAMP_NOT_AVAILABLE else ts,
    )


class ConsumptionEngine:
    """Reads one task's partitions and pushes rows into a writer."""

    def __init__(
        self,
        consumer: Any,
        partitions: Sequence[PartitionRef],
        sink: RecordSink,
        writer: RowWriter,
        config: KafkaInputConfig,
        *,
        task_index: int = 0,
        logger: Any | None = None,
    ) -> None:
        self._consumer = consumer
        self._partitions = list(partitions)
        self._sink = sink
        self._writer = writer
        self._config = config
        self._task_index = task_index
        self._log = logger or structlog.get_logger().bind(task_index=task_index)
        self.state = TaskState(active=list(partitions))

    def run(self) -> TaskReport:
        """Drive START → SEEKED → POLLING → DONE and report the outcome."""
        try:
            if not self._partitions:
                self._log.info("engine.no_partitions")
                reason = ExitReason.NO_PARTITIONS
            else:
                self._assign_and_seek()
                reason = self._poll_loop()
            self._writer.finish()
        finally:
            self._consumer.close()
            self.state.state = EngineState.DONE

        report = TaskReport(
            task_index=self._task_index,
            partitions=[str(p) for p in self._partitions],
            rows_emitted=self.state.rows_emitted,
            null_values_skipped=self.state.null_values_skipped,
            empty_polls=self.state.empty_polls,
            remaining_partitions=[str(p) for p in self.state.active],
            exit_reason=reason,
        )
        self._log.info(
            "engine.finished",
            rows=report.rows_emitted,
            skipped_null_values=report.null_values_skipped,
            empty_polls=report.empty_polls,
            exit_reason=str(report.exit_reason),
        )
        return report

    def _bind(self) -> None:
        """(Re)declare interest in exactly the active partitions."""
        st = self.state
        self._consumer.assign(
            [
                TopicPartition(
                    ref.topic, ref.partition, st.positions.get(ref, OFFSET_INVALID)
                )
                for ref in st.active
            ]
        )
        st.rebind = False

    def _assign_and_seek(self) -> None:
        st = self.state
        cfg = self._config
        self._bind()

        # Snapshot the ceilings before any cursor moves
        st.ceilings = termination_offsets(cfg.termination_mode, self._consumer, st.active)
        st.positions = seek_positions(
            cfg.seek_mode, self._consumer, st.active, cfg.timestamp_for_seeking
        )

        if st.ceilings is not None:
            ceilings = st.ceilings
            # no record at or after the seek timestamp exists below the ceiling
            timestamp_gap = (
                cfg.seek_mode == SeekMode.TIMESTAMP
                and cfg.timestamp_for_seeking is not None
            )
            drained = [
                ref
                for ref in st.active
                if (ref in st.positions and st.positions[ref] >= ceilings[ref])
                or (timestamp_gap and ref not in st.positions)
            ]
            if drained:
                st.active = [ref for ref in st.active if ref not in drained]
                self._log.info(
                    "engine.partitions_already_drained",
                    partitions=[str(p) for p in drained],
                )

        self._bind()
        st.state = EngineState.SEEKED
        self._log.info(
            "engine.seeked",
            seek_mode=str(cfg.seek_mode),
            termination_mode=str(cfg.termination_mode),
            partitions=[str(p) for p in st.active],
            positions={str(p): o for p, o in st.positions.items()},
            ceilings=(
                {str(p): o for p, o in st.ceilings.items()}
                if st.ceilings is not None
                else None
            ),
        )

    def _fetch(self) -> list[Message]:
        messages = self._consumer.consume(
            num_messages=MAX_RECORDS_PER_FETCH,
            timeout=self._config.fetch_max_wait_ms / 1000,
        )
        records: list[Message] = []
        for msg in messages or []:
            err = msg.error()
            if err and err.code() == KafkaError._PARTITION_EOF:  # type: ignore[attr-defined]
                continue
            if err:
                raise KafkaException(err)
            records.append(msg)
        return records

    def _poll_loop(self) -> ExitReason:
        st = self.state
        cfg = self._config
        schema = cfg.columns
        bounded = cfg.termination_mode == TerminationMode.OFFSET_AT_START
        st.state = EngineState.POLLING

        while st.active:
            if st.rebind:
                self._bind()

            messages = self._fetch()
            if not messages:
                st.empty_polls += 1
                self._log.info(
                    "engine.empty_poll",
                    remaining=cfg.max_empty_pollings - st.empty_polls,
                )
                if st.empty_polls >= cfg.max_empty_pollings:
                    return ExitReason.IDLE
                continue

            retired: set[PartitionRef] = set()
            for msg in messages:
                record = to_record(msg)
                ref = PartitionRef(record.topic, record.partition)
                ceiling = st.ceilings.get(ref) if bounded and st.ceilings else None
                st.positions[ref] = record.offset + 1
                if ceiling is not None and record.offset >= ceiling:
                    # written after the snapshot, arrived in the same batch
                    retired.add(ref)
                    continue
                if record.value is not None:
                    self._writer.add(self._sink.to_row(record, schema))
                    st.rows_emitted += 1
                else:
                    st.null_values_skipped += 1
                if ceiling is not None and record.offset >= ceiling - 1:
                    retired.add(ref)

            if retired:
                st.active = [ref for ref in st.active if ref not in retired]
                st.rebind = True
                self._log.info(
                    "engine.partitions_retired",
                    partitions=sorted(str(p) for p in retired),
                    remaining=len(st.active),
                )

        return ExitReason.EXHAUSTED
