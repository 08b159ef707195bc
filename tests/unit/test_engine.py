"""Unit tests for the per-task consumption engine."""

from __future__ import annotations

import json
from typing import Any

import pytest
from confluent_kafka import OFFSET_INVALID, KafkaError, KafkaException

from fakes import FakeConsumer, FakeError, FakeMessage
from kafka_ingest.config.models import KafkaInputConfig
from kafka_ingest.formats.json_format import JsonRecordSink
from kafka_ingest.output.writers import MemoryWriter
from kafka_ingest.streaming.assignment import PartitionRef
from kafka_ingest.streaming.engine import (
    ConsumptionEngine,
    EngineState,
    ExitReason,
    TaskReport,
)


def _config(**overrides: Any) -> KafkaInputConfig:
    data: dict[str, Any] = {
        "brokers": ["b1:9092"],
        "topics": ["t"],
        "serialize_format": "json",
        "columns": [{"name": "v", "type": "long"}],
        "fetch_max_wait_ms": 100,
        "max_empty_pollings": 2,
    }
    data.update(overrides)
    return KafkaInputConfig.model_validate(data)


def _values(*numbers: int | None) -> list[bytes | None]:
    return [None if n is None else json.dumps({"v": n}).encode() for n in numbers]


def _run(
    consumer: FakeConsumer,
    partitions: list[PartitionRef],
    **overrides: Any,
) -> tuple[TaskReport, MemoryWriter, ConsumptionEngine]:
    config = _config(**overrides)
    writer = MemoryWriter()
    engine = ConsumptionEngine(
        consumer, partitions, JsonRecordSink(config), writer, config, task_index=3
    )
    return engine.run(), writer, engine


T0 = PartitionRef("t", 0)
T1 = PartitionRef("t", 1)


class TestIdleSlot:
    def test_empty_partition_list_touches_nothing(self):
        consumer = FakeConsumer()
        report, writer, engine = _run(consumer, [])

        assert report.rows_emitted == 0
        assert report.exit_reason == ExitReason.NO_PARTITIONS
        assert report.task_index == 3
        assert consumer.assign_calls == []
        assert consumer.consume_calls == []
        assert consumer.watermark_calls == 0
        assert consumer.offsets_for_times_calls == 0
        assert consumer.closed is True
        assert writer.finished is True
        assert writer.rows == []
        assert engine.state.state == EngineState.DONE


class TestBoundedRead:
    def test_reads_exactly_up_to_snapshot(self):
        consumer = FakeConsumer(
            {("t", 0): _values(1, 2, 3, 4, 5), ("t", 1): _values(6, 7, 8)},
            max_per_consume=2,
        )
        report, writer, _ = _run(consumer, [T0, T1])

        assert report.rows_emitted == 8
        assert report.exit_reason == ExitReason.EXHAUSTED
        assert report.empty_polls == 0
        assert report.remaining_partitions == []
        assert sorted(r["v"] for r in writer.rows) == [1, 2, 3, 4, 5, 6, 7, 8]

    def test_emits_end_minus_start_records(self):
        # low watermark 10, end offset 14: four records expected
        consumer = FakeConsumer({("t", 0): _values(1, 2, 3, 4)}, low={("t", 0): 10})
        report, writer, engine = _run(consumer, [T0])

        assert report.rows_emitted == 4
        assert engine.state.ceilings == {T0: 14}
        assert engine.state.positions[T0] == 14

    def test_rows_carry_synthetic_columns(self):
        consumer = FakeConsumer({("t", 1): _values(42)})
        _, writer, _ = _run(consumer, [T1])

        assert writer.rows == [{"_key": "k0", "_partition": 1, "v": 42}]

    def test_null_values_skipped_but_still_retire(self):
        consumer = FakeConsumer({("t", 0): _values(1, None, 2, None)})
        report, writer, _ = _run(consumer, [T0])

        assert report.rows_emitted == 2
        assert report.null_values_skipped == 2
        assert report.exit_reason == ExitReason.EXHAUSTED
        assert [r["v"] for r in writer.rows] == [1, 2]

    def test_rebinds_to_remaining_partitions_after_retirement(self):
        consumer = FakeConsumer(
            {("t", 0): _values(1), ("t", 1): _values(2, 3, 4)},
            max_per_consume=2,
        )
        _run(consumer, [T0, T1])

        # initial bind, post-seek bind, then one rebind after t:0 retires
        assert len(consumer.assign_calls) == 3
        assert consumer.assign_calls[2] == [("t", 1, 1)]

    def test_drained_partitions_dropped_before_polling(self):
        consumer = FakeConsumer({("t", 0): [], ("t", 1): _values(1, 2)})
        report, _, _ = _run(consumer, [T0, T1])

        assert consumer.assign_calls[1] == [("t", 1, 0)]
        assert report.rows_emitted == 2

    def test_all_partitions_drained_means_no_fetch(self):
        consumer = FakeConsumer({("t", 0): [], ("t", 1): []})
        report, _, _ = _run(consumer, [T0, T1])

        assert consumer.consume_calls == []
        assert report.exit_reason == ExitReason.EXHAUSTED
        assert report.rows_emitted == 0

    def test_writes_after_snapshot_are_not_read(self):
        def produce(c: FakeConsumer) -> None:
            c.append("t", 0, json.dumps({"v": 99}).encode())

        consumer = FakeConsumer({("t", 0): _values(1, 2, 3)}, on_consume=produce)
        report, writer, engine = _run(consumer, [T0])

        assert engine.state.ceilings == {T0: 3}
        assert report.rows_emitted == 3
        assert [r["v"] for r in writer.rows] == [1, 2, 3]
        assert report.exit_reason == ExitReason.EXHAUSTED

    def test_post_snapshot_record_alone_in_batch_retires_partition(self):
        def msg(offset: int) -> FakeMessage:
            return FakeMessage("t", 0, offset, json.dumps({"v": offset}).encode())

        # ceiling is 1, but the fetch skips ahead to a newer record
        consumer = FakeConsumer({("t", 0): _values(0)}, script=[[msg(2)]])
        report, writer, _ = _run(consumer, [T0])

        assert writer.rows == []
        assert report.rows_emitted == 0
        assert report.remaining_partitions == []
        assert report.exit_reason == ExitReason.EXHAUSTED

    def test_empty_polls_are_a_safety_net_when_bounded(self):
        consumer = FakeConsumer({("t", 0): _values(1, 2)}, script=[])
        report, _, _ = _run(consumer, [T0], max_empty_pollings=3)

        assert report.exit_reason == ExitReason.IDLE
        assert report.empty_polls == 3
        assert report.remaining_partitions == ["t:0"]


class TestEndlessRead:
    def test_stops_after_max_empty_pollings(self):
        consumer = FakeConsumer({("t", 0): _values(1, 2, 3)})
        report, _, engine = _run(consumer, [T0], termination_mode="endless")

        assert engine.state.ceilings is None
        assert report.rows_emitted == 3
        assert report.empty_polls == 2
        assert report.exit_reason == ExitReason.IDLE
        assert report.remaining_partitions == ["t:0"]

    def test_empty_poll_counter_never_resets(self):
        def msg(offset: int) -> FakeMessage:
            return FakeMessage("t", 0, offset, json.dumps({"v": offset}).encode())

        # no two consecutive empty fetches, yet the task still stops
        consumer = FakeConsumer(
            {("t", 0): []},
            script=[[], [msg(0)], [msg(1)], [], [msg(2)]],
        )
        report, writer, engine = _run(consumer, [T0], termination_mode="endless")

        assert len(consumer.consume_calls) == 4
        assert report.empty_polls == 2
        assert report.exit_reason == ExitReason.IDLE
        assert [r["v"] for r in writer.rows] == [0, 1]
        assert engine.state.empty_polls == 2

    def test_counter_monotonic_across_nonempty_then_empty(self):
        consumer = FakeConsumer(
            {("t", 0): []},
            script=[[FakeMessage("t", 0, 0, b'{"v": 1}')], [], [], []],
        )
        report, _, _ = _run(
            consumer, [T0], termination_mode="endless", max_empty_pollings=3
        )

        assert len(consumer.consume_calls) == 4
        assert report.empty_polls == 3


class TestSeek:
    def test_timestamp_seek_positions_and_gap_when_bounded(self):
        consumer = FakeConsumer(
            {("t", 0): _values(1, 2, 3), ("t", 1): _values(4)},
            timestamps={("t", 0): [100, 200, 300], ("t", 1): [50]},
            default_position="latest",
        )
        report, writer, engine = _run(
            consumer, [T0, T1], seek_mode="timestamp", timestamp_for_seeking=150
        )

        assert engine.state.positions[T0] == 3
        assert T1 not in engine.state.positions
        # t:1 had nothing at/after the timestamp, so it is never polled
        assert consumer.assign_calls[1] == [("t", 0, 1)]
        assert [r["v"] for r in writer.rows] == [2, 3]
        assert report.remaining_partitions == []
        assert report.empty_polls == 0
        assert report.exit_reason == ExitReason.EXHAUSTED

    def test_timestamp_gap_left_unseeked_when_endless(self):
        consumer = FakeConsumer(
            {("t", 0): _values(1, 2, 3), ("t", 1): _values(4)},
            timestamps={("t", 0): [100, 200, 300], ("t", 1): [50]},
            default_position="latest",
        )
        report, writer, _ = _run(
            consumer,
            [T0, T1],
            seek_mode="timestamp",
            timestamp_for_seeking=150,
            termination_mode="endless",
        )

        seeked_bind = consumer.assign_calls[1]
        assert ("t", 0, 1) in seeked_bind
        assert ("t", 1, OFFSET_INVALID) in seeked_bind
        assert [r["v"] for r in writer.rows] == [2, 3]
        assert report.remaining_partitions == ["t:0", "t:1"]
        assert report.exit_reason == ExitReason.IDLE

    def test_timestamp_mode_without_timestamp_issues_no_seek(self):
        consumer = FakeConsumer({("t", 0): _values(1, 2)})
        report, _, _ = _run(consumer, [T0], seek_mode="timestamp")

        assert consumer.offsets_for_times_calls == 0
        assert consumer.assign_calls[1] == [("t", 0, OFFSET_INVALID)]
        assert report.rows_emitted == 2

    def test_earliest_seeks_to_low_watermark(self):
        consumer = FakeConsumer(
            {("t", 0): _values(1, 2)}, low={("t", 0): 7}, default_position="latest"
        )
        report, _, _ = _run(consumer, [T0])

        assert consumer.assign_calls[1] == [("t", 0, 7)]
        assert report.rows_emitted == 2


class TestFetch:
    def test_fetch_waits_fetch_max_wait_ms(self):
        consumer = FakeConsumer({("t", 0): _values(1)})
        _run(consumer, [T0], fetch_max_wait_ms=2500)

        assert consumer.consume_calls[0][1] == 2.5

    def test_partition_eof_counts_as_empty_fetch(self):
        eof = FakeMessage("t", 0, 0, None, error=FakeError(KafkaError._PARTITION_EOF))
        consumer = FakeConsumer({("t", 0): []}, script=[[eof]])
        report, _, _ = _run(consumer, [T0], termination_mode="endless")

        assert report.empty_polls == 2
        assert report.null_values_skipped == 0

    def test_broker_error_propagates_and_closes(self):
        bad = FakeMessage(
            "t", 0, 0, None, error=FakeError(KafkaError._MSG_TIMED_OUT, "timed out")
        )
        consumer = FakeConsumer({("t", 0): _values(1)}, script=[[bad]])
        config = _config()
        writer = MemoryWriter()
        engine = ConsumptionEngine(consumer, [T0], JsonRecordSink(config), writer, config)

        with pytest.raises(KafkaException):
            engine.run()

        assert consumer.closed is True
        assert writer.finished is False
