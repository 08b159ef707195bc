"""Job orchestrator: plan → per-task run → cleanup.

``plan`` computes the static partition assignment once and stores it in the
config. ``run`` then starts one engine per slot on a thread pool. Tasks share
nothing: each builds its own consumer, record sink, writer and logger.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import structlog

from kafka_ingest.config.models import KafkaInputConfig
from kafka_ingest.formats.base import RecordSink
from kafka_ingest.formats.factory import create_record_sink
from kafka_ingest.output.writers import RowWriter
from kafka_ingest.streaming.assignment import (
    build_assignments,
    default_slot_count,
    format_assignment,
    parse_assignment,
)
from kafka_ingest.streaming.consumer import create_consumer
from kafka_ingest.streaming.engine import ConsumptionEngine, TaskReport

logger = structlog.get_logger()

WriterFactory = Callable[[int], RowWriter]
ConsumerFactory = Callable[[KafkaInputConfig], Any]
SinkFactory = Callable[[KafkaInputConfig], RecordSink]


class IngestJob:
    """Runs one ingestion job across a fixed number of task slots."""

    def __init__(
        self,
        config: KafkaInputConfig,
        writer_factory: WriterFactory,
        *,
        slot_count: int | None = None,
        consumer_factory: ConsumerFactory = create_consumer,
        sink_factory: SinkFactory = create_record_sink,
    ) -> None:
        self._config = config
        self._writer_factory = writer_factory
        self._slot_count = slot_count
        self._consumer_factory = consumer_factory
        self._sink_factory = sink_factory

    @property
    def config(self) -> KafkaInputConfig:
        return self._config

    def plan(self) -> KafkaInputConfig:
        """Compute the assignment from broker metadata and store it."""
        slot_count = self._slot_count or default_slot_count()
        consumer = self._consumer_factory(self._config)
        try:
            assignment = build_assignments(consumer, self._config.topics, slot_count)
        finally:
            consumer.close()
        self._config = self._config.model_copy(
            update={"assignments": format_assignment(assignment)}
        )
        logger.info(
            "pipeline.planned",
            topics=self._config.topics,
            tasks=len(self._config.assignments),
        )
        return self._config

    def run_task(self, config: KafkaInputConfig, task_index: int) -> TaskReport:
        """Run the slot *task_index* of an already planned *config*."""
        partitions = parse_assignment(config.assignments)[task_index]
        task_log = logger.bind(task_index=task_index)
        # Avro setup fails here, before a consumer is opened
        sink = self._sink_factory(config)
        writer = self._writer_factory(task_index)
        try:
            engine = ConsumptionEngine(
                self._consumer_factory(config),
                partitions,
                sink,
                writer,
                config,
                task_index=task_index,
                logger=task_log,
            )
            return engine.run()
        finally:
            writer.close()

    def run(self) -> list[TaskReport]:
        """Plan if needed, run every slot in parallel, return reports in order.

        Every submitted task runs to completion; the first failure is then
        re-raised.
        """
        config = self._config if self._config.assignments else self.plan()
        task_count = len(config.assignments)
        logger.info("pipeline.started", tasks=task_count)

        reports: list[TaskReport] = []
        errors: list[BaseException] = []
        with ThreadPoolExecutor(
            max_workers=max(task_count, 1), thread_name_prefix="ingest-task"
        ) as pool:
            futures = [
                pool.submit(self.run_task, config, index) for index in range(task_count)
            ]
            for index, future in enumerate(futures):
                exc = future.exception()
                if exc is not None:
                    logger.error("pipeline.task_failed", task_index=index, error=str(exc))
                    errors.append(exc)
                else:
                    reports.append(future.result())

        self.cleanup(reports)
        if errors:
            raise errors[0]
        logger.info(
            "pipeline.finished",
            tasks=task_count,
            rows=sum(r.rows_emitted for r in reports),
        )
        return reports

    def cleanup(self, reports: list[TaskReport]) -> None:
        """Hook called after all tasks ran; nothing to release by default."""
