"""Static partition-to-task assignment.

Partitions of all topics are flattened (topic order, then partition index)
and dealt round-robin onto a fixed number of task slots. The slot count is
never shrunk to fit the partition count: surplus slots stay empty and the
tasks that run them finish immediately without touching the broker.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class PartitionRef:
    """One partition of one topic."""

    topic: str
    partition: int

    def __str__(self) -> str:
        return f"{self.topic}:{self.partition}"


Assignment = list[list[PartitionRef]]


def parse_partition_ref(text: str) -> PartitionRef:
    """Parse ``"topic:partition"`` (split on the last colon)."""
    topic, sep, partition = text.rpartition(":")
    if not sep or not topic:
        msg = f"Invalid partition reference '{text}', expected 'topic:partition'"
        raise ValueError(msg)
    try:
        index = int(partition)
    except ValueError:
        msg = f"Invalid partition index in '{text}'"
        raise ValueError(msg) from None
    if index < 0:
        msg = f"Negative partition index in '{text}'"
        raise ValueError(msg)
    return PartitionRef(topic, index)


def format_assignment(assignment: Assignment) -> list[list[str]]:
    """Render an assignment in its persisted ``"topic:partition"`` form."""
    return [[str(ref) for ref in slot] for slot in assignment]


def parse_assignment(persisted: Sequence[Sequence[str]]) -> Assignment:
    """Inverse of :func:`format_assignment`."""
    return [[parse_partition_ref(item) for item in slot] for slot in persisted]


def assign(
    topics: Sequence[str],
    partitions_of: Mapping[str, Sequence[int]] | Callable[[str], Sequence[int]],
    slot_count: int,
) -> Assignment:
    """Deal every partition of *topics* onto exactly *slot_count* slots.

    Flattened partition ``i`` lands in slot ``i % slot_count``; the counter
    carries over from one topic to the next.
    """
    if slot_count < 1:
        msg = f"slot_count must be >= 1, got {slot_count}"
        raise ValueError(msg)
    lookup = partitions_of if callable(partitions_of) else partitions_of.__getitem__
    slots: Assignment = [[] for _ in range(slot_count)]
    index = 0
    for topic in topics:
        for partition in lookup(topic):
            slots[index].append(PartitionRef(topic, partition))
            index = (index + 1) % slot_count
    return slots


def available_cpus() -> int:
    """CPUs this process may run on, honouring affinity masks."""
    if hasattr(os, "process_cpu_count"):
        return os.process_cpu_count() or 1
    if hasattr(os, "sched_getaffinity"):
        return len(os.sched_getaffinity(0)) or 1
    return os.cpu_count() or 1


def default_slot_count() -> int:
    """Twice the number of available CPUs."""
    return available_cpus() * 2


def list_partitions(consumer: Any, topic: str, *, timeout: float = 10.0) -> list[int]:
    """Return the sorted partition ids of *topic* from broker metadata."""
    meta = consumer.list_topics(topic=topic, timeout=timeout)
    topic_meta = meta.topics.get(topic)
    if topic_meta is None:
        msg = f"Topic '{topic}' not found"
        raise ValueError(msg)
    if topic_meta.error is not None:
        msg = f"Metadata error for topic '{topic}': {topic_meta.error}"
        raise ValueError(msg)
    if not topic_meta.partitions:
        msg = f"Topic '{topic}' has no partitions"
        raise ValueError(msg)
    return sorted(topic_meta.partitions)


def build_assignments(
    consumer: Any,
    topics: Sequence[str],
    slot_count: int,
) -> Assignment:
    """Fetch partition metadata for *topics* and assign it to slots."""
    partitions = {topic: list_partitions(consumer, topic) for topic in topics}
    assignment = assign(topics, partitions, slot_count)
    logger.info(
        "assignment.built",
        topics=list(topics),
        partitions=sum(len(p) for p in partitions.values()),
        slots=slot_count,
        empty_slots=sum(1 for slot in assignment if not slot),
    )
    return assignment
