"""Kafka consumer construction for ingestion tasks."""

from __future__ import annotations

from typing import Any

from confluent_kafka import Consumer

from kafka_ingest.config.models import KafkaInputConfig


def consumer_settings(config: KafkaInputConfig) -> dict[str, Any]:
    """Build the librdkafka settings for a task consumer.

    Partitions are assigned manually and offsets are never committed; the
    group id only satisfies the client. ``fetch_max_wait_ms`` bounds each
    ``consume`` call and is not passed to the client; broker fetch tuning
    goes through ``other_consumer_configs``, which wins over every computed
    setting.
    """
    settings: dict[str, Any] = {
        "bootstrap.servers": config.bootstrap_servers,
        "group.id": config.group_id,
        "enable.auto.commit": False,
        "enable.auto.offset.store": False,
    }
    settings.update(config.other_consumer_configs)
    return settings


def create_consumer(config: KafkaInputConfig) -> Consumer:
    """Create an unsubscribed consumer; the engine assigns partitions."""
    return Consumer(consumer_settings(config))
