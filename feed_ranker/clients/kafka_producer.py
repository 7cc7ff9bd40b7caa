"""
Async Kafka producer for the impression log.

Publishes one event per served post to the 'impressions' topic:
  { viewer_id, post_id, source, session_id, timestamp }

Consumed by the analytics pipeline. Enabled with KAFKA_ENABLED=true; the
impression rows are written to the repository either way.
"""
import json
import logging
from typing import Optional

from aiokafka import AIOKafkaProducer

from feed_ranker.config import settings
from feed_ranker.ranking.types import Impression

logger = logging.getLogger(__name__)

_producer: Optional[AIOKafkaProducer] = None


async def init_kafka() -> None:
    global _producer
    _producer = AIOKafkaProducer(
        bootstrap_servers=settings.kafka_bootstrap_servers,
        value_serializer=lambda v: json.dumps(v).encode("utf-8"),
        acks="all",          # wait for all in-sync replicas
        enable_idempotence=True,
    )
    await _producer.start()
    logger.info(
        "Kafka producer started → %s", settings.kafka_bootstrap_servers
    )


async def stop_kafka() -> None:
    global _producer
    if _producer:
        await _producer.stop()
        _producer = None


def get_producer() -> AIOKafkaProducer:
    if _producer is None:
        raise RuntimeError("Kafka producer not initialised")
    return _producer


async def publish_impressions(rows: list[Impression]) -> bool:
    """
    Emit impression events keyed by viewer so one viewer's events stay
    ordered within a partition.
    """
    producer = get_producer()
    for row in rows:
        payload = {
            "viewer_id": row.viewer_id,
            "post_id": row.post_id,
            "source": row.source.value,
            "session_id": row.session_id,
            "timestamp": int(row.created_at.timestamp() * 1000),  # milliseconds
        }
        await producer.send(
            settings.kafka_topic_impressions, payload, key=row.viewer_id.encode("utf-8")
        )
    logger.debug("Published %d impression events", len(rows))
    return True
