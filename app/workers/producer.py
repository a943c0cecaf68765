"""
Kafka side of the indexing queue: publishes one message per requested
indexing run, keyed by document id.
"""
import json
from typing import Any, Optional

from aiokafka import AIOKafkaProducer
from pydantic_core import to_jsonable_python

from app.utils.logger import get_logger
from app.utils.metrics import kafka_messages_produced

logger = get_logger("workers.producer")


def serialize_value(value: Any) -> bytes:
    """Compact UTF-8 JSON; datetimes, UUIDs and enums become their JSON forms."""
    return json.dumps(
        to_jsonable_python(value, fallback=str), ensure_ascii=False, separators=(",", ":")
    ).encode("utf-8")


def _serialize_key(key: Optional[str]) -> Optional[bytes]:
    return key.encode("utf-8") if isinstance(key, str) else key


class IndexingJobProducer:
    def __init__(self, bootstrap_servers: str, topic: str) -> None:
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self.producer: Optional[AIOKafkaProducer] = None

    async def start(self) -> None:
        if self.producer:
            return
        producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            acks="all",
            linger_ms=5,
            retry_backoff_ms=200,
            request_timeout_ms=30000,
            value_serializer=serialize_value,
            key_serializer=_serialize_key,
        )
        try:
            await producer.start()
        except Exception as e:
            logger.error(f"Could not connect indexing producer to {self.bootstrap_servers}: {e}")
            raise
        self.producer = producer
        logger.info(f"Indexing producer connected, publishing to {self.topic}")

    async def publish_job(self, payload: dict, key: Optional[str] = None) -> None:
        """Send an indexing job and wait for the broker to acknowledge it."""
        if not self.producer:
            raise RuntimeError("Indexing producer not started")
        try:
            await self.producer.send_and_wait(self.topic, value=payload, key=key)
        except Exception as e:
            logger.error(f"Publishing indexing job for document {payload.get('document_id')} failed: {e}")
            raise
        kafka_messages_produced.labels(producer="indexing", topic=self.topic).inc()

    async def stop(self) -> None:
        if self.producer:
            await self.producer.stop()
            self.producer = None
            logger.info("Indexing producer stopped")
