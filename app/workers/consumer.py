import json
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

from app.utils.logger import get_logger, log_kafka_message
from app.workers.kafka_config import KafkaTopicManager, dlq_topic_for
from app.workers.producer import serialize_value
from app.utils.metrics import (
    kafka_messages_consumed,
    kafka_messages_processed,
    kafka_messages_failed,
    kafka_message_processing_duration,
    kafka_messages_produced,
)

logger = get_logger("workers.consumer")

REQUIRED_FIELDS = ("document_id", "tenant_id")

MessageHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


def deserialize_message(value: bytes) -> Dict[str, Any]:
    """
    Decode an indexing job without raising.

    Malformed payloads come back marked ``_invalid`` with a ``validation_error``
    so the consumer loop can route them to the dead letter topic.
    """
    raw = value.decode("utf-8", errors="replace") if value is not None else None
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        logger.error(f"Failed to decode JSON message: {e}")
        return {"_invalid": True, "validation_error": f"JSONDecodeError: {e}", "_raw": raw}

    if not isinstance(data, dict):
        return {"_invalid": True, "validation_error": "Message is not a JSON object", "_raw": raw}

    missing = [f for f in REQUIRED_FIELDS if not data.get(f)]
    if missing:
        err = f"Missing required field(s): {', '.join(missing)}"
        logger.error(f"Message validation failed: {err}")
        return {**data, "_invalid": True, "validation_error": err, "_raw": raw}

    return data


class KafkaConsumer:
    """
    Consumes indexing jobs and hands them to a handler.

    Offsets are committed manually once a message has been dealt with. Invalid
    messages and messages whose handler raised go to ``<topic>.dlq``; indexing
    failures themselves are recorded on the document, not retried here.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str,
        group_id: str = "indexing_worker_group",
    ):
        self.group_id = group_id
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self.dlq_topic = dlq_topic_for(self.topic)
        self.consumer: Optional[AIOKafkaConsumer] = None
        self._is_running = False
        self._processed_messages = 0
        self._failed_messages = 0

        self.consumer_config = {
            "bootstrap_servers": self.bootstrap_servers,
            "group_id": self.group_id,
            "enable_auto_commit": False,
            "auto_offset_reset": "earliest",
            "max_poll_records": 10,
            "session_timeout_ms": 30000,
            "heartbeat_interval_ms": 10000,
            # a run embeds every chunk of a document
            "max_poll_interval_ms": 600000,
            "value_deserializer": deserialize_message,
        }

    async def start(self, process_func: MessageHandler) -> None:
        await KafkaTopicManager(self.bootstrap_servers, self.topic).ensure_topics()

        self.consumer = AIOKafkaConsumer(self.topic, **self.consumer_config)

        try:
            await self.consumer.start()
            self._is_running = True
            logger.info(f"Kafka consumer started (group: {self.group_id}, topic: {self.topic})")

            async for msg in self.consumer:
                if not self._is_running:
                    break
                kafka_messages_consumed.labels(consumer_group=self.group_id, topic=msg.topic).inc()
                await self.handle_message(msg, process_func)

        except Exception as e:
            logger.error(f"Consumer loop failed: {e}")
            raise
        finally:
            await self._safe_stop()

    def stop(self) -> None:
        self._is_running = False

    async def handle_message(self, msg, process_func: MessageHandler) -> None:
        payload = msg.value
        document_id = payload.get("document_id", "unknown")

        if payload.get("_invalid"):
            reason = payload.get("validation_error") or "invalid_message"
            logger.warning(f"Invalid indexing message for {document_id}: {reason} - sending to DLQ")
            self._failed_messages += 1
            kafka_messages_failed.labels(
                consumer_group=self.group_id, topic=msg.topic, error_type="validation"
            ).inc()
            await self._send_to_dlq(payload, reason)
            await self.consumer.commit()
            return

        log_kafka_message(logger, "CONSUME", msg.topic, document_id)
        start_time = time.time()
        try:
            await process_func(payload)
            self._processed_messages += 1
            kafka_messages_processed.labels(consumer_group=self.group_id, topic=msg.topic).inc()
        except Exception as e:
            self._failed_messages += 1
            kafka_messages_failed.labels(
                consumer_group=self.group_id, topic=msg.topic, error_type=type(e).__name__
            ).inc()
            logger.error(f"Handler failed for document {document_id}: {e}")
            await self._send_to_dlq(payload, f"Handler error: {e}")
        finally:
            kafka_message_processing_duration.labels(
                consumer_group=self.group_id, topic=msg.topic
            ).observe(time.time() - start_time)

        await self.consumer.commit()

    async def _send_to_dlq(self, payload: Dict[str, Any], reason: str) -> None:
        dlq_payload = {
            **{k: v for k, v in payload.items() if not k.startswith("_")},
            "dlq_reason": reason,
            "dlq_timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if "_raw" in payload:
            dlq_payload["_raw"] = payload["_raw"]

        dlq_producer = AIOKafkaProducer(bootstrap_servers=self.bootstrap_servers)
        try:
            await dlq_producer.start()
            await dlq_producer.send_and_wait(self.dlq_topic, serialize_value(dlq_payload))
            kafka_messages_produced.labels(producer="dlq", topic=self.dlq_topic).inc()
            log_kafka_message(logger, "DLQ", self.dlq_topic, payload.get("document_id"))
        except Exception as e:
            logger.error(f"Failed to publish message to DLQ: {e}")
        finally:
            await dlq_producer.stop()

    async def _safe_stop(self) -> None:
        if self.consumer:
            await self.consumer.stop()
            self._is_running = False

            total_messages = self._processed_messages + self._failed_messages
            if total_messages > 0:
                success_rate = (self._processed_messages / total_messages) * 100
                logger.info(f"Consumer stopped. Processed: {self._processed_messages}, "
                            f"Failed: {self._failed_messages}, Success rate: {success_rate:.1f}%")

    def get_stats(self) -> Dict[str, int]:
        return {
            "processed_messages": self._processed_messages,
            "failed_messages": self._failed_messages,
            "total_messages": self._processed_messages + self._failed_messages,
        }
