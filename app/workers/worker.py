"""Kafka indexing worker with Prometheus metrics support"""
import asyncio
from typing import Any, Dict

from app.core.config import settings
from app.core.dependencies import Container
from app.utils.logger import get_logger, setup_logging
from app.utils.metrics import start_metrics_server
from app.workers.consumer import KafkaConsumer
from app.workers.indexing_worker import IndexingWorker

logger = get_logger("workers.worker")


def build_job_handler(worker: IndexingWorker):
    async def handle(job: Dict[str, Any]) -> str:
        return await worker.process(job["document_id"])

    return handle


async def main():
    setup_logging(
        level=settings.LOG_LEVEL,
        console=True,
        file=settings.LOG_TO_FILE,
        json_format=settings.LOG_JSON,
    )

    try:
        start_metrics_server(port=settings.METRICS_PORT)
        logger.info(f"Prometheus metrics server started on port {settings.METRICS_PORT}")
    except Exception as e:
        logger.error(f"Failed to start metrics server: {e}")

    # Only the worker and its stores are used here; the queue is never started
    container = Container(settings)
    await container.create_tables()

    logger.info(f"Starting Kafka indexing worker on topic {settings.KAFKA_TOPIC}...")
    consumer = KafkaConsumer(
        group_id="indexing_worker_group",
        bootstrap_servers=settings.KAFKA_BROKER,
        topic=settings.KAFKA_TOPIC,
    )
    try:
        await consumer.start(build_job_handler(container.worker))
    finally:
        await container.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
