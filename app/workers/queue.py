import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Set

from app.workers.producer import IndexingJobProducer
from app.utils.logger import get_logger, log_kafka_message
from app.utils.metrics import indexing_queue_depth

logger = get_logger("workers.queue")

JobHandler = Callable[[str], Awaitable[object]]


@dataclass
class IndexingJob:
    document_id: str
    tenant_id: str
    requested_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return asdict(self)


class IndexingQueue(ABC):
    """Where the lifecycle API hands off documents that need an indexing run."""

    @abstractmethod
    async def enqueue(self, job: IndexingJob) -> bool:
        """Queue a job. Returns False when an equivalent job is already queued."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass


class InMemoryIndexingQueue(IndexingQueue):
    """
    asyncio.Queue drained by a small pool of consumer tasks.

    Jobs for a document already waiting in the queue are coalesced. Tests call
    ``drain()`` to run every queued job to completion without background tasks.
    """

    def __init__(self, handler: JobHandler, workers: int = 2):
        self.handler = handler
        self.workers = max(1, workers)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._queued_ids: Set[str] = set()
        self._tasks: List[asyncio.Task] = []

    def __len__(self) -> int:
        return self._queue.qsize()

    async def enqueue(self, job: IndexingJob) -> bool:
        if job.document_id in self._queued_ids:
            logger.info(f"Indexing job for {job.document_id} already queued; coalescing")
            return False

        self._queued_ids.add(job.document_id)
        self._queue.put_nowait(job)
        indexing_queue_depth.set(self._queue.qsize())
        logger.debug(f"Queued indexing job for document {job.document_id}")
        return True

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._consume(i), name=f"indexing-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info(f"Started {self.workers} in-process indexing workers")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("In-process indexing workers stopped")

    async def drain(self) -> int:
        """Process every queued job in the caller's task. Returns how many ran."""
        processed = 0
        while not self._queue.empty():
            job = self._queue.get_nowait()
            await self._handle(job)
            processed += 1
        return processed

    async def _consume(self, worker_no: int) -> None:
        while True:
            job = await self._queue.get()
            await self._handle(job)

    async def _handle(self, job: IndexingJob) -> None:
        self._queued_ids.discard(job.document_id)
        indexing_queue_depth.set(self._queue.qsize())
        try:
            await self.handler(job.document_id)
        except Exception as e:
            logger.exception(f"Indexing handler crashed for document {job.document_id}: {e}")
        finally:
            self._queue.task_done()


class KafkaIndexingQueue(IndexingQueue):
    """
    Publishes indexing jobs to Kafka, keyed by document id so all jobs for one
    document land on the same partition and are consumed in order.
    """

    def __init__(self, producer: IndexingJobProducer):
        self.producer = producer

    async def start(self) -> None:
        await self.producer.start()

    async def stop(self) -> None:
        await self.producer.stop()

    async def enqueue(self, job: IndexingJob) -> bool:
        log_kafka_message(logger, "PUBLISH", self.producer.topic, job.document_id)
        await self.producer.publish_job(job.to_dict(), key=job.document_id)
        return True
