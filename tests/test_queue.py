"""Tests for the in-process and Kafka-backed indexing queues."""

import asyncio

import pytest

from app.workers.queue import IndexingJob, InMemoryIndexingQueue, KafkaIndexingQueue


class RecordingHandler:
    def __init__(self, fail_for=()):
        self.seen = []
        self.fail_for = set(fail_for)
        self.event = asyncio.Event()

    async def __call__(self, document_id: str):
        self.seen.append(document_id)
        self.event.set()
        if document_id in self.fail_for:
            raise RuntimeError("boom")
        return "indexed"


class FakeProducer:
    topic = "knowledge-indexing"

    def __init__(self):
        self.published = []
        self.started = False

    async def start(self):
        self.started = True

    async def stop(self):
        self.started = False

    async def publish_job(self, payload, key=None):
        self.published.append((payload, key))


class TestInMemoryIndexingQueue:
    @pytest.mark.asyncio
    async def test_duplicate_jobs_are_coalesced(self) -> None:
        handler = RecordingHandler()
        queue = InMemoryIndexingQueue(handler)

        assert await queue.enqueue(IndexingJob("doc-1", "t1")) is True
        assert await queue.enqueue(IndexingJob("doc-1", "t1")) is False
        assert await queue.enqueue(IndexingJob("doc-2", "t1")) is True
        assert len(queue) == 2

        assert await queue.drain() == 2
        assert handler.seen == ["doc-1", "doc-2"]

    @pytest.mark.asyncio
    async def test_job_can_be_queued_again_once_taken(self) -> None:
        handler = RecordingHandler()
        queue = InMemoryIndexingQueue(handler)

        await queue.enqueue(IndexingJob("doc-1", "t1"))
        await queue.drain()
        assert await queue.enqueue(IndexingJob("doc-1", "t1")) is True

    @pytest.mark.asyncio
    async def test_handler_crash_does_not_stop_the_queue(self) -> None:
        handler = RecordingHandler(fail_for={"doc-1"})
        queue = InMemoryIndexingQueue(handler)

        await queue.enqueue(IndexingJob("doc-1", "t1"))
        await queue.enqueue(IndexingJob("doc-2", "t1"))

        assert await queue.drain() == 2
        assert handler.seen == ["doc-1", "doc-2"]

    @pytest.mark.asyncio
    async def test_background_workers_consume(self) -> None:
        handler = RecordingHandler()
        queue = InMemoryIndexingQueue(handler, workers=2)
        await queue.start()
        try:
            await queue.enqueue(IndexingJob("doc-1", "t1"))
            await asyncio.wait_for(handler.event.wait(), timeout=2)
        finally:
            await queue.stop()

        assert handler.seen == ["doc-1"]
        assert len(queue) == 0


class TestKafkaIndexingQueue:
    @pytest.mark.asyncio
    async def test_publishes_keyed_by_document(self) -> None:
        producer = FakeProducer()
        queue = KafkaIndexingQueue(producer)
        await queue.start()

        assert await queue.enqueue(IndexingJob("doc-1", "t1")) is True

        [(payload, key)] = producer.published
        assert key == "doc-1"
        assert payload["document_id"] == "doc-1"
        assert payload["tenant_id"] == "t1"
        assert "requested_at" in payload

        await queue.stop()
        assert producer.started is False
