"""End-to-end lifecycle tests through the ingestion service and in-process queue."""

from pathlib import Path

import pytest

from app.core.errors import (
    DocumentBusy,
    EmptyContent,
    NotFound,
    PayloadTooLarge,
    QueueUnavailable,
    UnsupportedFormat,
)
from app.db.models.document import DocumentStatus, DocumentType
from app.services.search_service import SearchService
from app.workers.queue import InMemoryIndexingQueue

REFUND_TEXT = (
    "Our refund window is 30 days from the date of purchase. "
    "Contact support to start a refund."
)


@pytest.fixture()
def search(embedder, chunk_store):
    return SearchService(embedder, chunk_store, default_max_results=5, default_min_similarity=0.2)


class TestSubmission:
    @pytest.mark.asyncio
    async def test_refund_question_finds_the_policy(self, ingestion, queue, search) -> None:
        doc_id = await ingestion.submit_text_document("t1", "Refund Policy", None, REFUND_TEXT)
        document = await ingestion.get_document(doc_id, "t1")
        assert document.status == DocumentStatus.pending

        assert await queue.drain() == 1

        hits = await search.search("t1", "What is the refund window?")
        assert hits
        assert hits[0].chunk.document_id == doc_id
        assert hits[0].document_title == "Refund Policy"
        assert await search.search("t1", "How do I bake sourdough bread?") == []

    @pytest.mark.asyncio
    async def test_empty_text_is_rejected(self, ingestion) -> None:
        with pytest.raises(EmptyContent):
            await ingestion.submit_text_document("t1", "Empty", None, "   ")
        assert await ingestion.list_documents("t1") == []

    @pytest.mark.asyncio
    async def test_file_upload_is_indexed(self, ingestion, queue) -> None:
        doc_id = await ingestion.submit_file_document(
            "t1", "Notes", "plain notes", None, b"Warranty covers two years of repairs.",
            filename="notes.txt", mime_type="text/plain",
        )
        await queue.drain()

        document = await ingestion.get_document(doc_id, "t1")
        assert document.document_type == DocumentType.txt
        assert document.status == DocumentStatus.indexed
        assert document.original_filename == "notes.txt"
        assert document.file_size == len(b"Warranty covers two years of repairs.")
        assert [c.content for c in document.chunks] == ["Warranty covers two years of repairs."]

    @pytest.mark.asyncio
    async def test_unsupported_file_is_rejected_before_storing(self, ingestion, storage) -> None:
        with pytest.raises(UnsupportedFormat):
            await ingestion.submit_file_document("t1", "Binary", None, None, b"MZ...", filename="setup.exe")
        assert not any(Path(storage.upload_dir).rglob("*.*"))

    @pytest.mark.asyncio
    async def test_text_type_is_not_a_file_type(self, ingestion) -> None:
        with pytest.raises(UnsupportedFormat):
            await ingestion.submit_file_document("t1", "X", None, DocumentType.text, b"data", filename="x.txt")

    @pytest.mark.asyncio
    async def test_oversized_upload_is_rejected(self, ingestion) -> None:
        with pytest.raises(PayloadTooLarge):
            await ingestion.submit_file_document("t1", "Big", None, None, b"a" * (1024 * 1024 + 1), filename="big.txt")

    @pytest.mark.asyncio
    async def test_corrupt_file_ends_failed(self, ingestion, queue) -> None:
        doc_id = await ingestion.submit_file_document("t1", "Broken", None, None, b"garbage", filename="broken.pdf")
        await queue.drain()

        document = await ingestion.get_document(doc_id, "t1")
        assert document.status == DocumentStatus.failed
        assert document.error_message
        assert document.chunks == []


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_deleted_document_disappears_from_search(self, ingestion, queue, search, storage) -> None:
        doc_id = await ingestion.submit_file_document(
            "t1", "Refunds", None, None, REFUND_TEXT.encode(), filename="refunds.txt"
        )
        await queue.drain()
        stored_path = (await ingestion.get_document(doc_id, "t1")).file_path
        assert await search.search("t1", "refund window")

        await ingestion.delete_document(doc_id, "t1")

        assert await search.search("t1", "refund window") == []
        assert not Path(stored_path).exists()
        with pytest.raises(NotFound):
            await ingestion.get_document(doc_id, "t1")
        with pytest.raises(NotFound):
            await ingestion.delete_document(doc_id, "t1")

    @pytest.mark.asyncio
    async def test_reprocess_leaves_no_duplicate_chunks(self, ingestion, queue, chunk_store) -> None:
        doc_id = await ingestion.submit_text_document("t1", "Refunds", None, REFUND_TEXT)
        await queue.drain()
        first = await chunk_store.list_for_document("t1", doc_id)

        document = await ingestion.reprocess_document(doc_id, "t1")
        assert document.status == DocumentStatus.pending
        await queue.drain()

        second = await chunk_store.list_for_document("t1", doc_id)
        assert len(second) == len(first)
        assert {c.id for c in first}.isdisjoint({c.id for c in second})
        assert (await ingestion.get_document(doc_id, "t1")).chunk_count == len(second)

    @pytest.mark.asyncio
    async def test_reprocess_of_pending_document_is_coalesced(self, ingestion, queue) -> None:
        doc_id = await ingestion.submit_text_document("t1", "Refunds", None, REFUND_TEXT)

        document = await ingestion.reprocess_document(doc_id, "t1")

        assert document.status == DocumentStatus.pending
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_reprocess_while_processing_is_busy(self, ingestion, document_store) -> None:
        doc_id = await ingestion.submit_text_document("t1", "Refunds", None, REFUND_TEXT)
        await document_store.claim_for_processing(doc_id)

        with pytest.raises(DocumentBusy):
            await ingestion.reprocess_document(doc_id, "t1")
        with pytest.raises(DocumentBusy):
            await ingestion.replace_document_content(doc_id, "t1", content="new text")

    @pytest.mark.asyncio
    async def test_replace_text_content(self, ingestion, queue, search) -> None:
        doc_id = await ingestion.submit_text_document("t1", "Policy", None, REFUND_TEXT)
        await queue.drain()

        await ingestion.replace_document_content(
            doc_id, "t1", content="Shipping takes five business days within the country."
        )
        await queue.drain()

        assert await search.search("t1", "refund window") == []
        hits = await search.search("t1", "How many days does shipping take?")
        assert [h.chunk.document_id for h in hits] == [doc_id]

    @pytest.mark.asyncio
    async def test_replace_file_content_removes_old_file(self, ingestion, queue) -> None:
        doc_id = await ingestion.submit_file_document("t1", "Notes", None, None, b"old notes", filename="a.txt")
        await queue.drain()
        old_path = (await ingestion.get_document(doc_id, "t1")).file_path

        await ingestion.replace_document_content(doc_id, "t1", data=b"new notes", filename="b.txt")
        await queue.drain()

        document = await ingestion.get_document(doc_id, "t1")
        assert not Path(old_path).exists()
        assert document.original_filename == "b.txt"
        assert [c.content for c in document.chunks] == ["new notes"]

    @pytest.mark.asyncio
    async def test_replace_file_with_other_type_is_rejected(self, ingestion, queue) -> None:
        doc_id = await ingestion.submit_file_document("t1", "Notes", None, None, b"notes", filename="a.txt")
        with pytest.raises(UnsupportedFormat):
            await ingestion.replace_document_content(doc_id, "t1", data=b"%PDF", filename="b.pdf")
        with pytest.raises(UnsupportedFormat):
            await ingestion.replace_document_content(doc_id, "t1", content="text for a file document")

    @pytest.mark.asyncio
    async def test_metadata_update_shows_in_search(self, ingestion, queue, search) -> None:
        doc_id = await ingestion.submit_text_document("t1", "Draft", None, REFUND_TEXT)
        await queue.drain()

        document = await ingestion.update_document_metadata(doc_id, title="Refund Policy", tenant_id="t1")
        assert document.title == "Refund Policy"
        assert document.status == DocumentStatus.indexed

        hits = await search.search("t1", "refund window")
        assert hits[0].document_title == "Refund Policy"


class TestTenancy:
    @pytest.mark.asyncio
    async def test_other_tenant_cannot_see_or_search(self, ingestion, queue, search) -> None:
        doc_id = await ingestion.submit_text_document("t1", "Refunds", None, REFUND_TEXT)
        await queue.drain()

        with pytest.raises(NotFound):
            await ingestion.get_document(doc_id, "t2")
        with pytest.raises(NotFound):
            await ingestion.delete_document(doc_id, "t2")
        assert await search.search("t2", "refund window") == []
        assert await ingestion.list_documents("t2") == []

    @pytest.mark.asyncio
    async def test_stats_and_status_filter(self, ingestion, queue) -> None:
        await ingestion.submit_text_document("t1", "One", None, REFUND_TEXT)
        await ingestion.submit_text_document("t1", "Two", None, "Shipping takes five days.")
        await queue.drain()
        await ingestion.submit_text_document("t1", "Three", None, "Still waiting.")
        await ingestion.submit_text_document("t2", "Elsewhere", None, "Other tenant text.")

        stats = await ingestion.get_stats("t1")
        assert stats["total_documents"] == 3
        assert stats["indexed_documents"] == 2
        assert stats["pending_documents"] == 1
        assert stats["failed_documents"] == 0
        assert stats["total_chunks"] == 2

        pending = await ingestion.list_documents("t1", DocumentStatus.pending)
        assert [d.title for d in pending] == ["Three"]


async def unavailable_queue(job):
    raise ConnectionError("broker unreachable")


class TestQueueOutage:
    @pytest.mark.asyncio
    async def test_text_submission_is_rolled_back(self, ingestion, queue, monkeypatch) -> None:
        monkeypatch.setattr(queue, "enqueue", unavailable_queue)

        with pytest.raises(QueueUnavailable):
            await ingestion.submit_text_document("t1", "Refunds", None, REFUND_TEXT)

        assert await ingestion.list_documents("t1") == []
        assert (await ingestion.get_stats("t1"))["total_documents"] == 0

    @pytest.mark.asyncio
    async def test_file_submission_is_rolled_back(self, ingestion, queue, storage, monkeypatch) -> None:
        monkeypatch.setattr(queue, "enqueue", unavailable_queue)

        with pytest.raises(QueueUnavailable):
            await ingestion.submit_file_document("t1", "Notes", None, None, b"some notes", filename="notes.txt")

        assert await ingestion.list_documents("t1") == []
        assert not any(path.is_file() for path in Path(storage.upload_dir).rglob("*"))

    @pytest.mark.asyncio
    async def test_reprocess_retries_after_queue_recovers(self, ingestion, queue, monkeypatch) -> None:
        doc_id = await ingestion.submit_text_document("t1", "Refunds", None, REFUND_TEXT)
        await queue.drain()

        monkeypatch.setattr(queue, "enqueue", unavailable_queue)
        with pytest.raises(QueueUnavailable):
            await ingestion.reprocess_document(doc_id, "t1")
        monkeypatch.undo()
        assert (await ingestion.get_document(doc_id, "t1")).status == DocumentStatus.pending

        await ingestion.reprocess_document(doc_id, "t1")

        assert len(queue) == 1
        assert await queue.drain() == 1
        assert (await ingestion.get_document(doc_id, "t1")).status == DocumentStatus.indexed

    @pytest.mark.asyncio
    async def test_pending_documents_resume_after_restart(self, ingestion, queue) -> None:
        doc_id = await ingestion.submit_text_document("t1", "Refunds", None, REFUND_TEXT)

        # A fresh in-process queue, as after a restart, has lost the job
        restarted = InMemoryIndexingQueue(queue.handler, workers=1)
        ingestion.queue = restarted

        assert await ingestion.resume_pending() == 1
        assert await restarted.drain() == 1
        assert (await ingestion.get_document(doc_id, "t1")).status == DocumentStatus.indexed
