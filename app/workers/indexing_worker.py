import asyncio
import time
from collections import defaultdict
from typing import Dict, Any

from app.services.chunk_store import build_chunk
from app.services.document_store import DocumentStore
from app.services.text_extractor import TextExtractor
from app.utils.chunking import ChunkingStrategy
from app.core.errors import EmptyContent, KnowledgeBaseError
from app.utils.logger import get_logger, log_embedding_operation
from app.utils.metrics import indexing_runs_total, indexing_run_duration, indexing_runs_in_progress

logger = get_logger("workers.indexing")


class IndexingWorker:
    """
    Runs the extract -> chunk -> embed -> store pipeline for one document.

    A run is single-flight per document id: an in-process lock serializes runs
    for the same id and the database claim (pending -> processing) rejects any
    run that did not win it. Failures, including one at the persistence
    checkpoint, land on the document as ``failed`` with the error message. A
    cancelled run hands the document back to ``pending``.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        extractor: TextExtractor,
        chunker: ChunkingStrategy,
        embedding_service,
        extraction_timeout_seconds: float = 60.0,
    ):
        self.document_store = document_store
        self.extractor = extractor
        self.chunker = chunker
        self.embedding_service = embedding_service
        self.extraction_timeout_seconds = extraction_timeout_seconds
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._waiters: Dict[str, int] = defaultdict(int)
        self._processed_count = 0
        self._failed_count = 0
        self._last_error = None

    async def process(self, document_id: str) -> str:
        """Run indexing for a document. Returns the run outcome."""
        lock = self._locks[document_id]
        self._waiters[document_id] += 1
        try:
            async with lock:
                return await self._run(document_id)
        finally:
            self._waiters[document_id] -= 1
            if self._waiters[document_id] == 0:
                del self._waiters[document_id]
                del self._locks[document_id]

    async def _run(self, document_id: str) -> str:
        document = await self.document_store.claim_for_processing(document_id)
        if document is None:
            logger.info(f"Document {document_id} is not pending; skipping run")
            indexing_runs_total.labels(outcome="skipped").inc()
            return "skipped"

        tenant_id = document.tenant_id
        start = time.time()
        indexing_runs_in_progress.inc()
        try:
            try:
                text = await asyncio.wait_for(
                    self.extractor.extract(document),
                    timeout=self.extraction_timeout_seconds,
                )
                spans = self.chunker.chunk(text)
                if not spans:
                    raise EmptyContent(f"Document {document_id} produced no chunks")

                chunks = []
                for index, span in enumerate(spans):
                    log_embedding_operation(logger, "GENERATE", f"chunk {index} of {document_id}", tenant_id)
                    embedding = await self.embedding_service.embed_text(span.text)
                    chunks.append(build_chunk(tenant_id, document_id, index, span, embedding))

                written = await self.document_store.complete_run(document_id, tenant_id, chunks, text)

            except asyncio.CancelledError:
                logger.warning(f"Indexing of document {document_id} cancelled; releasing it")
                await self.document_store.release_run(document_id)
                indexing_runs_total.labels(outcome="cancelled").inc()
                raise
            except asyncio.TimeoutError:
                return await self._fail(
                    document_id, tenant_id,
                    f"Text extraction timed out after {self.extraction_timeout_seconds}s",
                )
            except KnowledgeBaseError as e:
                return await self._fail(document_id, tenant_id, e.message)
            except Exception as e:
                logger.exception(f"Unexpected error indexing document {document_id}")
                return await self._fail(document_id, tenant_id, f"{type(e).__name__}: {e}")

            if not written:
                indexing_runs_total.labels(outcome="aborted").inc()
                return "aborted"

            self._processed_count += 1
            indexing_runs_total.labels(outcome="indexed").inc()
            logger.info(f"Document {document_id} indexed with {len(chunks)} chunks")
            return "indexed"
        finally:
            indexing_runs_in_progress.dec()
            indexing_run_duration.observe(time.time() - start)

    async def _fail(self, document_id: str, tenant_id: str, message: str) -> str:
        self._failed_count += 1
        self._last_error = message
        logger.error(f"Indexing failed for document {document_id}: {message}")

        recorded = await self.document_store.fail_run(document_id, tenant_id, message)
        outcome = "failed" if recorded else "aborted"
        indexing_runs_total.labels(outcome=outcome).inc()
        return outcome

    def get_stats(self) -> Dict[str, Any]:
        total = self._processed_count + self._failed_count
        success_rate = (self._processed_count / total * 100) if total > 0 else 0

        return {
            "processed_jobs": self._processed_count,
            "failed_jobs": self._failed_count,
            "success_rate": round(success_rate, 1),
            "last_error": self._last_error,
        }
