from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import selectinload
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.core.errors import DocumentBusy, NotFound
from app.db.models.chunks import Chunk
from app.db.models.document import Document, DocumentStatus, can_transition
from app.services.chunk_store import ChunkStore
from app.utils.logger import get_logger, log_database_operation, log_indexing_transition

logger = get_logger("services.document_store")

MAX_ERROR_LENGTH = 500

db_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type((OperationalError, ConnectionError)),
    reraise=True,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStore:
    """
    Persistence for knowledge documents and their lifecycle.

    Status changes go through conditional updates so that a transition only
    happens from the state it is allowed from, even with several workers.

    A document left in ``processing`` longer than ``stale_after_seconds``
    belongs to a run that died; it may be reprocessed or recovered.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        chunk_store: ChunkStore,
        stale_after_seconds: float = 1800.0,
    ):
        self.session_factory = session_factory
        self.chunk_store = chunk_store
        self.stale_after_seconds = stale_after_seconds

    def is_stale(self, document: Document) -> bool:
        updated_at = document.updated_at
        if updated_at is None:
            return True
        if updated_at.tzinfo is None:
            # SQLite hands back naive UTC timestamps
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        return (_now() - updated_at).total_seconds() > self.stale_after_seconds

    def _is_busy(self, document: Document) -> bool:
        return document.status == DocumentStatus.processing and not self.is_stale(document)

    async def create(self, document: Document) -> Document:
        document.status = DocumentStatus.pending
        document.is_deleted = False
        document.chunk_count = 0
        document.token_count = 0
        document.created_at = document.created_at or _now()
        document.updated_at = document.created_at

        async with self.session_factory() as db:
            db.add(document)
            await db.commit()
            log_database_operation(logger, "INSERT", "documents", document.id)
            return document

    async def get(self, document_id: str, tenant_id: Optional[str] = None, with_chunks: bool = False) -> Document:
        """Load a live document. Deleted documents and other tenants' documents are NotFound."""
        stmt = select(Document).where(Document.id == document_id, Document.is_deleted.is_(False))
        if tenant_id is not None:
            stmt = stmt.where(Document.tenant_id == tenant_id)
        if with_chunks:
            stmt = stmt.options(selectinload(Document.chunks))

        async with self.session_factory() as db:
            log_database_operation(logger, "SELECT", "documents", document_id)
            result = await db.execute(stmt)
            document = result.scalar_one_or_none()

        if document is None:
            raise NotFound("Document", document_id)
        return document

    async def list(self, tenant_id: str, status: Optional[DocumentStatus] = None) -> List[Document]:
        stmt = (
            select(Document)
            .where(Document.tenant_id == tenant_id, Document.is_deleted.is_(False))
            .order_by(Document.created_at.desc())
        )
        if status is not None:
            stmt = stmt.where(Document.status == status)

        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def update_metadata(
        self,
        document_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Document:
        async with self.session_factory() as db:
            document = await self._load_live(db, document_id, tenant_id)
            if title is not None:
                document.title = title
            if description is not None:
                document.description = description
            document.updated_at = _now()
            await db.commit()
            log_database_operation(logger, "UPDATE", "documents", document_id)
            return document

    async def replace_source(
        self,
        document_id: str,
        tenant_id: Optional[str] = None,
        raw_content: Optional[str] = None,
        file_path: Optional[str] = None,
        file_size: Optional[int] = None,
        mime_type: Optional[str] = None,
        original_filename: Optional[str] = None,
    ) -> Tuple[Document, Optional[str]]:
        """
        Point a document at new source content. Returns the document and the
        previously stored file path (so the caller can remove it).
        """
        async with self.session_factory() as db:
            document = await self._load_live(db, document_id, tenant_id)
            if self._is_busy(document):
                raise DocumentBusy(document_id)

            previous_path = None
            if raw_content is not None:
                document.raw_content = raw_content
            if file_path is not None:
                previous_path = document.file_path
                document.file_path = file_path
                document.file_size = file_size
                document.mime_type = mime_type
                document.original_filename = original_filename or document.original_filename
            document.updated_at = _now()
            await db.commit()
            return document, previous_path

    async def request_reprocess(self, document_id: str, tenant_id: Optional[str] = None) -> Tuple[Document, bool]:
        """
        Reset an indexed, failed or stale processing document to pending.

        Returns ``(document, needs_enqueue)``. A pending document is enqueued
        again in case its earlier job was lost; the queue coalesces duplicates
        and the claim skips any run that is not first. A document with a live
        run is rejected.
        """
        async with self.session_factory() as db:
            document = await self._load_live(db, document_id, tenant_id)
            current = DocumentStatus(document.status)

            if current == DocumentStatus.pending:
                logger.info(f"Reprocess of {document_id} requested while pending; re-enqueueing")
                return document, True
            if self._is_busy(document):
                raise DocumentBusy(document_id)
            if current == DocumentStatus.processing:
                logger.warning(f"Document {document_id} has a stale run; resetting to pending")

            result = await db.execute(
                update(Document)
                .where(
                    Document.id == document_id,
                    Document.status == current,
                    Document.is_deleted.is_(False),
                )
                .values(status=DocumentStatus.pending, error_message=None, updated_at=_now())
                .execution_options(synchronize_session=False)
            )
            await db.commit()

            if result.rowcount != 1:
                # Another request moved it first; its job covers this one
                return await self.get(document_id, tenant_id), False

            await db.refresh(document)
            log_indexing_transition(logger, document_id, current.value, DocumentStatus.pending.value)
            return document, True

    async def soft_delete(self, document_id: str, tenant_id: Optional[str] = None) -> Document:
        """Mark a document deleted and purge its chunks in one transaction."""
        async with self.session_factory() as db:
            document = await self._load_live(db, document_id, tenant_id)
            document.is_deleted = True
            document.updated_at = _now()
            removed = await self.chunk_store.delete_for_document(db, document.tenant_id, document_id)
            await db.commit()

        logger.info(f"Soft-deleted document {document_id}, purged {removed} chunks")
        return document

    @db_retry
    async def claim_for_processing(self, document_id: str) -> Optional[Document]:
        """
        Atomically move a pending document to processing.

        Returns the claimed document, or None when it is not pending (already
        claimed by another run, finished, or deleted).
        """
        async with self.session_factory() as db:
            try:
                result = await db.execute(
                    update(Document)
                    .where(
                        Document.id == document_id,
                        Document.status == DocumentStatus.pending,
                        Document.is_deleted.is_(False),
                    )
                    .values(status=DocumentStatus.processing, updated_at=_now())
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
            except SQLAlchemyError:
                await db.rollback()
                raise

            if result.rowcount != 1:
                return None

            document = await db.get(Document, document_id)
            log_indexing_transition(logger, document_id, "pending", "processing")
            return document

    @db_retry
    async def release_run(self, document_id: str) -> bool:
        """Hand an interrupted run's document back to pending so it can be claimed again."""
        async with self.session_factory() as db:
            result = await db.execute(
                update(Document)
                .where(Document.id == document_id, Document.status == DocumentStatus.processing)
                .values(status=DocumentStatus.pending, updated_at=_now())
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        released = result.rowcount == 1
        if released:
            log_indexing_transition(logger, document_id, "processing", "pending")
        return released

    async def recover_interrupted_runs(self) -> List[Document]:
        """
        Reset stale processing documents to pending and return every live
        pending document, so the caller can enqueue them again.
        """
        async with self.session_factory() as db:
            result = await db.execute(
                select(Document).where(
                    Document.is_deleted.is_(False),
                    Document.status.in_([DocumentStatus.pending, DocumentStatus.processing]),
                )
            )
            documents = list(result.scalars().all())

            resumable = []
            for document in documents:
                if document.status == DocumentStatus.processing:
                    if not self.is_stale(document):
                        continue
                    reset = await db.execute(
                        update(Document)
                        .where(Document.id == document.id, Document.status == DocumentStatus.processing)
                        .values(status=DocumentStatus.pending, updated_at=_now())
                        .execution_options(synchronize_session=False)
                    )
                    if reset.rowcount != 1:
                        continue
                    log_indexing_transition(logger, document.id, "processing", "pending", reason="stale")
                resumable.append(document)
            await db.commit()

        return resumable

    @db_retry
    async def complete_run(
        self,
        document_id: str,
        tenant_id: str,
        chunks: List[Chunk],
        extracted_text: str,
    ) -> bool:
        """
        Persistence checkpoint of a successful run.

        Re-reads the document in the same transaction that swaps the chunk set.
        Returns False without writing anything if the document was deleted or
        is no longer processing.
        """
        async with self.session_factory() as db:
            try:
                document = await self._lock_for_checkpoint(db, document_id)
                if document is None:
                    return False

                await self.chunk_store.replace_for_document(db, tenant_id, document_id, chunks)

                now = _now()
                document.status = DocumentStatus.indexed
                document.error_message = None
                document.extracted_text = extracted_text
                document.chunk_count = len(chunks)
                document.token_count = sum(c.token_count for c in chunks)
                document.indexed_at = now
                document.updated_at = now
                await db.commit()
            except SQLAlchemyError:
                await db.rollback()
                raise

        log_indexing_transition(logger, document_id, "processing", "indexed", chunk_count=len(chunks))
        return True

    @db_retry
    async def fail_run(self, document_id: str, tenant_id: str, error_message: str) -> bool:
        """Record a failed run and drop any chunks the document still owns."""
        async with self.session_factory() as db:
            try:
                document = await self._lock_for_checkpoint(db, document_id)
                if document is None:
                    return False

                await self.chunk_store.delete_for_document(db, tenant_id, document_id)
                document.status = DocumentStatus.failed
                document.error_message = (error_message or "Unknown error")[:MAX_ERROR_LENGTH]
                document.chunk_count = 0
                document.token_count = 0
                document.updated_at = _now()
                await db.commit()
            except SQLAlchemyError:
                await db.rollback()
                raise

        log_indexing_transition(logger, document_id, "processing", "failed", error=error_message)
        return True

    async def stats(self, tenant_id: str) -> Dict[str, int]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(
                    Document.status,
                    func.count(Document.id),
                    func.coalesce(func.sum(Document.chunk_count), 0),
                    func.coalesce(func.sum(Document.token_count), 0),
                )
                .where(Document.tenant_id == tenant_id, Document.is_deleted.is_(False))
                .group_by(Document.status)
            )
            rows = result.all()

        stats = {
            "total_documents": 0,
            "indexed_documents": 0,
            "processing_documents": 0,
            "failed_documents": 0,
            "pending_documents": 0,
            "total_chunks": 0,
            "total_tokens": 0,
        }
        for status, count, chunk_total, token_total in rows:
            status = DocumentStatus(status)
            stats["total_documents"] += count
            stats[f"{status.value}_documents"] = count
            if status == DocumentStatus.indexed:
                stats["total_chunks"] += int(chunk_total)
                stats["total_tokens"] += int(token_total)
        return stats

    async def _load_live(self, db, document_id: str, tenant_id: Optional[str]) -> Document:
        stmt = select(Document).where(Document.id == document_id, Document.is_deleted.is_(False))
        if tenant_id is not None:
            stmt = stmt.where(Document.tenant_id == tenant_id)
        result = await db.execute(stmt)
        document = result.scalar_one_or_none()
        if document is None:
            raise NotFound("Document", document_id)
        return document

    async def _lock_for_checkpoint(self, db, document_id: str) -> Optional[Document]:
        result = await db.execute(
            select(Document).where(Document.id == document_id).with_for_update()
        )
        document = result.scalar_one_or_none()

        if document is None or document.is_deleted:
            logger.warning(f"Document {document_id} was deleted during indexing; aborting run")
            return None
        if not can_transition(DocumentStatus(document.status), DocumentStatus.indexed):
            logger.warning(f"Document {document_id} is {document.status}, not processing; aborting run")
            return None
        return document
