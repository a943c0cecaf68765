import uuid
from typing import Dict, List, Optional

from app.core.errors import EmptyContent, PayloadTooLarge, QueueUnavailable, UnsupportedFormat
from app.db.models.document import Document, DocumentStatus, DocumentType
from app.services.document_store import DocumentStore
from app.services.storage_service import StorageService
from app.services.text_extractor import detect_document_type
from app.utils.logger import get_logger
from app.workers.queue import IndexingJob, IndexingQueue

logger = get_logger("services.ingestion")

FILE_TYPES = (DocumentType.pdf, DocumentType.docx, DocumentType.txt)


class IngestionService:
    """
    Document lifecycle API: submission, metadata edits, content replacement,
    deletion and reprocessing.

    Nothing here indexes inline. Every path that needs a new run resets the
    document to ``pending`` and hands it to the indexing queue.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        storage: StorageService,
        queue: IndexingQueue,
        max_upload_bytes: int = 20 * 1024 * 1024,
    ):
        self.document_store = document_store
        self.storage = storage
        self.queue = queue
        self.max_upload_bytes = max_upload_bytes

    async def submit_text_document(
        self,
        tenant_id: str,
        title: str,
        description: Optional[str],
        content: str,
    ) -> str:
        if not content or not content.strip():
            raise EmptyContent("Text document content is empty")

        document = Document(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            title=title,
            description=description,
            document_type=DocumentType.text,
            raw_content=content,
        )
        await self.document_store.create(document)
        logger.info(f"Created text document {document.id} for tenant {tenant_id}")

        await self._enqueue_new(document)
        return document.id

    async def submit_file_document(
        self,
        tenant_id: str,
        title: str,
        description: Optional[str],
        document_type: Optional[DocumentType],
        data: bytes,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> str:
        document_type = self._resolve_file_type(document_type, filename)
        self._check_upload(data)

        file_path = await self.storage.save_bytes(tenant_id, data, filename or f"upload.{document_type.value}")
        document = Document(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            title=title,
            description=description,
            document_type=document_type,
            original_filename=filename,
            file_path=file_path,
            file_size=len(data),
            mime_type=mime_type,
        )
        try:
            await self.document_store.create(document)
        except Exception:
            self.storage.delete_file(file_path)
            raise
        logger.info(f"Created {document_type.value} document {document.id} for tenant {tenant_id}")

        await self._enqueue_new(document)
        return document.id

    async def get_document(self, document_id: str, tenant_id: Optional[str] = None) -> Document:
        """Document detail with its chunks in index order."""
        return await self.document_store.get(document_id, tenant_id, with_chunks=True)

    async def list_documents(self, tenant_id: str, status: Optional[DocumentStatus] = None) -> List[Document]:
        return await self.document_store.list(tenant_id, status)

    async def update_document_metadata(
        self,
        document_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> Document:
        return await self.document_store.update_metadata(document_id, title, description, tenant_id)

    async def replace_document_content(
        self,
        document_id: str,
        tenant_id: Optional[str] = None,
        content: Optional[str] = None,
        data: Optional[bytes] = None,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> Document:
        """
        Swap the source of a document and schedule a fresh run.

        Text documents take ``content``; file documents take ``data`` of the
        same type they were created with. The old chunks stay searchable until
        the new run commits its replacement set.
        """
        document = await self.document_store.get(document_id, tenant_id)
        document_type = DocumentType(document.document_type)

        if document_type == DocumentType.text:
            if not content or not content.strip():
                raise EmptyContent("Text document content is empty")
            await self.document_store.replace_source(document_id, tenant_id, raw_content=content)
        else:
            if data is None:
                raise UnsupportedFormat(f"Document {document_id} is a {document_type.value} file; upload a file")
            if filename and detect_document_type(filename) != document_type:
                raise UnsupportedFormat(
                    f"Replacement for a {document_type.value} document must be a {document_type.value} file"
                )
            self._check_upload(data)

            new_path = await self.storage.save_bytes(document.tenant_id, data, filename or f"upload.{document_type.value}")
            try:
                _, previous_path = await self.document_store.replace_source(
                    document_id,
                    tenant_id,
                    file_path=new_path,
                    file_size=len(data),
                    mime_type=mime_type,
                    original_filename=filename,
                )
            except Exception:
                self.storage.delete_file(new_path)
                raise
            if previous_path and previous_path != new_path:
                self.storage.delete_file(previous_path)

        logger.info(f"Replaced content of document {document_id}")
        return await self.reprocess_document(document_id, tenant_id)

    async def delete_document(self, document_id: str, tenant_id: Optional[str] = None) -> None:
        document = await self.document_store.soft_delete(document_id, tenant_id)
        if document.file_path:
            self.storage.delete_file(document.file_path)
        logger.info(f"Deleted document {document_id}")

    async def reprocess_document(self, document_id: str, tenant_id: Optional[str] = None) -> Document:
        document, needs_enqueue = await self.document_store.request_reprocess(document_id, tenant_id)
        if needs_enqueue:
            await self._enqueue(document)
        return document

    async def get_stats(self, tenant_id: str) -> Dict[str, int]:
        return await self.document_store.stats(tenant_id)

    async def resume_pending(self) -> int:
        """
        Re-enqueue documents whose jobs did not survive a restart: every pending
        document plus processing ones whose run went stale. Returns how many
        jobs were handed to the queue.
        """
        documents = await self.document_store.recover_interrupted_runs()
        resumed = 0
        for document in documents:
            try:
                await self._enqueue(document)
            except QueueUnavailable:
                logger.warning(f"Could not resume document {document.id}; it stays pending")
                continue
            resumed += 1

        if resumed:
            logger.info(f"Resumed indexing for {resumed} documents")
        return resumed

    async def _enqueue_new(self, document: Document) -> None:
        try:
            await self._enqueue(document)
        except QueueUnavailable:
            # Nothing would ever index it; do not leave an orphaned pending document
            await self.document_store.soft_delete(document.id, document.tenant_id)
            if document.file_path:
                self.storage.delete_file(document.file_path)
            raise

    async def _enqueue(self, document: Document) -> None:
        try:
            await self.queue.enqueue(IndexingJob(document_id=document.id, tenant_id=document.tenant_id))
        except Exception as e:
            logger.error(f"Failed to enqueue indexing job for document {document.id}: {e}")
            raise QueueUnavailable(f"Indexing queue unavailable: {e}") from e

    def _resolve_file_type(self, document_type: Optional[DocumentType], filename: Optional[str]) -> DocumentType:
        if document_type is None:
            return detect_document_type(filename)
        try:
            document_type = DocumentType(document_type)
        except ValueError:
            raise UnsupportedFormat(f"Unknown document type: {document_type!r}")
        if document_type not in FILE_TYPES:
            raise UnsupportedFormat(f"Document type {document_type.value!r} cannot be uploaded as a file")
        return document_type

    def _check_upload(self, data: bytes) -> None:
        if not data:
            raise EmptyContent("Uploaded file is empty")
        if len(data) > self.max_upload_bytes:
            raise PayloadTooLarge(len(data), self.max_upload_bytes)
