from sqlalchemy import Column, String, Text, DateTime, Integer, Boolean, Enum, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.db.base import Base
import enum, uuid


class DocumentStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    indexed = "indexed"
    failed = "failed"


class DocumentType(str, enum.Enum):
    text = "text"
    pdf = "pdf"
    docx = "docx"
    txt = "txt"


# Lifecycle edges; deletion is a side-exit allowed from every state.
# processing -> pending hands back an interrupted or stale run.
ALLOWED_TRANSITIONS = {
    DocumentStatus.pending: {DocumentStatus.processing},
    DocumentStatus.processing: {DocumentStatus.indexed, DocumentStatus.failed, DocumentStatus.pending},
    DocumentStatus.indexed: {DocumentStatus.pending},
    DocumentStatus.failed: {DocumentStatus.pending},
}


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


class Document(Base):
    __tablename__ = "documents"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    document_type = Column(Enum(DocumentType), nullable=False)

    original_filename = Column(String, nullable=True)
    file_path = Column(String, nullable=True)
    file_size = Column(Integer, nullable=True)
    mime_type = Column(String, nullable=True)

    raw_content = Column(Text, nullable=True)
    extracted_text = Column(Text, nullable=True)

    status = Column(Enum(DocumentStatus), nullable=False, default=DocumentStatus.pending, index=True)
    error_message = Column(String, nullable=True)
    chunk_count = Column(Integer, nullable=False, default=0)
    token_count = Column(Integer, nullable=False, default=0)
    is_deleted = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    indexed_at = Column(DateTime(timezone=True), nullable=True)

    chunks = relationship(
        "Chunk",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Chunk.chunk_index",
    )

    # Composite index for the common listing pattern: tenant_id + status
    __table_args__ = (
        Index('idx_documents_tenant_status', 'tenant_id', 'status'),
    )
