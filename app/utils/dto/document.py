from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.db.models.document import DocumentStatus, DocumentType


class TextDocumentCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = Field(None, max_length=2000)
    content: str = Field(..., min_length=1)


class DocumentUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = Field(None, max_length=2000)


class TextContentReplace(BaseModel):
    content: str = Field(..., min_length=1)


class DocumentCreated(BaseModel):
    id: str
    status: DocumentStatus = DocumentStatus.pending


class ChunkResponse(BaseModel):
    id: str
    chunk_index: int
    content: str
    start_char: int
    end_char: int
    token_count: int

    model_config = ConfigDict(from_attributes=True)


class DocumentResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    document_type: DocumentType
    original_filename: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    status: DocumentStatus
    error_message: Optional[str] = None
    chunk_count: int = 0
    token_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    indexed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DocumentDetailResponse(DocumentResponse):
    chunks: List[ChunkResponse] = Field(default_factory=list)


class DocumentStats(BaseModel):
    total_documents: int
    indexed_documents: int
    processing_documents: int
    failed_documents: int
    pending_documents: int
    total_chunks: int
    total_tokens: int
