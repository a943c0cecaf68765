from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Path, Query, UploadFile

from app.core.dependencies import get_ingestion_service, limit_uploads
from app.core.tenancy import get_tenant_id
from app.db.models.document import DocumentStatus, DocumentType
from app.services.ingestion_service import IngestionService
from app.utils.dto.document import (
    DocumentCreated,
    DocumentDetailResponse,
    DocumentResponse,
    DocumentStats,
    DocumentUpdate,
    TextContentReplace,
    TextDocumentCreate,
)
from app.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/text", response_model=DocumentCreated, status_code=202)
async def create_text_document(
    payload: TextDocumentCreate,
    tenant_id: str = Depends(get_tenant_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    document_id = await service.submit_text_document(
        tenant_id, payload.title, payload.description, payload.content
    )
    return DocumentCreated(id=document_id)


@router.post(
    "/upload",
    response_model=DocumentCreated,
    status_code=202,
    dependencies=[Depends(limit_uploads)],
)
async def upload_document(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    document_type: Optional[DocumentType] = Form(None),
    tenant_id: str = Depends(get_tenant_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    logger.info(f"Uploading file '{file.filename}' for tenant {tenant_id}")
    data = await file.read()
    document_id = await service.submit_file_document(
        tenant_id,
        title or file.filename or "Untitled",
        description,
        document_type,
        data,
        filename=file.filename,
        mime_type=file.content_type,
    )
    return DocumentCreated(id=document_id)


@router.get("", response_model=List[DocumentResponse])
async def list_documents(
    status: Optional[DocumentStatus] = Query(None),
    tenant_id: str = Depends(get_tenant_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """List the tenant's documents, newest first."""
    return await service.list_documents(tenant_id, status)


@router.get("/stats", response_model=DocumentStats)
async def document_stats(
    tenant_id: str = Depends(get_tenant_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    return await service.get_stats(tenant_id)


@router.get("/{document_id}", response_model=DocumentDetailResponse)
async def get_document(
    document_id: str = Path(..., description="ID of the document"),
    tenant_id: str = Depends(get_tenant_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    return await service.get_document(document_id, tenant_id)


@router.patch("/{document_id}", response_model=DocumentResponse)
async def update_document(
    payload: DocumentUpdate,
    document_id: str = Path(..., description="ID of the document to update"),
    tenant_id: str = Depends(get_tenant_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    if payload.title is None and payload.description is None:
        raise HTTPException(status_code=400, detail="Nothing to update")
    return await service.update_document_metadata(
        document_id, payload.title, payload.description, tenant_id
    )


@router.put("/{document_id}/content", response_model=DocumentResponse, status_code=202)
async def replace_text_content(
    payload: TextContentReplace,
    document_id: str = Path(..., description="ID of the text document"),
    tenant_id: str = Depends(get_tenant_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    return await service.replace_document_content(document_id, tenant_id, content=payload.content)


@router.put(
    "/{document_id}/file",
    response_model=DocumentResponse,
    status_code=202,
    dependencies=[Depends(limit_uploads)],
)
async def replace_file_content(
    file: UploadFile = File(...),
    document_id: str = Path(..., description="ID of the file document"),
    tenant_id: str = Depends(get_tenant_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    data = await file.read()
    return await service.replace_document_content(
        document_id, tenant_id, data=data, filename=file.filename, mime_type=file.content_type
    )


@router.delete("/{document_id}", status_code=204)
async def delete_document(
    document_id: str = Path(..., description="ID of the document to delete"),
    tenant_id: str = Depends(get_tenant_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    await service.delete_document(document_id, tenant_id)


@router.post("/{document_id}/reprocess", response_model=DocumentResponse, status_code=202)
async def reprocess_document(
    document_id: str = Path(..., description="ID of the document to re-index"),
    tenant_id: str = Depends(get_tenant_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    return await service.reprocess_document(document_id, tenant_id)
