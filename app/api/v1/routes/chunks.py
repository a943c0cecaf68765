from fastapi import APIRouter, Depends, Path

from app.core.dependencies import get_chunk_store
from app.core.errors import NotFound
from app.core.tenancy import get_tenant_id
from app.services.chunk_store import ChunkStore
from app.utils.dto.search import ChunkPurgeResponse

router = APIRouter()


@router.delete("/{chunk_id}", status_code=204)
async def delete_chunk(
    chunk_id: str = Path(..., description="ID of the chunk to delete"),
    tenant_id: str = Depends(get_tenant_id),
    chunk_store: ChunkStore = Depends(get_chunk_store),
):
    if not await chunk_store.delete(tenant_id, chunk_id):
        raise NotFound("Chunk", chunk_id)


@router.delete("", response_model=ChunkPurgeResponse)
async def purge_chunks(
    tenant_id: str = Depends(get_tenant_id),
    chunk_store: ChunkStore = Depends(get_chunk_store),
):
    """Drop every chunk the tenant owns. Documents are left in place."""
    return ChunkPurgeResponse(deleted=await chunk_store.delete_all_for_tenant(tenant_id))
