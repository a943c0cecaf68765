import time

from fastapi import APIRouter, Depends

from app.core.dependencies import get_search_service, limit_searches
from app.core.tenancy import get_tenant_id
from app.services.search_service import SearchService
from app.utils.dto.search import ChunkSearchResponse, ChunkSearchResult, SearchRequest
from app.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/semantic", response_model=ChunkSearchResponse, dependencies=[Depends(limit_searches)])
async def semantic_search(
    request: SearchRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: SearchService = Depends(get_search_service),
):
    """
    Semantic search over the tenant's indexed chunks.

    Provider failures surface as 502 through the app's error handlers.
    """
    start_time = time.time()
    hits = await service.search(tenant_id, request.query, request.max_results, request.min_similarity)

    results = [
        ChunkSearchResult(
            chunk_id=hit.chunk.id,
            document_id=hit.chunk.document_id,
            document_title=hit.document_title,
            content=hit.chunk.content,
            chunk_index=hit.chunk.chunk_index,
            similarity=hit.score,
        )
        for hit in hits
    ]
    return ChunkSearchResponse(
        query=request.query,
        total_results=len(results),
        results=results,
        search_time_ms=(time.time() - start_time) * 1000,
    )
