import time
from typing import List, Optional

from app.services.chunk_store import ChunkStore, ScoredChunk
from app.utils.logger import get_logger, log_embedding_operation
from app.utils.metrics import search_requests_total

logger = get_logger("services.search")


class SearchService:
    """Semantic search over a tenant's indexed chunks."""

    def __init__(self, embedding_service, chunk_store: ChunkStore, default_max_results: int = 5,
                 default_min_similarity: float = 0.7):
        self.embedding_service = embedding_service
        self.chunk_store = chunk_store
        self.default_max_results = default_max_results
        self.default_min_similarity = default_min_similarity

    async def search(
        self,
        tenant_id: str,
        query: str,
        max_results: Optional[int] = None,
        min_similarity: Optional[float] = None,
    ) -> List[ScoredChunk]:
        """
        Embed the query and return the closest chunks.

        Args:
            tenant_id: Tenant to search within
            query: Search query text
            max_results: Maximum number of chunks to return
            min_similarity: Cosine similarity threshold

        Returns:
            Chunks ordered by descending similarity. Empty when the tenant has
            nothing indexed or nothing clears the threshold.
        """
        max_results = self.default_max_results if max_results is None else max_results
        min_similarity = self.default_min_similarity if min_similarity is None else min_similarity

        start_time = time.time()
        log_embedding_operation(logger, "GENERATE", "query", tenant_id)
        query_embedding = await self.embedding_service.embed_query(query)

        hits = await self.chunk_store.nearest(tenant_id, query_embedding, max_results, min_similarity)

        search_requests_total.labels(result="hit" if hits else "empty").inc()
        logger.info(
            f"Search for tenant {tenant_id} completed in {(time.time() - start_time) * 1000:.2f}ms, "
            f"returning {len(hits)} chunks"
        )
        return hits

    async def has_indexed_content(self, tenant_id: str) -> bool:
        return await self.chunk_store.count_searchable(tenant_id) > 0
