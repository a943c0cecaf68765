import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

import numpy as np
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import DimensionMismatch
from app.db.models.chunks import Chunk
from app.db.models.document import Document, DocumentStatus
from app.utils.chunking import TextChunk
from app.utils.logger import get_logger, log_database_operation
from app.utils.metrics import search_duration
from app.utils.similarity import cosine_scores

logger = get_logger("services.chunk_store")


@dataclass
class ScoredChunk:
    chunk: Chunk
    score: float
    document_title: str


def build_chunk(tenant_id: str, document_id: str, index: int, span: TextChunk, embedding: List[float]) -> Chunk:
    now = datetime.now(timezone.utc)
    return Chunk(
        id=str(uuid.uuid4()),
        document_id=document_id,
        tenant_id=tenant_id,
        content=span.text,
        chunk_index=index,
        start_char=span.start_char,
        end_char=span.end_char,
        token_count=span.token_count,
        embedding=list(embedding),
        created_at=now,
        updated_at=now,
    )


class ChunkStore:
    """
    Tenant-scoped chunk persistence with a linear-scan nearest-neighbor search.

    Every operation takes the tenant id and filters on it; there is no path that
    reads or mutates another tenant's chunks. ``nearest`` is O(N) in the tenant's
    indexed chunk count.
    """

    def __init__(self, session_factory: async_sessionmaker, dimension: int):
        self.session_factory = session_factory
        self.dimension = dimension

    def _check_dimension(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimension:
            raise DimensionMismatch(self.dimension, len(vector))

    async def upsert(self, tenant_id: str, chunk: Chunk) -> Chunk:
        if chunk.tenant_id != tenant_id:
            raise ValueError("Chunk tenant does not match the requested tenant")
        self._check_dimension(chunk.embedding)

        async with self.session_factory() as db:
            merged = await db.merge(chunk)
            await db.commit()
            log_database_operation(logger, "UPSERT", "chunks", chunk.id)
            return merged

    async def get(self, tenant_id: str, chunk_id: str) -> Optional[Chunk]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Chunk).where(Chunk.id == chunk_id, Chunk.tenant_id == tenant_id)
            )
            return result.scalar_one_or_none()

    async def get_batch(self, tenant_id: str, chunk_ids: Iterable[str]) -> List[Chunk]:
        ids = list(chunk_ids)
        if not ids:
            return []
        async with self.session_factory() as db:
            log_database_operation(logger, "SELECT", "chunks", f"batch_{len(ids)}")
            result = await db.execute(
                select(Chunk).where(Chunk.id.in_(ids), Chunk.tenant_id == tenant_id)
            )
            return list(result.scalars().all())

    async def list_for_document(self, tenant_id: str, document_id: str) -> List[Chunk]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Chunk)
                .where(Chunk.tenant_id == tenant_id, Chunk.document_id == document_id)
                .order_by(Chunk.chunk_index)
            )
            return list(result.scalars().all())

    async def count_for_tenant(self, tenant_id: str) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count()).select_from(Chunk).where(Chunk.tenant_id == tenant_id)
            )
            return int(result.scalar_one())

    async def count_searchable(self, tenant_id: str) -> int:
        """Chunks that ``nearest`` would consider: those of live, indexed documents."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count())
                .select_from(Chunk)
                .join(Document, Chunk.document_id == Document.id)
                .where(*self._searchable(tenant_id))
            )
            return int(result.scalar_one())

    @staticmethod
    def _searchable(tenant_id: str):
        return (
            Chunk.tenant_id == tenant_id,
            Document.tenant_id == tenant_id,
            Document.is_deleted.is_(False),
            Document.status == DocumentStatus.indexed,
        )

    async def delete(self, tenant_id: str, chunk_id: str) -> bool:
        return await self.delete_batch(tenant_id, [chunk_id]) > 0

    async def delete_batch(self, tenant_id: str, chunk_ids: Iterable[str]) -> int:
        ids = list(chunk_ids)
        if not ids:
            return 0
        async with self.session_factory() as db:
            result = await db.execute(
                delete(Chunk).where(Chunk.id.in_(ids), Chunk.tenant_id == tenant_id)
            )
            await db.commit()
            log_database_operation(logger, "DELETE", "chunks", f"batch_{len(ids)}")
            return result.rowcount or 0

    async def delete_all_for_tenant(self, tenant_id: str) -> int:
        async with self.session_factory() as db:
            result = await db.execute(delete(Chunk).where(Chunk.tenant_id == tenant_id))
            await db.commit()
            removed = result.rowcount or 0
            logger.info(f"Purged {removed} chunks for tenant {tenant_id}")
            return removed

    async def delete_for_document(self, db: AsyncSession, tenant_id: str, document_id: str) -> int:
        """Delete a document's chunks inside the caller's transaction."""
        result = await db.execute(
            delete(Chunk).where(Chunk.tenant_id == tenant_id, Chunk.document_id == document_id)
        )
        log_database_operation(logger, "DELETE", "chunks", f"document_{document_id}")
        return result.rowcount or 0

    async def replace_for_document(
        self,
        db: AsyncSession,
        tenant_id: str,
        document_id: str,
        chunks: List[Chunk],
    ) -> None:
        """
        Swap a document's chunk set inside the caller's transaction.

        Old chunks are deleted and the new ones added in the same unit of work,
        so readers see either the previous set or the new one after commit.
        """
        for chunk in chunks:
            if chunk.tenant_id != tenant_id or chunk.document_id != document_id:
                raise ValueError("Chunk does not belong to the document being replaced")
            self._check_dimension(chunk.embedding)

        await self.delete_for_document(db, tenant_id, document_id)
        db.add_all(chunks)
        log_database_operation(logger, "BULK_INSERT", "chunks", f"{len(chunks)}_chunks")

    async def nearest(
        self,
        tenant_id: str,
        query_vector: Sequence[float],
        limit: int,
        min_score: float,
    ) -> List[ScoredChunk]:
        """Cosine-ranked chunks of the tenant's live, indexed documents."""
        self._check_dimension(query_vector)
        if limit <= 0:
            return []

        start = time.time()
        async with self.session_factory() as db:
            log_database_operation(logger, "SELECT", "chunks", f"tenant_{tenant_id}")
            result = await db.execute(
                select(Chunk, Document.title)
                .join(Document, Chunk.document_id == Document.id)
                .where(*self._searchable(tenant_id))
            )
            rows = result.all()

        candidates = []
        vectors = []
        for chunk, title in rows:
            if not chunk.embedding or len(chunk.embedding) != self.dimension:
                logger.warning(f"Skipping chunk {chunk.id} with unusable embedding")
                continue
            candidates.append((chunk, title))
            vectors.append(chunk.embedding)

        if not candidates:
            search_duration.observe(time.time() - start)
            return []

        scores = cosine_scores(query_vector, np.asarray(vectors, dtype=np.float64))

        hits = [
            ScoredChunk(chunk=chunk, score=float(score), document_title=title)
            for (chunk, title), score in zip(candidates, scores)
            if score >= min_score
        ]
        hits.sort(key=lambda h: (-h.score, h.chunk.document_id, h.chunk.chunk_index))

        search_duration.observe(time.time() - start)
        logger.info(
            f"Scanned {len(candidates)} chunks for tenant {tenant_id}, "
            f"{len(hits)} above {min_score}, returning {min(len(hits), limit)}"
        )
        return hits[:limit]
