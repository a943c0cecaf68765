from typing import Optional

import redis.asyncio as aioredis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from app.core.config import Settings
from app.core.rate_limiter import RateLimiter, create_redis_client
from app.core.tenancy import get_tenant_id
from app.db.base import Base, load_all_models
from app.db.sessions import create_engine, create_session_factory
from app.services.answer_service import GroundedAnswerService, IdentityQueryRewriter, LLMQueryRewriter
from app.services.chunk_store import ChunkStore
from app.services.document_store import DocumentStore
from app.services.embedding_service import GeminiEmbeddingService
from app.services.generation_service import GeminiGenerationService
from app.services.ingestion_service import IngestionService
from app.services.search_service import SearchService
from app.services.storage_service import StorageService
from app.services.text_extractor import TextExtractor
from app.utils.chunking import TokenWindowChunker
from app.utils.logger import get_logger
from app.workers.indexing_worker import IndexingWorker
from app.workers.producer import IndexingJobProducer
from app.workers.queue import InMemoryIndexingQueue, IndexingQueue, KafkaIndexingQueue

logger = get_logger("core.dependencies")


class Container:
    """
    Wires the services together from settings.

    Providers, the queue and the session factory can be passed in to replace
    the ones built from settings.
    """

    def __init__(
        self,
        settings: Settings,
        engine: Optional[AsyncEngine] = None,
        session_factory: Optional[async_sessionmaker] = None,
        embedding_service=None,
        generation_service=None,
        queue: Optional[IndexingQueue] = None,
        redis_client: Optional[aioredis.Redis] = None,
    ):
        load_all_models()
        self.settings = settings

        self.redis = redis_client or create_redis_client(settings.REDIS_HOST, settings.REDIS_PORT)
        self.upload_limiter = RateLimiter(self.redis, "uploads", settings.UPLOADS_PER_MINUTE)
        self.search_limiter = RateLimiter(self.redis, "searches", settings.SEARCHES_PER_MINUTE)

        if session_factory is None:
            engine = engine or create_engine(
                settings.DATABASE_URL, settings.DATABASE_POOL_SIZE, settings.DATABASE_MAX_OVERFLOW
            )
            session_factory = create_session_factory(engine)
        self.engine = engine
        self.session_factory = session_factory

        self.embedding_service = embedding_service or GeminiEmbeddingService(
            api_key=settings.GEMINI_API_KEY,
            model=settings.EMBEDDING_MODEL,
            dimension=settings.EMBEDDING_DIMENSION,
            timeout_seconds=settings.EMBEDDING_TIMEOUT_SECONDS,
        )
        self.generation_service = generation_service or GeminiGenerationService(
            api_key=settings.GEMINI_API_KEY,
            model=settings.GENERATION_MODEL,
            temperature=settings.GENERATION_TEMPERATURE,
            timeout_seconds=settings.GENERATION_TIMEOUT_SECONDS,
        )

        self.storage = StorageService(settings.UPLOAD_DIR)
        self.chunk_store = ChunkStore(session_factory, settings.EMBEDDING_DIMENSION)
        self.document_store = DocumentStore(
            session_factory, self.chunk_store, stale_after_seconds=settings.STALE_RUN_SECONDS
        )

        self.worker = IndexingWorker(
            document_store=self.document_store,
            extractor=TextExtractor(self.storage),
            chunker=TokenWindowChunker(
                chunk_size_tokens=settings.CHUNK_SIZE_TOKENS,
                overlap_tokens=settings.CHUNK_OVERLAP_TOKENS,
                tokens_per_word=settings.TOKENS_PER_WORD,
            ),
            embedding_service=self.embedding_service,
            extraction_timeout_seconds=settings.EXTRACTION_TIMEOUT_SECONDS,
        )
        self.queue = queue or self._build_queue()

        self.ingestion_service = IngestionService(
            self.document_store, self.storage, self.queue, settings.MAX_UPLOAD_BYTES
        )
        self.search_service = SearchService(
            self.embedding_service,
            self.chunk_store,
            default_max_results=settings.SEARCH_MAX_RESULTS,
            default_min_similarity=settings.SEARCH_MIN_SIMILARITY,
        )
        rewriter = (
            LLMQueryRewriter(self.generation_service)
            if settings.QUERY_REWRITE_ENABLED
            else IdentityQueryRewriter()
        )
        self.answer_service = GroundedAnswerService(
            self.search_service,
            self.generation_service,
            query_rewriter=rewriter,
            default_max_chunks=settings.ANSWER_MAX_CHUNKS,
            default_min_similarity=settings.ANSWER_MIN_SIMILARITY,
        )

    def _build_queue(self) -> IndexingQueue:
        backend = self.settings.INDEXING_QUEUE_BACKEND.lower()
        if backend == "kafka":
            return KafkaIndexingQueue(
                IndexingJobProducer(self.settings.KAFKA_BROKER, self.settings.KAFKA_TOPIC)
            )
        if backend == "memory":
            return InMemoryIndexingQueue(self.worker.process, workers=self.settings.INDEXING_WORKERS)
        raise ValueError(f"Unknown INDEXING_QUEUE_BACKEND: {self.settings.INDEXING_QUEUE_BACKEND!r}")

    async def create_tables(self) -> None:
        if self.engine is None:
            return
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def startup(self) -> None:
        await self.create_tables()
        await self.queue.start()
        await self.ingestion_service.resume_pending()
        logger.info(f"Services started with {type(self.queue).__name__}")

    async def shutdown(self) -> None:
        await self.queue.stop()
        await self.redis.aclose()
        if self.engine is not None:
            await self.engine.dispose()
        logger.info("Services stopped")


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_ingestion_service(request: Request) -> IngestionService:
    return get_container(request).ingestion_service


def get_search_service(request: Request) -> SearchService:
    return get_container(request).search_service


def get_answer_service(request: Request) -> GroundedAnswerService:
    return get_container(request).answer_service


def get_chunk_store(request: Request) -> ChunkStore:
    return get_container(request).chunk_store


async def limit_uploads(request: Request, tenant_id: str = Depends(get_tenant_id)) -> None:
    await get_container(request).upload_limiter.check(tenant_id)


async def limit_searches(request: Request, tenant_id: str = Depends(get_tenant_id)) -> None:
    await get_container(request).search_limiter.check(tenant_id)
