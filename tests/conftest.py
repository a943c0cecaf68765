"""Shared fixtures: in-memory SQLite, deterministic providers, in-process queue."""

import hashlib
import re
from typing import List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.errors import EmbeddingProviderError
from app.db.base import Base, load_all_models
from app.db.sessions import create_session_factory
from app.services.chunk_store import ChunkStore
from app.services.document_store import DocumentStore
from app.services.ingestion_service import IngestionService
from app.services.storage_service import StorageService
from app.services.text_extractor import TextExtractor
from app.utils.chunking import TokenWindowChunker
from app.workers.indexing_worker import IndexingWorker
from app.workers.queue import InMemoryIndexingQueue

TEST_DIMENSION = 512
TENANT_A = "tenant-a"
TENANT_B = "tenant-b"

_WORDS = re.compile(r"[a-z0-9]+")


class HashingEmbedder:
    """
    Bag-of-words embedder: each lowercased word increments one md5-selected
    bucket. Texts sharing words score high; unrelated texts score near zero.
    """

    def __init__(self, dimension: int = TEST_DIMENSION):
        self.dimension = dimension
        self.calls: List[str] = []
        self.fail_on: Optional[str] = None
        self.before_embed = None

    def vector(self, text: str) -> List[float]:
        vec = [0.0] * self.dimension
        for word in _WORDS.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
            vec[bucket] += 1.0
        return vec

    async def embed_text(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.before_embed is not None:
            await self.before_embed(text)
        if self.fail_on and self.fail_on in text:
            raise EmbeddingProviderError("provider unavailable")
        return self.vector(text)

    async def embed_query(self, text: str) -> List[float]:
        return await self.embed_text(text)


class FakeGenerator:
    def __init__(self, response: str = "{}"):
        self.response = response
        self.error: Optional[Exception] = None
        self.calls = []

    async def generate(self, system_prompt: str, user_prompt: str, json_output: bool = True) -> str:
        self.calls.append((system_prompt, user_prompt, json_output))
        if self.error is not None:
            raise self.error
        return self.response


@pytest_asyncio.fixture
async def engine():
    load_all_models()
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def chunk_store(session_factory):
    return ChunkStore(session_factory, TEST_DIMENSION)


@pytest.fixture
def document_store(session_factory, chunk_store):
    return DocumentStore(session_factory, chunk_store)


@pytest.fixture
def storage(tmp_path):
    return StorageService(tmp_path / "uploads")


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def chunker():
    # 30 words per chunk, 6 words of overlap
    return TokenWindowChunker(chunk_size_tokens=40, overlap_tokens=8, tokens_per_word=1.33)


@pytest.fixture
def worker(document_store, storage, chunker, embedder):
    return IndexingWorker(
        document_store=document_store,
        extractor=TextExtractor(storage),
        chunker=chunker,
        embedding_service=embedder,
        extraction_timeout_seconds=5.0,
    )


@pytest.fixture
def queue(worker):
    return InMemoryIndexingQueue(worker.process, workers=1)


@pytest.fixture
def ingestion(document_store, storage, queue):
    return IngestionService(document_store, storage, queue, max_upload_bytes=1024 * 1024)
