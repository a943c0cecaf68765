import asyncio
import time
from functools import partial
from typing import List, Optional

import google.generativeai as genai

from app.core.errors import DimensionMismatch, EmbeddingProviderError
from app.utils.logger import get_logger
from app.utils.metrics import embedding_generation_total, embedding_generation_duration

logger = get_logger("services.embedding")


class GeminiEmbeddingService:

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "models/text-embedding-004",
        dimension: int = 768,
        timeout_seconds: float = 30.0,
    ):
        if not api_key:
            raise ValueError("Missing GEMINI_API_KEY for the embedding provider")

        genai.configure(api_key=api_key)
        self.model = model
        self.dimension = dimension
        self.timeout_seconds = timeout_seconds

    async def embed_text(self, text: str) -> List[float]:
        """Embed a document chunk."""
        return await self._embed(text, task_type="retrieval_document")

    async def embed_query(self, text: str) -> List[float]:
        """Embed a search query."""
        return await self._embed(text, task_type="retrieval_query")

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed several chunks, one provider call each. Stops at the first failure."""
        return [await self.embed_text(text) for text in texts]

    async def _embed(self, text: str, task_type: str) -> List[float]:
        if not text or not text.strip():
            raise EmbeddingProviderError("Cannot embed blank text")

        start = time.time()
        try:
            # Run blocking genai operation in thread executor
            loop = asyncio.get_running_loop()
            result = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    partial(
                        genai.embed_content,
                        model=self.model,
                        content=text,
                        task_type=task_type,
                        output_dimensionality=self.dimension,
                    ),
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            embedding_generation_total.labels(status="failed").inc()
            raise EmbeddingProviderError(
                f"Embedding request timed out after {self.timeout_seconds}s"
            ) from e
        except Exception as e:
            embedding_generation_total.labels(status="failed").inc()
            logger.error(f"Embedding provider error: {e}")
            raise EmbeddingProviderError(f"Embedding provider error: {e}") from e
        finally:
            embedding_generation_duration.observe(time.time() - start)

        vector = result.get("embedding") if isinstance(result, dict) else None
        if not isinstance(vector, list):
            embedding_generation_total.labels(status="failed").inc()
            raise EmbeddingProviderError("Embedding provider returned no vector")

        if len(vector) != self.dimension:
            embedding_generation_total.labels(status="failed").inc()
            raise DimensionMismatch(self.dimension, len(vector))

        embedding_generation_total.labels(status="success").inc()
        return [float(v) for v in vector]
