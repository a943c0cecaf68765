from typing import List, Optional

from pydantic import BaseModel, Field


class SearchRequest(BaseModel):
    query: str = Field(..., description="Search query text", min_length=1, max_length=1000)
    max_results: Optional[int] = Field(default=None, description="Number of chunks to return", ge=1, le=100)
    min_similarity: Optional[float] = Field(default=None, description="Minimum cosine similarity", ge=0.0, le=1.0)


class ChunkSearchResult(BaseModel):
    chunk_id: str = Field(..., description="Chunk ID")
    document_id: str = Field(..., description="Document ID")
    document_title: str = Field(..., description="Document title")
    content: str = Field(..., description="Chunk text")
    chunk_index: int = Field(..., description="Index of chunk within document")
    similarity: float = Field(..., description="Cosine similarity to the query")


class ChunkSearchResponse(BaseModel):
    query: str = Field(..., description="Original search query")
    total_results: int = Field(..., description="Number of chunks returned")
    results: List[ChunkSearchResult] = Field(..., description="Search results")
    search_time_ms: float = Field(..., description="Search execution time in milliseconds")


class ChunkPurgeResponse(BaseModel):
    deleted: int
