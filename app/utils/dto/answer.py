from typing import Optional

from pydantic import BaseModel, Field


class AnswerRequest(BaseModel):
    message: str = Field(..., description="Customer message", min_length=1, max_length=4000)
    max_chunks: Optional[int] = Field(default=None, description="Chunks of context to retrieve", ge=1, le=20)
    min_similarity: Optional[float] = Field(default=None, description="Minimum cosine similarity", ge=0.0, le=1.0)
