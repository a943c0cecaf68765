from fastapi import APIRouter
from app.api.v1.routes import answers, chunks, documents, health, search

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(documents.router, prefix="/documents", tags=["Documents"])
api_router.include_router(search.router, prefix="/search", tags=["Search"])
api_router.include_router(answers.router, prefix="/answers", tags=["Answers"])
api_router.include_router(chunks.router, prefix="/chunks", tags=["Chunks"])
api_router.include_router(health.router, prefix="/health", tags=["Health"])
