from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from app.api import router
from app.core.config import settings
from app.core.dependencies import Container
from app.core.errors import (
    DimensionMismatch,
    DocumentBusy,
    EmbeddingProviderError,
    EmptyContent,
    GenerationProviderError,
    InvalidTenant,
    KnowledgeBaseError,
    NotFound,
    PayloadTooLarge,
    QueueUnavailable,
    UnsupportedFormat,
)
from app.utils.logger import get_logger, setup_logging

logger = get_logger("main")

ERROR_STATUS = {
    NotFound: 404,
    UnsupportedFormat: 400,
    EmptyContent: 400,
    InvalidTenant: 400,
    DocumentBusy: 409,
    PayloadTooLarge: 413,
    EmbeddingProviderError: 502,
    DimensionMismatch: 502,
    GenerationProviderError: 502,
    QueueUnavailable: 503,
}


async def knowledge_base_error_handler(request: Request, exc: KnowledgeBaseError):
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        500,
    )
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


def create_app(container: Optional[Container] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(
            level=settings.LOG_LEVEL,
            console=True,
            file=settings.LOG_TO_FILE,
            json_format=settings.LOG_JSON,
        )
        if getattr(app.state, "container", None) is None:
            app.state.container = Container(settings)
        await app.state.container.startup()
        try:
            yield
        finally:
            await app.state.container.shutdown()

    app = FastAPI(title="Multi-Tenant Knowledge Base API", version="1.0.0", lifespan=lifespan)
    app.state.container = container

    app.add_exception_handler(KnowledgeBaseError, knowledge_base_error_handler)

    # Prometheus metrics
    Instrumentator().instrument(app).expose(app)

    app.include_router(router.api_router)
    return app


app = create_app()
