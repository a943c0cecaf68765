from datetime import datetime, timezone
import os

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("", summary="Health check")
async def health(request: Request):
    container = getattr(request.app.state, "container", None)
    return {
        "message": f"Welcome to {container.settings.PROJECT_NAME}" if container else "Welcome",
        "status": "ok",
        "queue_backend": type(container.queue).__name__ if container else None,
        "indexing": container.worker.get_stats() if container else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "git_commit": os.getenv("GIT_COMMIT")
    }
