from fastapi import APIRouter, Depends

from app.core.dependencies import get_answer_service, limit_searches
from app.core.tenancy import get_tenant_id
from app.services.answer_service import GroundedAnswer, GroundedAnswerService
from app.utils.dto.answer import AnswerRequest

router = APIRouter()


@router.post("", response_model=GroundedAnswer, dependencies=[Depends(limit_searches)])
async def answer(
    request: AnswerRequest,
    tenant_id: str = Depends(get_tenant_id),
    service: GroundedAnswerService = Depends(get_answer_service),
):
    """Answer a customer message from the knowledge base, or decline."""
    return await service.answer_with_context(
        tenant_id, request.message, request.max_chunks, request.min_similarity
    )
