from fastapi import APIRouter, Depends, HTTPException, status
from typing import Any, Dict
import logging

from novelly.container import ServiceContainer
from novelly.core.auth import get_current_user
from novelly.dependencies import get_container
from novelly.schemas.recommendation import RecommendationRequest, RecommendationsResponse
from novelly.services.recommendation_service import RecommendationMode
from novelly.utils.timing import now_ms

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recommendations"])


@router.post("/recommendations", response_model=RecommendationsResponse)
async def create_recommendations(
    request: RecommendationRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    try:
        mode = RecommendationMode(request.mode)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown mode '{request.mode}'",
        )

    if mode != RecommendationMode.INTERVIEW and not request.books:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="At least one book is required",
        )
    if mode == RecommendationMode.CONTEXT and not (request.context_input or "").strip():
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Please describe what you are looking for",
        )

    t0 = now_ms()
    result = await container.recommendations.generate(
        user["id"],
        mode,
        request.books,
        context_input=request.context_input,
        interview_context=request.interview_context,
    )
    logger.info("Recommendations for user %s took %dms", user["id"], now_ms() - t0)

    if result.error:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=result.error,
        )

    return RecommendationsResponse(
        recommendations=result.recommendations,
        analysis=result.analysis,
        intro_text=result.intro_text,
        cost=result.cost,
    )
