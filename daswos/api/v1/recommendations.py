# daswos/api/v1/recommendations.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from daswos.core.dependencies import get_current_user_optional, get_recommendation_provider
from daswos.core.logging import get_logger
from daswos.core.security import Principal
from daswos.integrations.recommendations import Recommendation, RecommendationProvider
from daswos.schemas.coins import RecommendationIn, RecommendationOut

logger = get_logger(__name__)

router = APIRouter(prefix="/recommendations", tags=["recommendations"])


def _to_out(rec: Recommendation) -> RecommendationOut:
    return RecommendationOut(
        product_id=rec.product_id,
        confidence=rec.confidence,
        reasoning=rec.reasoning,
        alternatives=[_to_out(alt) for alt in rec.alternatives],
    )


@router.post("", response_model=RecommendationOut)
async def recommend(
    payload: RecommendationIn,
    user: Optional[Principal] = Depends(get_current_user_optional),
    provider: RecommendationProvider = Depends(get_recommendation_provider),
):
    rec = await provider.recommend(payload.query, user_id=user.user_id if user else None)
    logger.info("recommendation_served", product_id=rec.product_id, user_id=user.user_id if user else None)
    return _to_out(rec)


__all__ = ["router"]
