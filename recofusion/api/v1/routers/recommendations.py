# recofusion/api/v1/routers/recommendations.py
import logging
import time

from fastapi import APIRouter, Depends

from recofusion.api.deps import get_engine
from recofusion.api.v1.schemas.reco import RecommendationRequestIn
from recofusion.domain.models.fusion import FusionResult
from recofusion.domain.services.pipeline_svc import FusionEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recommendations"])


@router.post("/recommendations", response_model=FusionResult)
async def recommendations(
    body: RecommendationRequestIn,
    engine: FusionEngine = Depends(get_engine),
):
    """
    Fused recommendations for a customer.
    hybrid runs semantic (with query), vector (with product_id), knowledge-based
    and collaborative strategies concurrently and merges them.
    """
    logger.info(
        "Request: recommendations customer_id=%s, type=%s, context=%s, limit=%s, explanation=%s",
        body.customer_id, body.recommendation_type.value, body.context_type, body.limit, body.enable_explanation,
    )
    start_time = time.perf_counter()

    res = await engine.recommend(body.to_fusion_request())

    elapsed_time = time.perf_counter() - start_time
    logger.info(
        "Response: recommendations customer_id=%s, count=%s, elapsed_time=%.4fs",
        body.customer_id, res.filtered_count, elapsed_time,
    )
    return res
