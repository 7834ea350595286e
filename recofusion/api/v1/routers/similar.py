# recofusion/api/v1/routers/similar.py
from fastapi import APIRouter, Depends, Query
import time
import logging

from recofusion.api.deps import get_engine
from recofusion.domain.models.fusion import FusionRequest, FusionResult, RecommendationType
from recofusion.domain.services.pipeline_svc import FusionEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["similar"])


@router.get("/customers/{customer_id}/products/{product_id}/similar", response_model=FusionResult)
async def similar_products(
    customer_id: str,
    product_id: str,
    limit: int = Query(10, description="Clamped into [1, 100]"),
    context: str = Query("product_detail"),
    exclude_owned: bool = Query(True),
    enable_explanation: bool = Query(False, description="Ask the text model for per-item reasons"),
    engine: FusionEngine = Depends(get_engine),
):
    """
    Products similar to product_id for this customer (vector strategy only).
    """
    logger.info(
        "Request: similar_products customer_id=%s, product_id=%s, limit=%s, enable_explanation=%s",
        customer_id, product_id, limit, enable_explanation,
    )
    start_time = time.perf_counter()

    res = await engine.recommend(FusionRequest(
        customer_id=customer_id,
        recommendation_type=RecommendationType.VECTOR,
        context=context,
        product_id=product_id,
        limit=limit,
        exclude_owned=exclude_owned,
        enable_explanation=enable_explanation,
    ))

    elapsed_time = time.perf_counter() - start_time
    logger.info(
        "Response: similar_products product_id=%s, count=%s, elapsed_time=%.4fs",
        product_id, res.filtered_count, elapsed_time,
    )
    return res
