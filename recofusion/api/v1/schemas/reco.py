# recofusion/api/v1/schemas/reco.py
from typing import List, Optional

from pydantic import BaseModel, Field

from recofusion.domain.models.fusion import FusionRequest, RecommendationType


class RecommendationRequestIn(BaseModel):
    customer_id: str = Field(..., min_length=1)
    recommendation_type: RecommendationType = RecommendationType.HYBRID
    context_type: str = Field("homepage", description="Page or surface asking, e.g. homepage, cart, checkout")
    query: Optional[str] = None
    product_id: Optional[str] = Field(None, description="Anchor product, required for vector recommendations")
    category_id: Optional[str] = None
    price_range_min: Optional[float] = Field(None, ge=0)
    price_range_max: Optional[float] = Field(None, ge=0)
    limit: int = Field(10, description="Clamped into [1, 100]")
    exclude_owned: bool = True
    enable_explanation: bool = False
    exclude_product_ids: List[str] = Field(default_factory=list)
    session_id: Optional[str] = None

    def to_fusion_request(self) -> FusionRequest:
        return FusionRequest(
            customer_id=self.customer_id,
            recommendation_type=self.recommendation_type,
            context=self.context_type,
            query_text=self.query,
            product_id=self.product_id,
            category_id=self.category_id,
            price_min=self.price_range_min,
            price_max=self.price_range_max,
            limit=self.limit,
            exclude_owned=self.exclude_owned,
            enable_explanation=self.enable_explanation,
            exclude_product_ids=self.exclude_product_ids,
            session_id=self.session_id,
        )
