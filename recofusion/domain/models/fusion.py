from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from recofusion.domain.models.customer import CustomerProfile
from recofusion.domain.models.product import Product

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


class StrategyKind(str, Enum):
    SEMANTIC = "semantic"
    VECTOR = "vector"
    KNOWLEDGE_BASED = "knowledge_based"
    COLLABORATIVE = "collaborative"


class RecommendationType(str, Enum):
    SEMANTIC = "semantic"
    VECTOR = "vector"
    KNOWLEDGE_BASED = "knowledge_based"
    COLLABORATIVE = "collaborative"
    HYBRID = "hybrid"

    @property
    def strategy(self) -> Optional[StrategyKind]:
        """The single strategy this type maps to, None for hybrid."""
        return None if self is RecommendationType.HYBRID else StrategyKind(self.value)


class Candidate(BaseModel):
    """
    A scored product reference produced by one strategy call.
      raw_score -> backend-native scale, not comparable across strategies
      score     -> normalized into [0, 1], then weighted at merge time
    Frozen: every stage derives new instances with model_copy(update=...).
    """
    product_id: str = Field(..., min_length=1)
    raw_score: float = 0.0
    score: float = 0.0
    strategy: StrategyKind
    matched_criteria: List[str] = Field(default_factory=list)
    source: Optional[str] = None
    text: str = ""
    price: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None
    confidence: Optional[float] = None

    model_config = {"frozen": True}


class SearchFilters(BaseModel):
    """Personalized retrieval filters handed to the search-backed sources."""
    category_ids: List[str] = Field(default_factory=list)
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    preferred_brands: List[str] = Field(default_factory=list)
    exclude_product_ids: List[str] = Field(default_factory=list)
    in_stock_only: bool = True

    model_config = {"frozen": True}


class RetrievalParams(BaseModel):
    """What a candidate source gets to work with for one call."""
    profile: CustomerProfile
    context: str = "homepage"
    query_text: Optional[str] = None
    anchor: Optional[Product] = None
    limit: int = 10
    exclude_owned: bool = True
    filters: SearchFilters = Field(default_factory=SearchFilters)

    model_config = {"frozen": True}


class FusionRequest(BaseModel):
    customer_id: str = Field(..., min_length=1)
    recommendation_type: RecommendationType = RecommendationType.HYBRID
    context: str = "homepage"
    query_text: Optional[str] = None
    product_id: Optional[str] = None
    category_id: Optional[str] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    limit: int = DEFAULT_LIMIT
    exclude_owned: bool = True
    enable_explanation: bool = False
    exclude_product_ids: List[str] = Field(default_factory=list)
    session_id: Optional[str] = None

    model_config = {"frozen": True}

    @field_validator("limit", mode="before")
    @classmethod
    def _clamp_limit(cls, v):
        if v is None:
            return DEFAULT_LIMIT
        return max(1, min(MAX_LIMIT, int(v)))

    @field_validator("query_text", "product_id", "category_id", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class StrategyOutcome(BaseModel):
    """Result of one strategy call; degradation is data, not a log line."""
    strategy: StrategyKind
    candidates: List[Candidate] = Field(default_factory=list)
    weight: float = 1.0
    degraded: bool = False
    cause: Optional[str] = None
    elapsed_ms: float = 0.0


class ExtractionResult(BaseModel):
    ids: List[str] = Field(default_factory=list)
    method: Literal["json", "regex", "none"] = "none"
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return bool(self.ids)


class EnrichmentOutcome(BaseModel):
    candidates: List[Candidate] = Field(default_factory=list)
    applied: bool = False
    cause: Optional[str] = None


class QueryEntity(BaseModel):
    type: str
    value: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class QueryUnderstanding(BaseModel):
    original_query: str
    processed_query: str
    intent: str = "product_search"
    entities: List[QueryEntity] = Field(default_factory=list)
    sentiment: str = "neutral"
    complexity: str = "simple"
    required_context: List[str] = Field(default_factory=list)


class Recommendation(BaseModel):
    product_id: str
    name: Optional[str] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    image_url: Optional[str] = None
    score: float = Field(ge=0.0, le=1.0)
    similarity_score: Optional[float] = None
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str = ""
    strategy: StrategyKind
    matched_criteria: List[str] = Field(default_factory=list)
    source: Optional[str] = None

    model_config = {"frozen": True}


class FusionResult(BaseModel):
    recommendations: List[Recommendation] = Field(default_factory=list)
    recommendation_type: RecommendationType
    context: str
    strategies_used: List[StrategyKind] = Field(default_factory=list)
    degraded_strategies: Dict[str, str] = Field(default_factory=dict)
    total_candidates: int = 0
    filtered_count: int = 0
    confidence_level: float = 0.0
    explanations_applied: bool = False
    timings_ms: Dict[str, float] = Field(default_factory=dict)
    query_understanding: Optional[QueryUnderstanding] = None
    session_id: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
