from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class PurchaseItem(BaseModel):
    product_id: str
    category_id: Optional[str] = None
    price: float = 0.0
    quantity: int = 1
    purchased_at: Optional[datetime] = None

    model_config = {"frozen": True, "extra": "ignore"}


class ActivityItem(BaseModel):
    activity_type: str
    product_id: Optional[str] = None
    search_query: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"frozen": True, "extra": "ignore"}


class CustomerProfile(BaseModel):
    """
    Everything the pipeline knows about a customer, loaded once per request.
    Read-only: stages never mutate it.
    """
    customer_id: str
    total_spent: float = 0.0
    order_count: int = 0
    is_premium: bool = False
    preferred_categories: List[str] = Field(default_factory=list)
    preferred_brands: List[str] = Field(default_factory=list)
    lifestyle_tags: List[str] = Field(default_factory=list)
    price_range_min: Optional[float] = None
    price_range_max: Optional[float] = None
    purchase_history: List[PurchaseItem] = Field(default_factory=list)
    recent_activities: List[ActivityItem] = Field(default_factory=list)

    model_config = {"frozen": True, "extra": "ignore"}

    @property
    def owned_product_ids(self) -> set[str]:
        return {p.product_id for p in self.purchase_history}

    @property
    def average_order_value(self) -> Optional[float]:
        if self.order_count <= 0:
            return None
        return self.total_spent / self.order_count

    def recent_purchase_ids(self, n: int = 5) -> List[str]:
        """Most recent distinct purchased product ids, newest first."""
        ordered = sorted(
            self.purchase_history,
            key=lambda p: p.purchased_at.timestamp() if p.purchased_at else float("-inf"),
            reverse=True,
        )
        return list(dict.fromkeys(p.product_id for p in ordered))[:n]
