from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

class Product(BaseModel):
    product_id: str
    name: str
    description: Optional[str] = None
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    category_path: Optional[str] = None
    brand: Optional[str] = None
    current_price: Optional[float] = None
    original_price: Optional[float] = None
    currency: Optional[str] = None
    stock: Optional[int] = None
    rating: Optional[float] = None
    reviews_count: Optional[int] = None
    image_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"frozen": True, "extra": "ignore"}  # immuable = safe

    def search_text(self) -> str:
        """Flattened text the lexical reranker matches query terms against."""
        return " ".join(filter(None, [
            self.name,
            self.brand,
            self.category_name,
            self.description,
            " ".join(self.tags or []),
        ]))
