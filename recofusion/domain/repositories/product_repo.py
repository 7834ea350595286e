# recofusion/domain/repositories/product_repo.py

from __future__ import annotations
from typing import Optional, List, Sequence
from datetime import datetime, timezone
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError

from recofusion.domain.models.product import Product

logger = logging.getLogger(__name__)

PRODUCT_PROJECTION = {
    "_id": 0,
    "product_id": 1,
    "name": 1,
    "brand": 1,
    "description": 1,
    "category_id": 1,
    "category_name": 1,
    "category_path": 1,
    "current_price": 1,
    "original_price": 1,
    "currency": 1,
    "stock": 1,
    "rating": 1,
    "reviews_count": 1,
    "tags": 1,
    "metadata": 1,
    "image_url": 1,
}


def _to_product(doc: dict) -> Optional[Product]:
    try:
        return Product.model_validate(doc)
    except ValidationError as e:
        logger.warning(f"Skipping malformed product doc product_id={doc.get('product_id')}: {e.error_count()} error(s)")
        return None


class ProductRepo:
    """
    Catalog backed by the 'products' collection.
    Also supports per-kind vector persistence under the 'vectors' subdocument:
      vectors.<kind> = { model, vector, updated_at }
    """

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "products"):
        self.col = db[collection_name]

    async def get_by_product_id(self, product_id: str) -> Optional[Product]:
        doc = await self.col.find_one({"product_id": product_id}, PRODUCT_PROJECTION)
        return _to_product(doc) if doc else None

    async def resolve_by_ids(self, product_ids: Sequence[str]) -> List[Product]:
        """Batch fetch, returned in the order of product_ids; unknown ids are absent."""
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return []
        cursor = self.col.find({"product_id": {"$in": ids}}, PRODUCT_PROJECTION)
        by_id = {}
        async for doc in cursor:
            if (p := _to_product(doc)) is not None:
                by_id[p.product_id] = p
        return [by_id[i] for i in ids if i in by_id]

    async def get_by_category(self, category_id: str, limit: int = 10) -> List[Product]:
        """In-stock products of a category, best rated first."""
        cursor = (
            self.col.find({"category_id": category_id, "stock": {"$gt": 0}}, PRODUCT_PROJECTION)
            .sort([("rating", -1), ("reviews_count", -1)])
            .limit(limit)
        )
        return [p async for doc in cursor if (p := _to_product(doc)) is not None]

    # ----- Vector persistence (per kind) ------------------------------------

    async def get_vector(self, product_id: str, kind: str) -> Optional[list[float]]:
        proj = {f"vectors.{kind}.vector": 1, "_id": 0}
        doc = await self.col.find_one({"product_id": product_id}, proj)
        if not doc:
            return None
        node = doc.get("vectors", {}).get(kind) if isinstance(doc.get("vectors"), dict) else None
        return node.get("vector") if isinstance(node, dict) and "vector" in node else None

    async def set_vector(self, product_id: str, kind: str, vector: list[float], *, model: str) -> None:
        path = f"vectors.{kind}"
        now = datetime.now(timezone.utc)
        await self.col.update_one(
            {"product_id": product_id},
            {
                "$set": {
                    f"{path}.model": model,
                    f"{path}.vector": vector,
                    f"{path}.updated_at": now,
                }
            },
            upsert=False,
        )
