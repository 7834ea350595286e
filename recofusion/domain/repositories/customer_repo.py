# recofusion/domain/repositories/customer_repo.py
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase

from recofusion.core.logging import json_preview
from recofusion.domain.models.customer import CustomerProfile

logger = logging.getLogger(__name__)


class CustomerRepo:
    """
    ProfileProvider over three collections:
      customers   -> profile fields and preferences
      orders      -> { customer_id, created_at, items: [{product_id, category_id, price, quantity}] }
      activities  -> { customer_id, activity_type, product_id?, search_query?, created_at }
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        *,
        history_limit: int = 50,
        activity_limit: int = 20,
    ):
        self.customers = db["customers"]
        self.orders = db["orders"]
        self.activities = db["activities"]
        self.history_limit = history_limit
        self.activity_limit = activity_limit

    async def _purchase_history(self, customer_id: str) -> List[Dict[str, Any]]:
        pipeline = [
            {"$match": {"customer_id": customer_id}},
            {"$sort": {"created_at": -1}},
            {"$unwind": "$items"},
            {"$limit": self.history_limit},
            {
                "$project": {
                    "_id": 0,
                    "product_id": "$items.product_id",
                    "category_id": "$items.category_id",
                    "price": "$items.price",
                    "quantity": "$items.quantity",
                    "purchased_at": "$created_at",
                }
            },
        ]
        return await self.orders.aggregate(pipeline).to_list(length=None)

    async def _recent_activities(self, customer_id: str) -> List[Dict[str, Any]]:
        cursor = (
            self.activities.find({"customer_id": customer_id}, {"_id": 0, "customer_id": 0})
            .sort("created_at", -1)
            .limit(self.activity_limit)
        )
        return [doc async for doc in cursor]

    async def get_profile(self, customer_id: str) -> Optional[CustomerProfile]:
        t0 = time.perf_counter()
        doc = await self.customers.find_one({"customer_id": customer_id}, {"_id": 0})
        if not doc:
            logger.info("customer not found customer_id=%s", customer_id)
            return None

        doc["purchase_history"] = await self._purchase_history(customer_id)
        doc["recent_activities"] = await self._recent_activities(customer_id)
        profile = CustomerProfile.model_validate(doc)
        logger.info(
            "profile loaded customer_id=%s purchases=%s activities=%s time=%.3fs",
            customer_id, len(profile.purchase_history), len(profile.recent_activities),
            time.perf_counter() - t0,
        )
        return profile


class OrderRepo:
    """Co-purchase mining over the 'orders' collection."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.orders = db["orders"]

    async def co_purchased_with(
        self,
        product_ids: Sequence[str],
        *,
        limit: int = 20,
        exclude: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        """
        Return [{product_id, count}] bought in the same orders as product_ids,
        most frequent first.
        """
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return []
        skip = list(dict.fromkeys([*ids, *exclude]))
        pipeline: List[Dict[str, Any]] = [
            {"$match": {"items.product_id": {"$in": ids}}},
            {"$project": {"_id": 0, "prods": {"$setUnion": ["$items.product_id", []]}}},
            {"$unwind": "$prods"},
            {"$match": {"prods": {"$nin": skip}}},
            {"$group": {"_id": "$prods", "co_count": {"$sum": 1}}},
            {"$sort": {"co_count": -1, "_id": 1}},
            {"$limit": limit},
            {"$project": {"_id": 0, "product_id": "$_id", "count": "$co_count"}},
        ]
        logger.debug("co-purchase pipeline=%s", json_preview(pipeline))
        t0 = time.perf_counter()
        docs = await self.orders.aggregate(pipeline).to_list(length=None)
        logger.info("co-purchase mined n=%s seeds=%s db_time=%.3fs", len(docs), len(ids), time.perf_counter() - t0)
        return docs
