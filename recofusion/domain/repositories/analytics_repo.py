# recofusion/domain/repositories/analytics_repo.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase


class AnalyticsRepo:
    """AnalyticsSink writing one document per served recommendation list."""

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "recommendation_logs"):
        self.col = db[collection_name]

    async def log_recommendation(
        self,
        customer_id: str,
        recommendation_type: str,
        context: str,
        product_ids: Sequence[str],
        session_id: str,
    ) -> None:
        await self.col.insert_one({
            "customer_id": customer_id,
            "recommendation_type": recommendation_type,
            "context": context,
            "product_ids": list(product_ids),
            "session_id": session_id,
            "created_at": datetime.now(timezone.utc),
        })
