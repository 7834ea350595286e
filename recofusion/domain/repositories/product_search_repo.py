# recofusion/domain/repositories/product_search_repo.py
from __future__ import annotations
from typing import Any, Dict, List, Optional
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorCollection

from recofusion.core.logging import json_preview
from recofusion.domain.models.fusion import SearchFilters
from recofusion.domain.services.filters import atlas_compound_filter

logger = logging.getLogger(__name__)

_RESULT_PROJECTION = {
    "_id": 0,
    "score": 1,
    "product_id": 1,
    "name": 1,
    "brand": 1,
    "description": 1,
    "current_price": 1,
    "currency": 1,
    "category_id": 1,
    "category_name": 1,
    "category_path": 1,
    "image_url": 1,
    "tags": 1,
    "metadata": 1,
}


class ProductSearchRepo:
    """
    MongoDB Atlas Search: full text ($search) and vector ($vectorSearch).
    """

    VECTOR_INDEX = "vector_index"
    TEXT_INDEX = "text_index"

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "products"):
        self.col: AsyncIOMotorCollection = db[collection_name]

    # ---------- Utils ----------
    @staticmethod
    def _to_mql(clause: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Convert an Atlas Search clause (equals/range/in) to MQL for $match."""
        if "equals" in clause:
            eq = clause["equals"]
            return {eq["path"]: eq.get("value")}
        if "range" in clause:
            r = clause["range"]
            ops: Dict[str, Any] = {}
            for op in ("gt", "gte", "lt", "lte"):
                if op in r:
                    ops[f"${op}"] = r[op]
            return {r["path"]: ops} if ops else None
        if "in" in clause:
            i = clause["in"]
            vals = i.get("value") or i.get("values") or []
            if not isinstance(vals, list):
                vals = [vals]
            return {i["path"]: {"$in": vals}}
        # "not" clauses only carry product exclusions; those become $nin below
        return None

    @classmethod
    def _mql_match(cls, filters: Optional[SearchFilters]) -> Optional[Dict[str, Any]]:
        """Post-filter $match for $vectorSearch, which has no compound filter."""
        if filters is None:
            return None
        parts: List[Dict[str, Any]] = []
        for c in atlas_compound_filter(filters)["compound"]["filter"]:
            if conv := cls._to_mql(c):
                parts.append(conv)
        if filters.exclude_product_ids:
            parts.append({"product_id": {"$nin": list(filters.exclude_product_ids)}})
        if not parts:
            return None
        return parts[0] if len(parts) == 1 else {"$and": parts}

    # ---------- Vector search ----------
    async def vector_search(
        self,
        query_vector: List[float],
        *,
        limit: int = 10,
        filters: Optional[SearchFilters] = None,
        num_candidates: int = 200,
        path: str = "vectors.sim.vector",
    ) -> List[Dict[str, Any]]:
        """
        $vectorSearch over product embeddings. Filters run as a $match after
        the search stage, so over-fetch before limiting.
        """
        mql_match = self._mql_match(filters)
        pipeline: List[Dict[str, Any]] = [
            {
                "$vectorSearch": {
                    "index": self.VECTOR_INDEX,
                    "path": path,
                    "queryVector": query_vector,
                    "numCandidates": max(num_candidates, limit * 10),
                    "limit": limit * 4 if mql_match else limit,
                }
            },
            {"$addFields": {"score": {"$meta": "vectorSearchScore"}}},
        ]
        if mql_match:
            pipeline.append({"$match": mql_match})
        pipeline += [
            {"$project": _RESULT_PROJECTION},
            {"$limit": limit},
        ]

        cursor = self.col.aggregate(pipeline)
        docs = [doc async for doc in cursor]
        logger.debug(f"vector_search returned {len(docs)} docs (limit={limit})")
        return docs

    # ---------- Text search ----------
    async def text_search(
        self,
        query_text: str,
        *,
        limit: int = 10,
        filters: Optional[SearchFilters] = None,
    ) -> List[Dict[str, Any]]:
        """
        Full-text $search (text index). Never send `filter: []`.
        """
        base = atlas_compound_filter(filters)["compound"]
        compound: Dict[str, Any] = {
            "must": [
                {
                    "text": {
                        "query": query_text,
                        "path": ["name", "description", "brand", "tags", "category_name"],
                    }
                }
            ]
        }
        if base.get("filter"):
            compound["filter"] = base["filter"]
        if base.get("should"):
            compound["should"] = base["should"]

        pipeline: List[Dict[str, Any]] = [
            {"$search": {"index": self.TEXT_INDEX, "compound": compound}},
            {"$addFields": {"score": {"$meta": "searchScore"}}},
            {"$project": _RESULT_PROJECTION},
            {"$limit": limit},
        ]

        logger.debug("text_search pipeline=%s", json_preview(pipeline))
        cursor = self.col.aggregate(pipeline)
        docs = [doc async for doc in cursor]
        logger.debug(f"text_search q={query_text!r} returned {len(docs)} docs (limit={limit})")
        return docs
