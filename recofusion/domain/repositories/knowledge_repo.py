# recofusion/domain/repositories/knowledge_repo.py
from __future__ import annotations

import logging
from typing import List

from motor.motor_asyncio import AsyncIOMotorDatabase

from recofusion.domain.interfaces import KnowledgePassage

logger = logging.getLogger(__name__)


class KnowledgeRepo:
    """
    Knowledge base of curated product documents, retrieved with Atlas Search.
    Documents: { content, source, product_id? }.
    """

    TEXT_INDEX = "kb_text_index"

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "knowledge_base"):
        self.col = db[collection_name]

    async def retrieve(self, query: str, limit: int = 5) -> List[KnowledgePassage]:
        pipeline = [
            {
                "$search": {
                    "index": self.TEXT_INDEX,
                    "text": {"query": query, "path": ["content", "title"]},
                }
            },
            {"$limit": limit},
            {"$project": {"_id": 0, "content": 1, "source": 1, "score": {"$meta": "searchScore"}}},
        ]
        docs = await self.col.aggregate(pipeline).to_list(length=None)
        logger.debug(f"knowledge retrieve returned {len(docs)} passages")
        return [KnowledgePassage.model_validate(d) for d in docs if d.get("content")]
