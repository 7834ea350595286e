# recofusion/domain/repositories/vector_cache_repo.py
from __future__ import annotations
from typing import Optional, Sequence
import hashlib
import json

from redis.asyncio import Redis


def _model_tag(model: str) -> str:
    """Short stable hash of the embedding model; a model change invalidates keys."""
    return hashlib.sha1(model.encode("utf-8")).hexdigest()[:8]


class VectorCacheRepo:
    """
    Redis cache of product embeddings, keyed by model, product and kind.
    Cache access only; Mongo stays the durable store.
    """

    def __init__(self, redis: Redis, prefix: str = "vec"):
        self.redis = redis
        self.prefix = prefix

    def key(self, product_id: str, model: str, kind: str = "sim") -> str:
        return f"{self.prefix}:{_model_tag(model)}:{product_id}:{kind}"

    async def get(self, key: str) -> Optional[list[float]]:
        if raw := await self.redis.get(key):
            return json.loads(raw)
        return None

    async def set(self, key: str, vector: Sequence[float], ttl: int) -> None:
        await self.redis.set(key, json.dumps(list(vector), separators=(",", ":")), ex=ttl)
