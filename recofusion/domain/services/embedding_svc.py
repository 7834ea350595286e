# recofusion/domain/services/embedding_svc.py

from __future__ import annotations
from typing import Optional, List
import logging

from openai import AsyncOpenAI

from recofusion.domain.models.product import Product
from recofusion.domain.repositories.product_repo import ProductRepo
from recofusion.domain.repositories.vector_cache_repo import VectorCacheRepo
from recofusion.utils.locks import RedisLock

logger = logging.getLogger(__name__)

KIND_SIMILAR = "sim"


def product_embedding_text(product: Product) -> str:
    """Similarity representation: same family and purpose."""
    return " | ".join(filter(None, [
        product.name,
        product.brand,
        f"Category: {product.category_name or product.category_id}" if (product.category_name or product.category_id) else None,
        (product.description or "")[:220],
        " ".join(product.tags or []),
    ]))


class EmbeddingService:
    """
    Anchor-product embeddings, resolved in this order:
      1) Redis cache (when Redis is configured)
      2) Mongo vectors.<kind>.vector
      3) OpenAI, computed under a short Redis lock, then cached
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        products: ProductRepo,
        *,
        model: str,
        cache: Optional[VectorCacheRepo] = None,
        cache_ttl: int = 24 * 3600,
        lock_ttl: int = 20,
        kind: str = KIND_SIMILAR,
        write_back_db: bool = False,
    ):
        self.client = client
        self.products = products
        self.model = model
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.lock_ttl = lock_ttl
        self.kind = kind
        self.write_back_db = write_back_db

    async def _compute(self, product: Product) -> List[float]:
        text = product_embedding_text(product)
        logger.info(f"Requesting embedding from OpenAI for product_id={product.product_id}, kind={self.kind}")
        resp = await self.client.embeddings.create(model=self.model, input=text)
        vec = resp.data[0].embedding
        if self.write_back_db:
            await self.products.set_vector(product.product_id, self.kind, vec, model=self.model)
        return vec

    async def embed_product(self, product: Product) -> Optional[List[float]]:
        pid = product.product_id

        cache_key = self.cache.key(pid, self.model, self.kind) if self.cache else None
        if self.cache and (vec := await self.cache.get(cache_key)):
            logger.info(f"Embedding cache hit for product_id={pid}, kind={self.kind}")
            return vec

        if db_vec := await self.products.get_vector(pid, self.kind):
            logger.info(f"Embedding found in MongoDB for product_id={pid}, kind={self.kind}")
            if self.cache:
                await self.cache.set(cache_key, db_vec, ttl=self.cache_ttl)
            return db_vec

        if not self.cache:
            return await self._compute(product)

        lock = RedisLock(self.cache.redis, cache_key, ttl=self.lock_ttl)
        acquired = await lock.acquire()
        try:
            if not acquired:
                logger.info(f"Lock busy, waiting for embedding of product_id={pid}")
                await lock.wait(timeout=self.lock_ttl)
                return await self.cache.get(cache_key)

            # Another worker may have filled the cache before we got the lock
            if vec := await self.cache.get(cache_key):
                return vec

            vec = await self._compute(product)
            await self.cache.set(cache_key, vec, ttl=self.cache_ttl)
            logger.debug(f"Embedding cached in Redis for key: {cache_key}")
            return vec
        finally:
            if acquired:
                await lock.release()
