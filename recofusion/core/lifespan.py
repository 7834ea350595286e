# recofusion/core/lifespan.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from openai import AsyncOpenAI

from recofusion.core.config import Settings, get_settings
from recofusion.db import mongo, redis as r
from recofusion.domain.models.fusion import StrategyKind
from recofusion.domain.repositories.analytics_repo import AnalyticsRepo
from recofusion.domain.repositories.customer_repo import CustomerRepo, OrderRepo
from recofusion.domain.repositories.knowledge_repo import KnowledgeRepo
from recofusion.domain.repositories.product_repo import ProductRepo
from recofusion.domain.repositories.product_search_repo import ProductSearchRepo
from recofusion.domain.repositories.vector_cache_repo import VectorCacheRepo
from recofusion.domain.services.embedding_svc import EmbeddingService
from recofusion.domain.services.pipeline_svc import FusionEngine
from recofusion.domain.services.sources import (
    CollaborativeSource,
    KnowledgeBaseSource,
    SemanticSource,
    VectorSource,
)
from recofusion.domain.services.text_generator import OpenAITextGenerator

logger = logging.getLogger(__name__)


def build_engine(settings: Settings, db, redis_client=None) -> FusionEngine:
    """Wire the Mongo/Redis/OpenAI adapters into a FusionEngine, once per process."""
    openai_client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.openai_timeout_s)
    generator = OpenAITextGenerator(
        openai_client,
        model=settings.OPENAI_CHAT_MODEL,
        timeout_s=settings.openai_timeout_s,
        max_tokens=settings.llm_max_tokens,
    )

    products = ProductRepo(db)
    search = ProductSearchRepo(db)
    cache = VectorCacheRepo(redis_client, prefix=settings.vector_cache_prefix) if redis_client else None
    embeddings = EmbeddingService(
        openai_client,
        products,
        model=settings.OPENAI_EMBEDDING_MODEL,
        cache=cache,
        cache_ttl=settings.vector_cache_ttl,
        lock_ttl=settings.vector_lock_ttl,
    )

    sources = {
        StrategyKind.SEMANTIC: SemanticSource(search),
        StrategyKind.VECTOR: VectorSource(search, embeddings),
        StrategyKind.KNOWLEDGE_BASED: KnowledgeBaseSource(
            KnowledgeRepo(db, settings.knowledge_collection), products, search, generator
        ),
        StrategyKind.COLLABORATIVE: CollaborativeSource(OrderRepo(db), products),
    }

    return FusionEngine(
        profiles=CustomerRepo(db),
        sources=sources,
        catalog=products,
        generator=generator,
        analytics=AnalyticsRepo(db, settings.analytics_collection),
        strategy_timeout_s=settings.strategy_timeout_s,
        enrichment_timeout_s=settings.enrichment_timeout_s,
        candidate_pool_factor=settings.candidate_pool_factor,
        diversity_after_fusion=settings.diversity_after_fusion,
        diversity_per_strategy=settings.diversity_per_strategy,
        query_understanding_enabled=settings.query_understanding_enabled,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    # --- Startup ---
    if not settings.MONGO_URI:
        raise RuntimeError("MONGO_URI is required")
    await mongo.connect()

    # Redis is optional
    await r.connect()

    app.state.engine = build_engine(settings, mongo.get_db(), r.get_redis())
    logger.info(
        f"Fusion engine ready (diversity_after_fusion={settings.diversity_after_fusion}, "
        f"strategy_timeout_s={settings.strategy_timeout_s})"
    )

    yield

    # --- Shutdown ---
    await r.disconnect()
    await mongo.disconnect()
