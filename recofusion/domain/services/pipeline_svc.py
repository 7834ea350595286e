import asyncio
import logging
import time
import uuid
from typing import Dict, List, Mapping, Optional, Set

from recofusion.core.errors import InvalidRequestError, NotFoundError
from recofusion.domain.interfaces import (
    AnalyticsSink,
    CandidateSource,
    Catalog,
    ProfileProvider,
    TextGenerator,
)
from recofusion.domain.models.customer import CustomerProfile
from recofusion.domain.models.fusion import (
    Candidate,
    FusionRequest,
    FusionResult,
    QueryUnderstanding,
    Recommendation,
    RecommendationType,
    RetrievalParams,
    StrategyKind,
)
from recofusion.domain.models.product import Product
from recofusion.domain.services.constants import DEFAULT_REASONS
from recofusion.domain.services.diversity import select_diverse
from recofusion.domain.services.explanation_svc import ExplanationEnricher
from recofusion.domain.services.filters import build_search_filters, post_filter
from recofusion.domain.services.fusion_svc import FusionMerger
from recofusion.domain.services.query_understanding import analyze_query
from recofusion.domain.services.scoring import average_confidence, bucketize_confidence

logger = logging.getLogger(__name__)


def _ms(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000, 2)


def validate_request(request: FusionRequest) -> None:
    """Reject requests missing what their type needs, before any retrieval."""
    rtype = request.recommendation_type
    if rtype is RecommendationType.SEMANTIC and not request.query_text:
        raise InvalidRequestError("query_text is required for semantic recommendations")
    if rtype is RecommendationType.VECTOR and not request.product_id:
        raise InvalidRequestError("product_id is required for vector recommendations")
    if (
        request.price_min is not None
        and request.price_max is not None
        and request.price_min > request.price_max
    ):
        raise InvalidRequestError("price_min must not exceed price_max")


def to_recommendation(c: Candidate, product: Optional[Product]) -> Recommendation:
    score = min(1.0, max(0.0, c.score))
    similarity = c.metadata.get("similarity", c.metadata.get("normalized_score"))
    return Recommendation(
        product_id=c.product_id,
        name=product.name if product else None,
        description=product.description if product else None,
        brand=product.brand if product else None,
        category_id=product.category_id if product else None,
        category_name=product.category_name if product else None,
        price=product.current_price if product and product.current_price is not None else c.price,
        currency=product.currency if product else None,
        image_url=product.image_url if product else None,
        score=score,
        similarity_score=similarity,
        confidence=c.confidence if c.confidence is not None else bucketize_confidence(score),
        reason=c.reason or DEFAULT_REASONS[c.strategy],
        strategy=c.strategy,
        matched_criteria=c.matched_criteria,
        source=c.source,
    )


class FusionEngine:
    """
    End-to-end fusion pipeline for one request:

      validate -> profile (+ anchor) -> strategies (merger) -> diversity
      -> catalog hydration -> post-filter -> explanations -> result

    Collaborators are injected once; the engine holds no per-request state
    apart from the set of in-flight analytics tasks.
    """

    def __init__(
        self,
        *,
        profiles: ProfileProvider,
        sources: Mapping[StrategyKind, CandidateSource],
        catalog: Catalog,
        generator: Optional[TextGenerator] = None,
        analytics: Optional[AnalyticsSink] = None,
        strategy_timeout_s: float = 5.0,
        enrichment_timeout_s: float = 10.0,
        candidate_pool_factor: int = 2,
        diversity_after_fusion: bool = True,
        diversity_per_strategy: bool = False,
        query_understanding_enabled: bool = False,
    ):
        self.profiles = profiles
        self.catalog = catalog
        self.generator = generator
        self.analytics = analytics
        self.merger = FusionMerger(
            sources,
            timeout_s=strategy_timeout_s,
            diversity_per_strategy=diversity_per_strategy,
        )
        self.enricher = ExplanationEnricher(generator, timeout_s=enrichment_timeout_s) if generator else None
        self.enrichment_timeout_s = enrichment_timeout_s
        self.candidate_pool_factor = max(1, candidate_pool_factor)
        self.diversity_after_fusion = diversity_after_fusion
        self.query_understanding_enabled = query_understanding_enabled
        self._background: Set[asyncio.Task] = set()

    # ---- stages --------------------------------------------------------------

    async def _load_profile(self, customer_id: str) -> CustomerProfile:
        profile = await self.profiles.get_profile(customer_id)
        if profile is None:
            raise NotFoundError("customer", customer_id)
        return profile

    async def _load_anchor(self, product_id: Optional[str]) -> Optional[Product]:
        if not product_id:
            return None
        anchor = await self.catalog.get_by_product_id(product_id)
        if anchor is None:
            raise NotFoundError("product", product_id)
        return anchor

    async def _understand(self, query: Optional[str]) -> Optional[QueryUnderstanding]:
        if not (self.query_understanding_enabled and self.generator and query):
            return None
        try:
            return await asyncio.wait_for(analyze_query(self.generator, query), timeout=self.enrichment_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Query analysis timed out; continuing without it")
        except Exception as e:
            logger.warning(f"Query analysis failed ({e}); continuing without it")
        return None

    async def _hydrate(self, candidates: List[Candidate]) -> tuple[List[Candidate], Dict[str, Product], Optional[str]]:
        """
        Attach catalog records. Products the catalog no longer knows are
        dropped; a failing catalog leaves candidates as they are.
        """
        if not candidates:
            return [], {}, None
        try:
            products = await self.catalog.resolve_by_ids([c.product_id for c in candidates])
        except Exception as e:
            logger.error(f"Catalog hydration failed, serving unhydrated candidates: {e}")
            return candidates, {}, f"{type(e).__name__}: {e}"

        by_id = {p.product_id: p for p in products}
        kept: List[Candidate] = []
        for c in candidates:
            p = by_id.get(c.product_id)
            if p is None:
                logger.debug(f"Dropping candidate unknown to catalog product_id={c.product_id}")
                continue
            if p.current_price is not None and p.current_price != c.price:
                c = c.model_copy(update={"price": p.current_price})
            kept.append(c)
        return kept, by_id, None

    def _log_async(self, customer_id: str, rtype: str, context: str, ids: List[str], session_id: str) -> None:
        """Fire-and-forget analytics write; failures are only logged."""
        if self.analytics is None:
            return

        async def _write():
            try:
                await self.analytics.log_recommendation(customer_id, rtype, context, ids, session_id)
            except Exception as e:
                logger.warning(f"Analytics logging failed session_id={session_id}: {e}")

        task = asyncio.create_task(_write())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ---- public API ----------------------------------------------------------

    async def recommend(self, request: FusionRequest) -> FusionResult:
        t_start = time.perf_counter()
        timings: Dict[str, float] = {}
        logger.info(
            f"Fusion request customer_id={request.customer_id} type={request.recommendation_type.value} "
            f"context={request.context} limit={request.limit} anchor={request.product_id}"
        )

        validate_request(request)

        t0 = time.perf_counter()
        profile = await self._load_profile(request.customer_id)
        anchor = await self._load_anchor(request.product_id)
        timings["profile_ms"] = _ms(t0)

        pool = request.limit * self.candidate_pool_factor
        params = RetrievalParams(
            profile=profile,
            context=request.context,
            query_text=request.query_text,
            anchor=anchor,
            limit=pool,
            exclude_owned=request.exclude_owned,
            filters=build_search_filters(profile, request, anchor),
        )

        t0 = time.perf_counter()
        merged, understanding = await asyncio.gather(
            self.merger.merge(request.recommendation_type, params),
            self._understand(request.query_text),
        )
        timings["retrieval_ms"] = _ms(t0)
        candidates = merged.candidates
        total_candidates = len(candidates)

        if self.diversity_after_fusion:
            t0 = time.perf_counter()
            candidates = select_diverse(candidates, len(candidates))
            timings["diversity_ms"] = _ms(t0)

        t0 = time.perf_counter()
        candidates, products, catalog_cause = await self._hydrate(candidates)
        timings["hydration_ms"] = _ms(t0)

        t0 = time.perf_counter()
        exclude = list(request.exclude_product_ids)
        if anchor is not None:
            exclude.append(anchor.product_id)
        candidates = post_filter(
            candidates,
            limit=request.limit,
            owned_ids=profile.owned_product_ids,
            exclude_owned=request.exclude_owned,
            price_min=request.price_min,
            price_max=request.price_max,
            exclude_ids=exclude,
        )
        timings["filter_ms"] = _ms(t0)

        applied = False
        degraded = {o.strategy.value: o.cause for o in merged.outcomes if o.degraded}
        if catalog_cause:
            degraded["catalog"] = catalog_cause
        if request.enable_explanation and self.enricher and candidates:
            t0 = time.perf_counter()
            enriched = await self.enricher.enrich(candidates, profile, request.context, products)
            candidates, applied = enriched.candidates, enriched.applied
            if enriched.cause and not applied:
                degraded["explanation"] = enriched.cause
            timings["enrichment_ms"] = _ms(t0)

        recommendations = [to_recommendation(c, products.get(c.product_id)) for c in candidates]
        session_id = request.session_id or uuid.uuid4().hex
        timings["total_ms"] = _ms(t_start)

        result = FusionResult(
            recommendations=recommendations,
            recommendation_type=request.recommendation_type,
            context=request.context,
            strategies_used=[o.strategy for o in merged.outcomes],
            degraded_strategies=degraded,
            total_candidates=total_candidates,
            filtered_count=len(recommendations),
            confidence_level=average_confidence([r.score for r in recommendations]),
            explanations_applied=applied,
            timings_ms=timings,
            query_understanding=understanding,
            session_id=session_id,
        )

        self._log_async(
            request.customer_id,
            request.recommendation_type.value,
            request.context,
            [r.product_id for r in recommendations],
            session_id,
        )
        logger.info(
            f"Fusion done customer_id={request.customer_id} served={result.filtered_count}/"
            f"{total_candidates} strategies={[s.value for s in result.strategies_used]} "
            f"degraded={list(degraded)} total_ms={timings['total_ms']}"
        )
        return result
