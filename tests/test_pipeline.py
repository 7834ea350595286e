from __future__ import annotations

import asyncio
import json

import pytest

from fakes import FakeAnalytics, FakeGenerator, FakeProfiles, StaticSource, make_candidate, make_profile, pid
from recofusion.core.errors import InvalidRequestError, NotFoundError
from recofusion.domain.models.fusion import DEFAULT_LIMIT, MAX_LIMIT, FusionRequest, RecommendationType, StrategyKind
from recofusion.domain.services.constants import DEFAULT_REASONS

SEM, VEC, KB, COL = (
    StrategyKind.SEMANTIC,
    StrategyKind.VECTOR,
    StrategyKind.KNOWLEDGE_BASED,
    StrategyKind.COLLABORATIVE,
)


def _req(**kw) -> FusionRequest:
    kw.setdefault("customer_id", "c-1")
    return FusionRequest(**kw)


def _sources():
    return {
        SEM: StaticSource([make_candidate(1, 0.9, SEM, source="category:a"), make_candidate(2, 0.3, SEM)]),
        VEC: StaticSource([make_candidate(1, 0.95, VEC), make_candidate(3, 0.5, VEC)]),
        KB: StaticSource([make_candidate(4, 0.7, KB, source="kb:doc"), make_candidate(5, 0.2, KB)]),
        COL: StaticSource([make_candidate(6, 3.0, COL), make_candidate(7, 1.0, COL)]),
    }


@pytest.mark.asyncio
async def test_hybrid_without_anchor_never_calls_vector(make_engine):
    sources = _sources()
    engine = make_engine(sources)
    res = await engine.recommend(_req(query_text="warm jacket"))

    assert not sources[VEC].calls
    assert res.strategies_used == [SEM, KB, COL]
    assert {r.strategy for r in res.recommendations} <= {SEM, KB, COL}
    assert res.total_candidates == 6


@pytest.mark.asyncio
async def test_duplicate_product_keeps_semantic_entry(make_engine):
    engine = make_engine(_sources())
    res = await engine.recommend(_req(query_text="gift", product_id=pid(20)))

    p1 = [r for r in res.recommendations if r.product_id == pid(1)]
    assert len(p1) == 1
    assert p1[0].strategy is SEM
    assert p1[0].score == pytest.approx(1.0 * 0.7 * 0.4)
    assert res.strategies_used == [SEM, VEC, KB, COL]
    ids = [r.product_id for r in res.recommendations]
    assert len(ids) == len(set(ids))
    # anchor never recommended
    assert pid(20) not in ids


@pytest.mark.asyncio
async def test_all_strategies_failing_yields_empty_result(make_engine):
    engine = make_engine({
        SEM: StaticSource(error=RuntimeError("boom")),
        VEC: StaticSource(error=ConnectionError("index down")),
        KB: StaticSource(delay=2.0),
        COL: StaticSource(error=ValueError("bad data")),
    })
    res = await engine.recommend(_req(query_text="anything", product_id=pid(20)))

    assert res.recommendations == []
    assert res.total_candidates == 0
    assert res.confidence_level == 0.0
    assert set(res.degraded_strategies) == {"semantic", "vector", "knowledge_based", "collaborative"}


@pytest.mark.asyncio
async def test_prose_explanation_leaves_output_unchanged(make_engine):
    plain = await make_engine(_sources()).recommend(_req(query_text="gift"))

    gen = FakeGenerator("I would recommend all of these since they are great picks for you!")
    engine = make_engine(_sources(), generator=gen)
    explained = await engine.recommend(_req(query_text="gift", enable_explanation=True))

    assert gen.prompts
    assert not explained.explanations_applied
    assert "explanation" in explained.degraded_strategies
    assert explained.recommendations == plain.recommendations
    assert all(r.reason == DEFAULT_REASONS[r.strategy] for r in explained.recommendations)


@pytest.mark.asyncio
async def test_explanations_are_merged(make_engine):
    reply = json.dumps({"recommendations": [{"product_id": pid(4), "reason": "From your favourite category", "confidence": 0.55}]})
    engine = make_engine(_sources(), generator=FakeGenerator(reply))
    res = await engine.recommend(_req(enable_explanation=True))

    assert res.explanations_applied
    rec = next(r for r in res.recommendations if r.product_id == pid(4))
    assert rec.reason == "From your favourite category"
    assert rec.confidence == 0.55


@pytest.mark.asyncio
async def test_invalid_requests_rejected_before_retrieval(make_engine):
    sources = _sources()
    engine = make_engine(sources)
    with pytest.raises(InvalidRequestError):
        await engine.recommend(_req(recommendation_type=RecommendationType.SEMANTIC))
    with pytest.raises(InvalidRequestError):
        await engine.recommend(_req(recommendation_type=RecommendationType.VECTOR, query_text="x"))
    with pytest.raises(InvalidRequestError):
        await engine.recommend(_req(price_min=50, price_max=10))
    assert not any(s.calls for s in sources.values())


@pytest.mark.asyncio
async def test_unknown_customer_or_anchor_is_not_found(make_engine):
    sources = _sources()
    engine = make_engine(sources)
    with pytest.raises(NotFoundError) as exc:
        await engine.recommend(_req(customer_id="nobody"))
    assert exc.value.kind == "customer"
    with pytest.raises(NotFoundError) as exc:
        await engine.recommend(_req(recommendation_type=RecommendationType.VECTOR, product_id="missing"))
    assert exc.value.kind == "product"
    assert not any(s.calls for s in sources.values())


def test_limit_is_clamped():
    assert _req(limit=0).limit == 1
    assert _req(limit=-5).limit == 1
    assert _req(limit=1000).limit == MAX_LIMIT == 100
    assert _req().limit == DEFAULT_LIMIT == 10
    assert _req(limit=None).limit == DEFAULT_LIMIT


@pytest.mark.asyncio
async def test_limit_owned_and_price_filters(make_engine):
    engine = make_engine(
        _sources(),
        profiles=FakeProfiles(make_profile("c-1", owned=[4])),
    )
    res = await engine.recommend(_req(limit=3, price_max=60.0))

    ids = [r.product_id for r in res.recommendations]
    assert len(ids) <= 3
    assert pid(4) not in ids
    # catalog prices are 10 * n
    assert all(r.price <= 60.0 for r in res.recommendations)
    assert res.filtered_count == len(ids)


@pytest.mark.asyncio
async def test_scores_confidence_and_timings(make_engine):
    res = await make_engine(_sources()).recommend(_req(query_text="coat", product_id=pid(20)))

    assert res.recommendations
    for r in res.recommendations:
        assert 0.0 <= r.score <= 1.0
        assert r.confidence in (0.4, 0.6, 0.8, 0.95)
        assert r.name == f"Product {int(r.product_id[-12:])}"
    assert {"profile_ms", "retrieval_ms", "hydration_ms", "filter_ms", "total_ms"} <= set(res.timings_ms)
    assert res.session_id


@pytest.mark.asyncio
async def test_unknown_catalog_products_are_dropped(make_engine):
    engine = make_engine({KB: StaticSource([make_candidate(4, 0.5, KB), make_candidate(999, 0.9, KB)])})
    res = await engine.recommend(_req(recommendation_type=RecommendationType.KNOWLEDGE_BASED))
    assert [r.product_id for r in res.recommendations] == [pid(4)]
    assert res.total_candidates == 2


@pytest.mark.asyncio
async def test_analytics_is_fire_and_forget(make_engine, analytics):
    res = await make_engine(_sources()).recommend(_req(session_id="s-42"))
    await asyncio.sleep(0)
    assert analytics.logged == [("c-1", "hybrid", "homepage", [r.product_id for r in res.recommendations], "s-42")]

    broken = make_engine(_sources(), analytics=FakeAnalytics(error=ConnectionError("db down")))
    res = await broken.recommend(_req())
    await asyncio.sleep(0)
    assert res.recommendations


@pytest.mark.asyncio
async def test_query_understanding_when_enabled(make_engine):
    gen = FakeGenerator('{"intent": "gift_suggestion", "sentiment": "positive"}')
    engine = make_engine(_sources(), generator=gen, query_understanding_enabled=True)
    res = await engine.recommend(_req(query_text="Gift for DAD"))
    assert res.query_understanding.intent == "gift_suggestion"
    assert res.query_understanding.processed_query == "gift for dad"


@pytest.mark.asyncio
async def test_diversity_after_fusion_spreads_sources(make_engine):
    sources = {
        KB: StaticSource([
            make_candidate(1, 0.9, KB, source="kb:a"),
            make_candidate(2, 0.8, KB, source="kb:a"),
            make_candidate(3, 0.1, KB, source="kb:b"),
        ]),
    }
    diverse = await make_engine(sources).recommend(
        _req(recommendation_type=RecommendationType.KNOWLEDGE_BASED, limit=2)
    )
    assert [r.product_id for r in diverse.recommendations] == [pid(1), pid(3)]

    plain = await make_engine(sources, diversity_after_fusion=False).recommend(
        _req(recommendation_type=RecommendationType.KNOWLEDGE_BASED, limit=2)
    )
    assert [r.product_id for r in plain.recommendations] == [pid(1), pid(2)]


@pytest.mark.asyncio
async def test_owned_products_reach_sources_when_not_excluded(make_engine):
    sources = _sources()
    engine = make_engine(sources, profiles=FakeProfiles(make_profile("c-1", owned=[4])))

    res = await engine.recommend(_req(exclude_owned=False))
    assert sources[KB].calls[-1].exclude_owned is False
    assert pid(4) in [r.product_id for r in res.recommendations]

    await engine.recommend(_req())
    assert sources[KB].calls[-1].exclude_owned is True
