from __future__ import annotations

import json

import pytest

from fakes import (
    FakeCatalog,
    FakeEmbeddings,
    FakeGenerator,
    FakeKnowledgeBase,
    FakeMiner,
    FakeSearch,
    make_product,
    make_profile,
    pid,
)
from recofusion.domain.interfaces import KnowledgePassage
from recofusion.domain.models.customer import CustomerProfile, PurchaseItem
from recofusion.domain.models.fusion import RetrievalParams, SearchFilters, StrategyKind
from recofusion.domain.services.sources import (
    CollaborativeSource,
    KnowledgeBaseSource,
    SemanticSource,
    VectorSource,
    key_terms,
    profile_criteria,
    structured_product_ids,
)


def _doc(n: int, score: float, **kw) -> dict:
    return {**make_product(n, **kw).model_dump(), "score": score}


def _params(profile=None, **kw) -> RetrievalParams:
    return RetrievalParams(profile=profile or make_profile(), **kw)


@pytest.fixture
def catalog():
    products = [make_product(n, price=10.0 * n, rating=n % 5) for n in range(1, 11)]
    products += [make_product(n, category="cat-b", rating=4.0) for n in range(11, 15)]
    return FakeCatalog(products)


# ---------- helpers -----------------------------------------------------------

def test_key_terms_skip_stop_words_and_short_words():
    text = "The best running shoes for trail runners, with extra grip and cushioning!"
    assert key_terms(text) == "best running shoes trail runners"


def test_structured_ids_are_found_once():
    passage = KnowledgePassage(content=f"product_id: {pid(3)}\nname: Boots\nproduct_id=\"{pid(4)}\"\nproduct_id: {pid(3)}")
    assert structured_product_ids(passage) == [pid(3), pid(4)]


def test_profile_criteria():
    profile = make_profile(
        preferred_categories=["cat-a"],
        preferred_brands=["Acme"],
        price_range_max=60.0,
        lifestyle_tags=["outdoor"],
    )
    assert profile_criteria(make_product(1, price=50.0, tags=["Outdoor"]), profile) == [
        "preferred_category", "preferred_brand", "price_range", "lifestyle",
    ]
    assert profile_criteria(make_product(2, price=99.0, category="cat-z", brand="Other"), profile) == []


# ---------- semantic ----------------------------------------------------------

@pytest.mark.asyncio
async def test_semantic_without_query_returns_nothing():
    search = FakeSearch(text_docs=[_doc(1, 3.0)])
    assert await SemanticSource(search).retrieve(_params()) == []
    assert search.text_queries == []


@pytest.mark.asyncio
async def test_semantic_maps_search_hits():
    search = FakeSearch(text_docs=[_doc(1, 3.0), {"score": 1.0}, _doc(2, 1.5, category="cat-b")])
    out = await SemanticSource(search).retrieve(_params(query_text="boots", limit=5))
    assert search.text_queries == ["boots"]
    assert [c.product_id for c in out] == [pid(1), pid(2)]
    assert out[0].raw_score == 3.0
    assert out[1].source == "category:cat-b"
    assert "Product 1" in out[0].text
    assert all(c.strategy is StrategyKind.SEMANTIC for c in out)


# ---------- vector ------------------------------------------------------------

@pytest.mark.asyncio
async def test_vector_without_anchor_returns_nothing():
    search = FakeSearch(vector_docs=[_doc(1, 0.9)])
    assert await VectorSource(search, FakeEmbeddings([0.1])).retrieve(_params()) == []
    assert search.vector_calls == 0


@pytest.mark.asyncio
async def test_vector_search_excludes_anchor():
    anchor = make_product(5)
    search = FakeSearch(vector_docs=[_doc(5, 1.0), _doc(6, 0.9), _doc(7, 0.8)])
    out = await VectorSource(search, FakeEmbeddings([0.1, 0.2])).retrieve(_params(anchor=anchor))
    assert [c.product_id for c in out] == [pid(6), pid(7)]
    assert out[0].metadata == {"anchor_product_id": pid(5), "search_method": "vector"}
    assert search.text_queries == []


@pytest.mark.asyncio
async def test_vector_falls_back_to_text_similarity():
    anchor = make_product(5, name="Trail Boot", brand="Acme")
    search = FakeSearch(text_docs=[_doc(6, 2.0)])
    out = await VectorSource(search, FakeEmbeddings(None)).retrieve(_params(anchor=anchor))
    assert search.vector_calls == 0
    assert search.text_queries == ["Trail Boot Acme"]
    assert out[0].metadata["search_method"] == "text_similarity"


# ---------- knowledge based ---------------------------------------------------

@pytest.mark.asyncio
async def test_kb_structured_passages(catalog):
    kb = FakeKnowledgeBase([
        KnowledgePassage(content=f"product_id: {pid(2)}\nWarm and dry.", source="guide-a", score=2.5),
        KnowledgePassage(content=f"product_id: {pid(3)}", source="guide-b", score=1.0),
    ])
    gen = FakeGenerator("[]")
    src = KnowledgeBaseSource(kb, catalog, FakeSearch(), gen)
    profile = make_profile(preferred_categories=["cat-a"])
    out = await src.retrieve(_params(profile, query_text="rain gear"))

    assert "Intent: rain gear" in kb.queries[0]
    assert not gen.prompts
    assert [(c.product_id, c.source, c.raw_score) for c in out] == [(pid(2), "guide-a", 2.5), (pid(3), "guide-b", 1.0)]
    assert out[0].matched_criteria[:2] == ["knowledge_base", "preferred_category"]
    assert out[0].metadata["search_method"] == "structured"


@pytest.mark.asyncio
async def test_kb_model_extraction(catalog):
    kb = FakeKnowledgeBase([KnowledgePassage(content=f"Customers love item {pid(4)} for hiking.", source="blog")])
    gen = FakeGenerator(json.dumps([pid(4), pid(99)]))
    out = await KnowledgeBaseSource(kb, catalog, FakeSearch(), gen).retrieve(_params())
    assert len(gen.prompts) == 1
    assert [c.product_id for c in out] == [pid(4)]
    assert out[0].source == "blog"
    assert out[0].metadata["search_method"] == "extracted"


@pytest.mark.asyncio
async def test_kb_key_terms_when_nothing_extracted(catalog):
    kb = FakeKnowledgeBase([KnowledgePassage(content="Waterproof hiking boots keep your feet comfortable")])
    search = FakeSearch(text_docs=[_doc(8, 4.0)])
    gen = FakeGenerator("No product identifiers appear in these passages.")
    out = await KnowledgeBaseSource(kb, catalog, search, gen).retrieve(_params())
    assert search.text_queries == ["waterproof hiking boots keep your"]
    assert [c.product_id for c in out] == [pid(8)]
    assert out[0].metadata["key_terms"] == "waterproof hiking boots keep your"


@pytest.mark.asyncio
async def test_kb_category_fallback(catalog):
    profile = make_profile(preferred_categories=["cat-b"])
    src = KnowledgeBaseSource(FakeKnowledgeBase(), catalog, FakeSearch(), FakeGenerator(error=RuntimeError("down")))
    out = await src.retrieve(_params(profile, filters=SearchFilters(exclude_product_ids=[pid(11)])))
    assert [c.product_id for c in out] == [pid(12), pid(13), pid(14)]
    assert all(c.raw_score == pytest.approx(0.8) for c in out)
    assert out[0].metadata["search_method"] == "category"


@pytest.mark.asyncio
async def test_kb_nothing_at_all(catalog):
    src = KnowledgeBaseSource(FakeKnowledgeBase(), catalog, FakeSearch())
    assert await src.retrieve(_params()) == []


# ---------- collaborative -----------------------------------------------------

@pytest.mark.asyncio
async def test_collaborative_co_purchase_then_category_fill(catalog):
    profile = CustomerProfile(
        customer_id="c-9",
        preferred_categories=["cat-b"],
        purchase_history=[PurchaseItem(product_id=pid(1)), PurchaseItem(product_id=pid(2))],
    )
    miner = FakeMiner([{"product_id": pid(3), "count": 7}, {"product_id": pid(4), "count": 2}, {"product_id": pid(2), "count": 9}])
    out = await CollaborativeSource(miner, catalog).retrieve(_params(profile, limit=5))

    assert set(miner.seeds) == {pid(1), pid(2)}
    ids = [c.product_id for c in out]
    assert ids[:2] == [pid(3), pid(4)]
    assert pid(2) not in ids
    assert out[0].raw_score == 7
    assert out[0].matched_criteria[0] == "bought_together"
    assert all(c.metadata["search_method"] == "category_popularity" for c in out[2:])
    assert len(out) == 5


@pytest.mark.asyncio
async def test_collaborative_without_history_uses_categories(catalog):
    profile = make_profile(preferred_categories=["cat-b"])
    miner = FakeMiner([{"product_id": pid(3), "count": 7}])
    out = await CollaborativeSource(miner, catalog).retrieve(_params(profile, limit=10))
    assert miner.seeds == []
    assert [c.product_id for c in out] == [pid(11), pid(12), pid(13), pid(14)]
    assert all(c.raw_score == pytest.approx(0.4) for c in out)


@pytest.mark.asyncio
async def test_collaborative_cold_start_is_empty(catalog):
    assert await CollaborativeSource(FakeMiner(), catalog).retrieve(_params()) == []


@pytest.mark.asyncio
async def test_collaborative_keeps_owned_when_not_excluded(catalog):
    profile = make_profile(preferred_categories=["cat-b"], owned=[11])
    src = CollaborativeSource(FakeMiner(), catalog)

    excluded = await src.retrieve(_params(profile, limit=10))
    assert pid(11) not in [c.product_id for c in excluded]

    kept = await src.retrieve(_params(profile, limit=10, exclude_owned=False))
    assert pid(11) in [c.product_id for c in kept]
