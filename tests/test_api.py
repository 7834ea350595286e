from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from fakes import StaticSource, make_candidate, pid
from recofusion.api.deps import get_engine
from recofusion.domain.models.fusion import StrategyKind
from recofusion.main import app


@pytest.fixture
def client(make_engine):
    engine = make_engine({
        StrategyKind.SEMANTIC: StaticSource([make_candidate(1, 0.9, StrategyKind.SEMANTIC)]),
        StrategyKind.VECTOR: StaticSource([make_candidate(2, 0.8, StrategyKind.VECTOR), make_candidate(3, 0.4, StrategyKind.VECTOR)]),
        StrategyKind.KNOWLEDGE_BASED: StaticSource([make_candidate(4, 0.7, StrategyKind.KNOWLEDGE_BASED)]),
        StrategyKind.COLLABORATIVE: StaticSource([make_candidate(5, 2.0, StrategyKind.COLLABORATIVE)]),
    })
    app.dependency_overrides[get_engine] = lambda: engine
    # no context manager: the lifespan (Mongo/Redis wiring) is not started
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_recommendations_ok(client):
    r = client.post("/recommendations", json={"customer_id": "c-1", "query": "jacket", "limit": 3})
    assert r.status_code == 200
    body = r.json()
    assert body["recommendation_type"] == "hybrid"
    assert body["context"] == "homepage"
    assert body["strategies_used"] == ["semantic", "knowledge_based", "collaborative"]
    assert 0 < len(body["recommendations"]) <= 3
    first = body["recommendations"][0]
    assert {"product_id", "score", "confidence", "reason", "strategy", "name", "price"} <= set(first)


def test_semantic_without_query_is_400(client):
    r = client.post("/recommendations", json={"customer_id": "c-1", "recommendation_type": "semantic"})
    assert r.status_code == 400
    assert "query_text" in r.json()["detail"]


def test_unknown_customer_is_404(client):
    r = client.post("/recommendations", json={"customer_id": "ghost"})
    assert r.status_code == 404
    assert r.json()["detail"] == "customer not found: ghost"


def test_bad_recommendation_type_is_422(client):
    r = client.post("/recommendations", json={"customer_id": "c-1", "recommendation_type": "psychic"})
    assert r.status_code == 422


def test_similar_products(client):
    r = client.get(f"/customers/c-1/products/{pid(10)}/similar", params={"limit": 5})
    assert r.status_code == 200
    body = r.json()
    assert body["recommendation_type"] == "vector"
    assert body["context"] == "product_detail"
    assert [x["product_id"] for x in body["recommendations"]] == [pid(2), pid(3)]
    assert all(x["strategy"] == "vector" for x in body["recommendations"])


def test_similar_unknown_product_is_404(client):
    r = client.get("/customers/c-1/products/nope/similar")
    assert r.status_code == 404


def test_engine_missing_is_503():
    app.dependency_overrides.clear()
    r = TestClient(app).post("/recommendations", json={"customer_id": "c-1"})
    assert r.status_code == 503
