from __future__ import annotations

import pytest

from fakes import FakeAnalytics, FakeCatalog, FakeProfiles, StaticSource, make_product, make_profile
from recofusion.domain.models.fusion import StrategyKind
from recofusion.domain.services.pipeline_svc import FusionEngine


@pytest.fixture
def catalog():
    return FakeCatalog([make_product(n, price=10.0 * n) for n in range(1, 21)])


@pytest.fixture
def profiles():
    return FakeProfiles(make_profile("c-1", preferred_categories=["cat-a"]))


@pytest.fixture
def analytics():
    return FakeAnalytics()


@pytest.fixture
def make_engine(profiles, catalog, analytics):
    """Build a FusionEngine; sources default to empty StaticSources."""

    def _make(sources=None, **kw):
        bound = {k: StaticSource() for k in StrategyKind}
        bound.update(sources or {})
        kw.setdefault("strategy_timeout_s", 0.5)
        kw.setdefault("enrichment_timeout_s", 0.5)
        return FusionEngine(
            profiles=kw.pop("profiles", profiles),
            sources=bound,
            catalog=kw.pop("catalog", catalog),
            analytics=kw.pop("analytics", analytics),
            **kw,
        )

    return _make
