# recofusion/domain/services/fusion_svc.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Mapping, NamedTuple, Sequence, Tuple

from recofusion.domain.interfaces import CandidateSource
from recofusion.domain.models.fusion import (
    Candidate,
    RecommendationType,
    RetrievalParams,
    StrategyKind,
    StrategyOutcome,
)
from recofusion.domain.services.constants import (
    HYBRID_WEIGHTS,
    SINGLE_STRATEGY_WEIGHT,
    STRATEGY_PRIORITY,
)
from recofusion.domain.services.diversity import select_diverse
from recofusion.domain.services.scoring import normalize_scores, semantic_rerank

logger = logging.getLogger(__name__)


class MergeResult(NamedTuple):
    candidates: List[Candidate]
    outcomes: List[StrategyOutcome]


def dedupe_first_seen(candidates: Sequence[Candidate]) -> List[Candidate]:
    """Keep the first occurrence of each product id; later ones are dropped whole."""
    seen: set[str] = set()
    out: List[Candidate] = []
    for c in candidates:
        if c.product_id in seen:
            continue
        seen.add(c.product_id)
        out.append(c)
    return out


def plan_strategies(
    rtype: RecommendationType,
    *,
    has_query: bool,
    has_anchor: bool,
) -> List[Tuple[StrategyKind, float]]:
    """(strategy, weight) pairs to run, in merge priority order."""
    if rtype is not RecommendationType.HYBRID:
        return [(rtype.strategy, SINGLE_STRATEGY_WEIGHT)]
    plan: List[Tuple[StrategyKind, float]] = []
    for kind in STRATEGY_PRIORITY:
        if kind is StrategyKind.SEMANTIC and not has_query:
            continue
        if kind is StrategyKind.VECTOR and not has_anchor:
            continue
        plan.append((kind, HYBRID_WEIGHTS[kind]))
    return plan


class FusionMerger:
    """
    Runs the candidate sources a request type calls for and merges them.

    Per strategy call: normalize -> lexical rerank (semantic with a query)
    -> optional per-strategy diversity -> weight. Across strategies:
    concatenate in priority order, first-seen dedup, stable sort by score.
    A failing or slow source becomes a degraded, empty outcome.
    """

    def __init__(
        self,
        sources: Mapping[StrategyKind, CandidateSource],
        *,
        timeout_s: float = 5.0,
        diversity_per_strategy: bool = False,
    ):
        missing = [k.value for k in StrategyKind if k not in sources]
        if missing:
            raise ValueError(f"no candidate source bound for: {', '.join(missing)}")
        self.sources = dict(sources)
        self.timeout_s = timeout_s
        self.diversity_per_strategy = diversity_per_strategy

    def _post_process(
        self,
        kind: StrategyKind,
        weight: float,
        raw: Sequence[Candidate],
        params: RetrievalParams,
    ) -> List[Candidate]:
        cands = normalize_scores(raw)
        cands = [c.model_copy(update={"metadata": {**c.metadata, "normalized_score": c.score}}) for c in cands]
        if kind is StrategyKind.SEMANTIC and params.query_text:
            cands = semantic_rerank(cands, params.query_text)
        if self.diversity_per_strategy:
            cands = select_diverse(cands, params.limit)
        return [c.model_copy(update={"score": c.score * weight}) for c in cands]

    async def _run(self, kind: StrategyKind, weight: float, params: RetrievalParams) -> StrategyOutcome:
        source = self.sources[kind]
        t0 = time.perf_counter()
        try:
            raw = await asyncio.wait_for(source.retrieve(params), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            elapsed = (time.perf_counter() - t0) * 1000
            logger.warning(f"Strategy {kind.value} timed out after {self.timeout_s}s")
            return StrategyOutcome(strategy=kind, weight=weight, degraded=True,
                                   cause=f"timeout after {self.timeout_s}s", elapsed_ms=elapsed)
        except Exception as e:
            elapsed = (time.perf_counter() - t0) * 1000
            logger.error(f"Strategy {kind.value} failed: {type(e).__name__}: {e}")
            return StrategyOutcome(strategy=kind, weight=weight, degraded=True,
                                   cause=f"{type(e).__name__}: {e}", elapsed_ms=elapsed)

        cands = self._post_process(kind, weight, raw or [], params)
        elapsed = (time.perf_counter() - t0) * 1000
        logger.info(f"Strategy {kind.value} weight={weight} candidates={len(cands)} ms={elapsed:.1f}")
        return StrategyOutcome(strategy=kind, candidates=cands, weight=weight, elapsed_ms=elapsed)

    async def merge(self, rtype: RecommendationType, params: RetrievalParams) -> MergeResult:
        plan = plan_strategies(
            rtype,
            has_query=bool(params.query_text),
            has_anchor=params.anchor is not None,
        )
        logger.debug(f"Strategy plan for {rtype.value}: {[(k.value, w) for k, w in plan]}")

        # Concurrent fan-out; gather is the barrier and cancels every call if we are cancelled
        outcomes = list(await asyncio.gather(*(self._run(k, w, params) for k, w in plan)))

        by_kind = {o.strategy: o for o in outcomes}
        concatenated: List[Candidate] = []
        for kind in STRATEGY_PRIORITY:
            if kind in by_kind:
                concatenated.extend(by_kind[kind].candidates)

        merged = dedupe_first_seen(concatenated)
        merged.sort(key=lambda c: c.score, reverse=True)
        logger.info(
            f"Merged {len(concatenated)} candidates into {len(merged)} unique "
            f"(degraded={[o.strategy.value for o in outcomes if o.degraded]})"
        )
        return MergeResult(candidates=merged, outcomes=outcomes)
