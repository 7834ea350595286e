# recofusion/domain/services/scoring.py
from __future__ import annotations

from typing import List, Sequence

from recofusion.domain.models.fusion import Candidate
from recofusion.domain.services.constants import (
    LEXICAL_WEIGHT,
    MIN_NORMALIZE_SPREAD,
    SIMILARITY_WEIGHT,
)


def normalize_scores(batch: Sequence[Candidate]) -> List[Candidate]:
    """
    Min-max rescale one strategy call's raw scores into [0, 1].

    Batches whose spread is not above MIN_NORMALIZE_SPREAD keep their raw
    scores, clamped into [0, 1] for backends whose native scale exceeds it.
    """
    if not batch:
        return []
    raws = [c.raw_score for c in batch]
    lo, hi = min(raws), max(raws)
    spread = hi - lo
    if spread > MIN_NORMALIZE_SPREAD:
        return [c.model_copy(update={"score": (c.raw_score - lo) / spread}) for c in batch]
    return [c.model_copy(update={"score": min(1.0, max(0.0, c.raw_score))}) for c in batch]


def bucketize_confidence(score: float) -> float:
    if score > 0.8:
        return 0.95
    if score > 0.6:
        return 0.8
    if score > 0.4:
        return 0.6
    return 0.4


def average_confidence(scores: Sequence[float]) -> float:
    """Tiered confidence of a whole result; an empty result has none."""
    if not scores:
        return 0.0
    return bucketize_confidence(sum(scores) / len(scores))


def lexical_relevance(query: str, text: str) -> float:
    """Share of query terms found (case-insensitive substring) in text."""
    terms = query.lower().split()
    if not terms:
        return 0.0
    haystack = (text or "").lower()
    hits = sum(1 for t in terms if t in haystack)
    return hits / len(terms)


def semantic_rerank(candidates: Sequence[Candidate], query: str) -> List[Candidate]:
    """
    Blend similarity with lexical overlap and re-sort (stable, descending).
    The pre-blend similarity is kept in metadata["similarity"].
    """
    blended: List[Candidate] = []
    for c in candidates:
        combined = c.score * SIMILARITY_WEIGHT + lexical_relevance(query, c.text) * LEXICAL_WEIGHT
        blended.append(
            c.model_copy(update={
                "score": combined,
                "metadata": {**c.metadata, "similarity": c.score},
            })
        )
    # list.sort is stable, ties keep their prior order
    blended.sort(key=lambda c: c.score, reverse=True)
    return blended
