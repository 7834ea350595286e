# recofusion/domain/services/diversity.py
from __future__ import annotations

from typing import List, Sequence

from recofusion.domain.models.fusion import Candidate
from recofusion.domain.services.constants import PROVENANCE_PREFIX_LEN


def provenance_key(c: Candidate) -> str:
    return c.source or c.product_id[:PROVENANCE_PREFIX_LEN]


def select_diverse(candidates: Sequence[Candidate], limit: int) -> List[Candidate]:
    """
    Two-pass greedy selection over an already ranked list.
      1) one candidate per provenance key, in rank order
      2) backfill with the remaining candidates, in rank order
    Returns min(limit, len(unique candidates)) items, no duplicate product ids.
    """
    if limit <= 0:
        return []

    selected: List[Candidate] = []
    picked: set[str] = set()
    seen_keys: set[str] = set()

    for c in candidates:
        if len(selected) >= limit:
            break
        key = provenance_key(c)
        if key in seen_keys or c.product_id in picked:
            continue
        seen_keys.add(key)
        picked.add(c.product_id)
        selected.append(c)

    for c in candidates:
        if len(selected) >= limit:
            break
        if c.product_id in picked:
            continue
        picked.add(c.product_id)
        selected.append(c)

    return selected
