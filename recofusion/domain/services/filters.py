from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from recofusion.domain.models.customer import CustomerProfile
from recofusion.domain.models.fusion import Candidate, FusionRequest, SearchFilters
from recofusion.domain.models.product import Product
from recofusion.domain.services.constants import CONTEXT_PRICE_CAPS

logger = logging.getLogger(__name__)

# High-value customers get a price window around their average order value
HIGH_VALUE_MIN_SPENT = 1000.0
HIGH_VALUE_MIN_ORDERS = 3


def build_search_filters(
    profile: CustomerProfile,
    request: FusionRequest,
    anchor: Optional[Product] = None,
) -> SearchFilters:
    """
    Personalized retrieval filters.
    Request values win over profile preferences; profile preferences win over
    the spend-derived price window. Checkout and cart contexts cap the price.
    """
    if request.category_id:
        category_ids = [request.category_id]
    else:
        category_ids = list(dict.fromkeys(profile.preferred_categories))

    price_min = request.price_min if request.price_min is not None else profile.price_range_min
    price_max = request.price_max if request.price_max is not None else profile.price_range_max

    aov = profile.average_order_value
    if (
        aov is not None
        and profile.total_spent > HIGH_VALUE_MIN_SPENT
        and profile.order_count > HIGH_VALUE_MIN_ORDERS
    ):
        if price_min is None:
            price_min = round(aov * 0.5, 2)
        if price_max is None:
            price_max = round(aov * 2.0, 2)

    cap = CONTEXT_PRICE_CAPS.get(request.context)
    if cap is not None:
        price_max = cap if price_max is None else min(price_max, cap)

    exclude = list(request.exclude_product_ids)
    if anchor is not None:
        exclude.append(anchor.product_id)

    filters = SearchFilters(
        category_ids=category_ids,
        price_min=price_min,
        price_max=price_max,
        preferred_brands=list(dict.fromkeys(profile.preferred_brands)),
        exclude_product_ids=list(dict.fromkeys(exclude)),
    )
    logger.debug(f"Search filters for customer_id={profile.customer_id}: {filters.model_dump()}")
    return filters


def atlas_compound_filter(filters: Optional[SearchFilters]) -> Dict[str, Any]:
    """
    Render SearchFilters as an Atlas Search compound clause.
      filter -> hard constraints (stock, category, price, exclusions)
      should -> soft boosts (preferred brands)
    """
    if filters is None:
        return {"compound": {"filter": []}}

    clauses: List[Dict[str, Any]] = []

    if filters.in_stock_only:
        clauses.append({"range": {"path": "stock", "gt": 0}})

    if len(filters.category_ids) == 1:
        clauses.append({"equals": {"path": "category_id", "value": filters.category_ids[0]}})
    elif filters.category_ids:
        clauses.append({"in": {"path": "category_id", "value": list(filters.category_ids)}})

    price: Dict[str, Any] = {}
    if filters.price_min is not None:
        price["gte"] = filters.price_min
    if filters.price_max is not None:
        price["lte"] = filters.price_max
    if price:
        clauses.append({"range": {"path": "current_price", **price}})

    for pid in filters.exclude_product_ids:
        clauses.append({"not": {"equals": {"path": "product_id", "value": pid}}})

    compound: Dict[str, Any] = {"filter": clauses}
    if filters.preferred_brands:
        compound["should"] = [
            {"text": {"path": "brand", "query": " ".join(filters.preferred_brands)}}
        ]
    return {"compound": compound}


def post_filter(
    candidates: Sequence[Candidate],
    *,
    limit: int,
    owned_ids: Iterable[str] = (),
    exclude_owned: bool = True,
    price_min: Optional[float] = None,
    price_max: Optional[float] = None,
    exclude_ids: Iterable[str] = (),
) -> List[Candidate]:
    """
    Applied in order: owned products, inclusive price range, explicit
    exclusions, then truncation. A candidate with an unknown price does not
    survive a price bound.
    """
    out = list(candidates)
    n0 = len(out)

    if exclude_owned:
        owned = set(owned_ids)
        if owned:
            out = [c for c in out if c.product_id not in owned]

    if price_min is not None or price_max is not None:
        def _in_range(c: Candidate) -> bool:
            if c.price is None:
                return False
            if price_min is not None and c.price < price_min:
                return False
            if price_max is not None and c.price > price_max:
                return False
            return True
        out = [c for c in out if _in_range(c)]

    excluded = set(exclude_ids)
    if excluded:
        out = [c for c in out if c.product_id not in excluded]

    out = out[:max(limit, 0)]
    logger.debug(f"Post-filter kept {len(out)}/{n0} candidates (limit={limit})")
    return out
