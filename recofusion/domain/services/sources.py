# recofusion/domain/services/sources.py
"""
The four candidate sources. Each turns RetrievalParams into raw-scored
Candidates; normalization, reranking and weighting happen in the merger.

Provenance (Candidate.source) drives the diversity selector:
  product-backed candidates -> "category:<category_id>"
  knowledge-base candidates -> the passage's source document
"""
from __future__ import annotations

import logging
import re
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from recofusion.domain.interfaces import (
    Catalog,
    CoPurchaseMiner,
    EmbeddingProvider,
    KnowledgeBase,
    KnowledgePassage,
    ProductSearch,
    TextGenerator,
)
from recofusion.domain.models.customer import CustomerProfile
from recofusion.domain.models.fusion import Candidate, RetrievalParams, StrategyKind
from recofusion.domain.models.product import Product
from recofusion.domain.services.constants import KB_KEY_TERMS, KB_PASSAGE_LIMIT
from recofusion.domain.services.extraction import extract_product_ids
from recofusion.domain.services.prompts import EXTRACTION_SYSTEM, extraction_prompt, knowledge_query

logger = logging.getLogger(__name__)

_PRODUCT_ID_LINE_RE = re.compile(
    r"product_id\s*[:=]\s*\"?([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})",
    re.IGNORECASE,
)

_STOP_WORDS = frozenset("""
    the a an and or but in on at to for of with by is are was were be been being
    have has had do does did will would could should may might must can this that
    these those i you he she it we they me him her us them
""".split())
_TERM_TRIM = ".,!?;:\"'()[]{}+-=_*&^%$#@~`"


# ---------- helpers -----------------------------------------------------------

def _product_from_doc(doc: Dict[str, Any]) -> Optional[Product]:
    try:
        return Product.model_validate(doc)
    except ValidationError:
        logger.debug(f"Dropping search hit without a valid product shape: {doc.get('product_id')}")
        return None


def _category_key(product: Product) -> Optional[str]:
    return f"category:{product.category_id}" if product.category_id else None


def _product_candidate(
    product: Product,
    strategy: StrategyKind,
    raw_score: float,
    *,
    source: Optional[str] = None,
    matched: Sequence[str] = (),
    metadata: Optional[Dict[str, Any]] = None,
) -> Candidate:
    return Candidate(
        product_id=product.product_id,
        raw_score=float(raw_score),
        strategy=strategy,
        matched_criteria=list(matched),
        source=source or _category_key(product),
        text=product.search_text(),
        price=product.current_price,
        metadata=metadata or {},
    )


def _from_search_docs(
    docs: Iterable[Dict[str, Any]],
    strategy: StrategyKind,
    *,
    matched: Sequence[str] = (),
    metadata: Optional[Dict[str, Any]] = None,
) -> List[Candidate]:
    out: List[Candidate] = []
    for doc in docs:
        if (p := _product_from_doc(doc)) is None:
            continue
        out.append(_product_candidate(p, strategy, doc.get("score") or 0.0, matched=matched, metadata=metadata))
    return out


def profile_criteria(product: Product, profile: CustomerProfile) -> List[str]:
    """Profile facts a product lines up with."""
    crit: List[str] = []
    if product.category_id and product.category_id in profile.preferred_categories:
        crit.append("preferred_category")
    if product.brand and product.brand in profile.preferred_brands:
        crit.append("preferred_brand")
    price = product.current_price
    if price is not None and (profile.price_range_min is not None or profile.price_range_max is not None):
        lo = profile.price_range_min if profile.price_range_min is not None else float("-inf")
        hi = profile.price_range_max if profile.price_range_max is not None else float("inf")
        if lo <= price <= hi:
            crit.append("price_range")
    tags = {t.lower() for t in product.tags}
    if any(t.lower() in tags for t in profile.lifestyle_tags):
        crit.append("lifestyle")
    return crit


def key_terms(text: str, n: int = KB_KEY_TERMS) -> str:
    """First n meaningful words of a passage (stop words and short words dropped)."""
    terms: List[str] = []
    for word in text.lower().split():
        w = word.strip(_TERM_TRIM)
        if len(w) > 3 and w not in _STOP_WORDS:
            terms.append(w)
            if len(terms) == n:
                break
    return " ".join(terms)


def structured_product_ids(passage: KnowledgePassage) -> List[str]:
    """ids declared as `product_id: <uuid>` lines in structured documents."""
    return list(dict.fromkeys(m.group(1) for m in _PRODUCT_ID_LINE_RE.finditer(passage.content)))


# ---------- sources -----------------------------------------------------------

class SemanticSource:
    """Full-text search on the query; the merger reranks lexically afterwards."""

    strategy = StrategyKind.SEMANTIC

    def __init__(self, search: ProductSearch):
        self.search = search

    async def retrieve(self, params: RetrievalParams) -> List[Candidate]:
        if not params.query_text:
            return []
        docs = await self.search.text_search(params.query_text, limit=params.limit, filters=params.filters)
        return _from_search_docs(docs, self.strategy, matched=["query_match"])


class VectorSource:
    """Nearest neighbours of the anchor product's embedding."""

    strategy = StrategyKind.VECTOR

    def __init__(self, search: ProductSearch, embeddings: EmbeddingProvider):
        self.search = search
        self.embeddings = embeddings

    async def retrieve(self, params: RetrievalParams) -> List[Candidate]:
        anchor = params.anchor
        if anchor is None:
            return []

        vec = await self.embeddings.embed_product(anchor)
        if vec:
            docs = await self.search.vector_search(vec, limit=params.limit, filters=params.filters)
            method = "vector"
        else:
            logger.warning(f"No embedding for anchor product_id={anchor.product_id}; using text similarity")
            query = " ".join(filter(None, [anchor.name, anchor.brand, anchor.category_name]))
            docs = await self.search.text_search(query, limit=params.limit, filters=params.filters)
            method = "text_similarity"

        docs = [d for d in docs if d.get("product_id") != anchor.product_id]
        return _from_search_docs(
            docs, self.strategy,
            matched=["similar_product"],
            metadata={"anchor_product_id": anchor.product_id, "search_method": method},
        )


class KnowledgeBaseSource:
    """
    Retrieval-augmented lookup against the knowledge base, with a fallback chain:
      structured `product_id:` lines -> model extraction -> key-term search
      -> preferred-category products
    """

    strategy = StrategyKind.KNOWLEDGE_BASED

    def __init__(
        self,
        kb: KnowledgeBase,
        catalog: Catalog,
        search: ProductSearch,
        generator: Optional[TextGenerator] = None,
        *,
        passage_limit: int = KB_PASSAGE_LIMIT,
    ):
        self.kb = kb
        self.catalog = catalog
        self.search = search
        self.generator = generator
        self.passage_limit = passage_limit

    async def _extract_with_model(self, passages: List[KnowledgePassage]) -> List[str]:
        if self.generator is None:
            return []
        try:
            reply = await self.generator.generate(
                extraction_prompt([p.content for p in passages]),
                system=EXTRACTION_SYSTEM,
            )
        except Exception as e:
            logger.warning(f"Product id extraction call failed: {e}")
            return []
        result = extract_product_ids(reply)
        if not result.ok:
            logger.info(f"No product ids recovered from knowledge passages ({result.reason})")
        else:
            logger.info(f"Recovered {len(result.ids)} product ids from passages via {result.method}")
        return result.ids

    def _candidates_for_ids(
        self,
        products: List[Product],
        owner: Dict[str, KnowledgePassage],
        profile: CustomerProfile,
        method: str,
    ) -> List[Candidate]:
        out: List[Candidate] = []
        for p in products:
            passage = owner.get(p.product_id)
            out.append(_product_candidate(
                p, self.strategy,
                passage.score if passage else 0.0,
                source=(passage.source if passage and passage.source else None),
                matched=["knowledge_base", *profile_criteria(p, profile)],
                metadata={"search_method": method},
            ))
        return out

    async def retrieve(self, params: RetrievalParams) -> List[Candidate]:
        profile = params.profile
        t0 = time.perf_counter()
        query = knowledge_query(profile, params.context, intent=params.query_text)
        passages = await self.kb.retrieve(query, limit=self.passage_limit)
        logger.info(f"Knowledge base returned {len(passages)} passages in {time.perf_counter() - t0:.3f}s")

        # 1) structured documents declare their product
        owner: Dict[str, KnowledgePassage] = {}
        for passage in passages:
            for pid in structured_product_ids(passage):
                owner.setdefault(pid, passage)
        method = "structured"

        # 2) ask the model to pick ids out of prose passages
        if not owner and passages:
            for pid in await self._extract_with_model(passages):
                holder = next((p for p in passages if pid.lower() in p.content.lower()), passages[0])
                owner.setdefault(pid, holder)
            method = "extracted"

        if owner:
            ids = list(owner)[: params.limit]
            excluded = set(params.filters.exclude_product_ids)
            products = [p for p in await self.catalog.resolve_by_ids(ids) if p.product_id not in excluded]
            if products:
                return self._candidates_for_ids(products, owner, profile, method)

        # 3) key terms of the best passage as a search query
        if passages:
            terms = key_terms(passages[0].content)
            if terms:
                docs = await self.search.text_search(terms, limit=params.limit, filters=params.filters)
                found = _from_search_docs(
                    docs, self.strategy,
                    matched=["knowledge_base"],
                    metadata={"search_method": "key_terms", "key_terms": terms},
                )
                if found:
                    return found

        # 4) best products of the customer's first preferred category
        if profile.preferred_categories:
            category = profile.preferred_categories[0]
            products = await self.catalog.get_by_category(category, limit=params.limit)
            excluded = set(params.filters.exclude_product_ids)
            return [
                _product_candidate(
                    p, self.strategy, (p.rating or 0.0) / 5.0,
                    matched=["preferred_category"],
                    metadata={"search_method": "category"},
                )
                for p in products if p.product_id not in excluded
            ]
        return []


class CollaborativeSource:
    """
    Products co-purchased with the customer's recent purchases, topped up
    with popular products of their preferred categories.
    """

    strategy = StrategyKind.COLLABORATIVE

    def __init__(self, miner: CoPurchaseMiner, catalog: Catalog, *, seed_count: int = 5):
        self.miner = miner
        self.catalog = catalog
        self.seed_count = seed_count

    async def _category_fill(self, profile: CustomerProfile, limit: int, skip: set[str]) -> List[Candidate]:
        cats = list(dict.fromkeys(profile.preferred_categories))
        if not cats:
            return []
        per_category = limit // len(cats) + 1
        out: List[Candidate] = []
        for cat in cats:
            for p in await self.catalog.get_by_category(cat, limit=per_category):
                if p.product_id in skip:
                    continue
                skip.add(p.product_id)
                # ratings stay below any co-purchase count after normalization
                out.append(_product_candidate(
                    p, self.strategy, (p.rating or 0.0) / 10.0,
                    matched=["preferred_category"],
                    metadata={"search_method": "category_popularity"},
                ))
        return out

    async def retrieve(self, params: RetrievalParams) -> List[Candidate]:
        profile = params.profile
        skip = set(params.filters.exclude_product_ids)
        if params.exclude_owned:
            skip |= profile.owned_product_ids
        out: List[Candidate] = []

        seeds = profile.recent_purchase_ids(self.seed_count)
        if seeds:
            rows = await self.miner.co_purchased_with(seeds, limit=params.limit, exclude=sorted(skip))
            counts = {r["product_id"]: r.get("count", 1) for r in rows if r.get("product_id")}
            for p in await self.catalog.resolve_by_ids(list(counts)):
                skip.add(p.product_id)
                out.append(_product_candidate(
                    p, self.strategy, counts[p.product_id],
                    matched=["bought_together", *profile_criteria(p, profile)],
                    metadata={"co_purchase_count": counts[p.product_id], "search_method": "co_purchase"},
                ))

        if len(out) < params.limit:
            out += await self._category_fill(profile, params.limit - len(out), skip)
        return out[: params.limit]
