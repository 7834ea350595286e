# recofusion/domain/services/explanation_svc.py

from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional, Sequence
import asyncio
import json
import logging
from time import monotonic as _now

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from recofusion.core.errors import MalformedOutputError
from recofusion.domain.interfaces import TextGenerator
from recofusion.domain.models.customer import CustomerProfile
from recofusion.domain.models.fusion import Candidate, EnrichmentOutcome
from recofusion.domain.models.product import Product
from recofusion.domain.services.extraction import locate_json, strip_fences
from recofusion.domain.services.prompts import EXPLANATION_SYSTEM, explanation_task, profile_summary

logger = logging.getLogger(__name__)

# =============================================================================
#                               VALIDATION SCHEMA
# =============================================================================

class ReasonItem(BaseModel):
    """
    One entry of the model's reply, matching explanation_task():
      {"product_id": "...", "reason": "...", "confidence": 0.00}
    """
    product_id: str = Field(..., min_length=1)
    reason: Optional[str] = Field(
        default=None,
        max_length=400,
        validation_alias=AliasChoices("reason", "explanation", "rationale"),
    )
    confidence: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        validation_alias=AliasChoices("confidence", "confidence_score"),
    )


def _load_reply(text: str) -> Any:
    """Parse the reply as JSON, unwrapping fences or surrounding prose."""
    attempts = [text.strip()]
    fenced = strip_fences(text)
    if fenced is not None:
        attempts.append(fenced)
    attempts.append(locate_json(text, "{", "}"))
    attempts.append(locate_json(text, "[", "]"))

    last_err: Optional[str] = None
    for raw in attempts:
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            last_err = e.msg
        except RecursionError:
            last_err = "nested too deeply"
    raise MalformedOutputError(f"reply is not JSON: {last_err}")


def parse_reasons(text: str) -> List[ReasonItem]:
    """
    Accepts a bare array, {"recommendations": [...]}, {"results": [...]} or a
    single item object. Items are validated one by one; bad ones are skipped.
    Raises MalformedOutputError when nothing usable is left.
    """
    if not text or not text.strip():
        raise MalformedOutputError("empty reply")

    parsed = _load_reply(text)
    if isinstance(parsed, dict):
        rows = parsed.get("recommendations") or parsed.get("results")
        if rows is None and "product_id" in parsed:
            rows = [parsed]
    else:
        rows = parsed
    if not isinstance(rows, list):
        raise MalformedOutputError(f"unexpected reply shape: {type(parsed).__name__}")

    items: List[ReasonItem] = []
    seen: set[str] = set()
    for row in rows:
        try:
            item = ReasonItem.model_validate(row)
        except ValidationError as e:
            logger.debug(f"Skipping invalid explanation item: {e.error_count()} error(s)")
            continue
        if item.product_id not in seen:
            seen.add(item.product_id)
            items.append(item)

    if not items:
        raise MalformedOutputError("no valid explanation items")
    return items

# =============================================================================
#                               JSON PRUNING
# =============================================================================

def _prune_empty(obj):
    """
    Recursively drop None, blank strings and empty containers.
    Keeps 0 and False.
    """
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            pv = _prune_empty(v)
            if pv is None or (isinstance(pv, (list, dict)) and len(pv) == 0):
                continue
            out[k] = pv
        return out
    if isinstance(obj, list):
        out = []
        for v in obj:
            pv = _prune_empty(v)
            if pv is None or (isinstance(pv, (list, dict)) and len(pv) == 0):
                continue
            out.append(pv)
        return out
    if isinstance(obj, str):
        s = obj.strip()
        return s if s != "" else None
    return obj


def _json_minify(obj: Dict[str, Any]) -> str:
    return json.dumps(_prune_empty(obj), ensure_ascii=False, separators=(",", ":"))


def _compact_product(c: Candidate, product: Optional[Product]) -> Dict[str, Any]:
    """Minimal per-candidate facts for the prompt."""
    if product is None:
        return _prune_empty({"product_id": c.product_id, "desc": c.text[:200]})
    data = _prune_empty({
        "product_id": product.product_id,
        "name": product.name,
        "brand": product.brand,
        "category": product.category_name or product.category_id,
        "price": product.current_price,
        "rating": product.rating,
        "tags": (product.tags or [])[:8],
        "desc": product.description or "",
        "matched": c.matched_criteria,
    })
    if "desc" in data:
        data["desc"] = data["desc"][:200]
    return data

# =============================================================================
#                               PUBLIC API
# =============================================================================

class ExplanationEnricher:
    """
    Best-effort reasons and confidence overrides from a text generator.
    Any failure (timeout, upstream error, malformed reply) returns the
    candidates unchanged with the cause recorded.
    """

    def __init__(self, generator: TextGenerator, *, timeout_s: float = 10.0):
        self.generator = generator
        self.timeout_s = timeout_s

    def build_prompt(
        self,
        candidates: Sequence[Candidate],
        profile: CustomerProfile,
        context: str,
        products: Mapping[str, Product],
    ) -> str:
        payload = {
            "customer": profile_summary(profile, context),
            "products": [_compact_product(c, products.get(c.product_id)) for c in candidates],
            "task": explanation_task(),
        }
        return _json_minify(payload)

    async def enrich(
        self,
        candidates: Sequence[Candidate],
        profile: CustomerProfile,
        context: str,
        products: Optional[Mapping[str, Product]] = None,
    ) -> EnrichmentOutcome:
        if not candidates:
            return EnrichmentOutcome(candidates=[], applied=False, cause="no candidates")

        original = list(candidates)
        prompt = self.build_prompt(original, profile, context, products or {})
        logger.info(f"Explanation request size={(len(prompt)/1024):.1f}KB candidates={len(original)}")
        logger.debug(f"Explanation prompt preview: {prompt[:2000]}{'…' if len(prompt)>2000 else ''}")

        t0 = _now()
        try:
            reply = await asyncio.wait_for(
                self.generator.generate(prompt, system=EXPLANATION_SYSTEM),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Explanation call timed out after {self.timeout_s}s")
            return EnrichmentOutcome(candidates=original, cause="timeout")
        except Exception as e:
            logger.error(f"Explanation call failed: {e}")
            return EnrichmentOutcome(candidates=original, cause=f"upstream error: {e}")

        try:
            items = parse_reasons(reply)
        except MalformedOutputError as e:
            logger.warning(f"Explanation reply unusable ({e}); keeping original candidates")
            return EnrichmentOutcome(candidates=original, cause=str(e))

        by_id = {it.product_id: it for it in items}
        merged: List[Candidate] = []
        matched = 0
        for c in original:
            it = by_id.get(c.product_id)
            if it is None:
                merged.append(c)
                continue
            update: Dict[str, Any] = {}
            if it.reason and it.reason.strip():
                update["reason"] = it.reason.strip()
            if it.confidence is not None:
                update["confidence"] = it.confidence
            if update:
                matched += 1
                merged.append(c.model_copy(update=update))
            else:
                merged.append(c)

        logger.info(
            f"Explanations merged for {matched}/{len(original)} candidates in {(_now() - t0):.3f}s"
        )
        if not matched:
            return EnrichmentOutcome(candidates=original, cause="no matching product ids")
        return EnrichmentOutcome(candidates=merged, applied=True)
