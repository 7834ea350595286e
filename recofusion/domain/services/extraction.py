# recofusion/domain/services/extraction.py
"""
Recover product identifiers from free-text model replies.

Two stages, neither of which raises:
  1) JSON: unwrap a fenced block (```json or bare ```), else take the span
     from the first '[' to the last ']', parse it as a list of strings and
     keep the ones shaped like a UUID.
  2) Regex: only when stage 1 could not parse JSON. Scan whitespace tokens
     (surrounding punctuation trimmed) and double-quoted substrings.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, List, Optional

from recofusion.domain.models.fusion import ExtractionResult

logger = logging.getLogger(__name__)

_UUID_RE = re.compile(
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)
# Opening fence with an optional language tag; an unclosed fence runs to the end
_FENCED_BLOCK_RE = re.compile(r"```[\w-]*[ \t]*\n?(.*?)(?:```|\Z)", re.DOTALL)
_TRIM_CHARS = ".,!?;:\"'()[]{}+-=_*&^%$#@~`"


def is_product_id(value: Any) -> bool:
    return isinstance(value, str) and _UUID_RE.fullmatch(value) is not None


def strip_fences(text: str) -> Optional[str]:
    """Body of the first fenced code block, or None when there is no fence."""
    m = _FENCED_BLOCK_RE.search(text)
    return m.group(1).strip() if m else None


def locate_json(text: str, opener: str = "[", closer: str = "]") -> str:
    """
    Best guess at the JSON payload inside a reply: a fenced block body when
    present, otherwise the outermost opener..closer span, otherwise the text.
    """
    text = (text or "").strip()
    fenced = strip_fences(text)
    if fenced is not None:
        return fenced
    start, end = text.find(opener), text.rfind(closer)
    if start != -1 and end > start:
        return text[start:end + 1]
    return text


def _dedupe(ids: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(ids))


def _regex_fallback(text: str) -> List[str]:
    found: List[str] = []
    for word in text.split():
        token = word.strip(_TRIM_CHARS)
        if is_product_id(token):
            found.append(token)
    if '"' in text:
        parts = text.split('"')
        # odd indexes are the quoted substrings
        for quoted in parts[1::2]:
            if is_product_id(quoted):
                found.append(quoted)
    return _dedupe(found)


def extract_product_ids(text: Optional[str]) -> ExtractionResult:
    if not text or not text.strip():
        return ExtractionResult(method="none", reason="empty response")

    payload = locate_json(text)
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as e:
        parsed = None
        parse_error = f"invalid JSON: {e.msg}"
    except RecursionError:
        parsed = None
        parse_error = "JSON nested too deeply"
    else:
        parse_error = None if isinstance(parsed, list) else f"expected a JSON array, got {type(parsed).__name__}"

    if parse_error is None:
        ids = _dedupe(v for v in parsed if is_product_id(v))
        skipped = len(parsed) - len(ids)
        if skipped:
            logger.debug(f"Skipped {skipped} non-identifier entries in extracted array")
        if not ids:
            return ExtractionResult(method="json", reason="no valid identifiers in array")
        return ExtractionResult(ids=ids, method="json")

    logger.debug(f"JSON extraction failed ({parse_error}); falling back to regex scan")
    ids = _regex_fallback(text)
    if ids:
        logger.info(f"Extracted {len(ids)} identifiers with regex fallback")
        return ExtractionResult(ids=ids, method="regex")
    return ExtractionResult(method="none", reason=parse_error)
