# recofusion/domain/services/query_understanding.py
from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from recofusion.domain.interfaces import TextGenerator
from recofusion.domain.models.fusion import QueryUnderstanding
from recofusion.domain.services.extraction import locate_json
from recofusion.domain.services.prompts import QUERY_SYSTEM, query_analysis_prompt

logger = logging.getLogger(__name__)


def fallback_understanding(query: str) -> QueryUnderstanding:
    return QueryUnderstanding(original_query=query, processed_query=query.lower())


async def analyze_query(generator: TextGenerator, query: str) -> QueryUnderstanding:
    """
    Intent, entities, sentiment and complexity of a search query.
    Upstream errors propagate; an unparseable reply yields the basic analysis.
    """
    reply = await generator.generate(query_analysis_prompt(query), system=QUERY_SYSTEM)
    try:
        data = json.loads(locate_json(reply, "{", "}"))
        if not isinstance(data, dict):
            raise ValueError(f"expected an object, got {type(data).__name__}")
        data.update(original_query=query, processed_query=query.lower())
        return QueryUnderstanding.model_validate(data)
    except (ValueError, RecursionError, ValidationError) as e:
        # json.JSONDecodeError is a ValueError
        logger.warning(f"Query analysis reply unusable ({e}); using basic analysis")
        return fallback_understanding(query)
