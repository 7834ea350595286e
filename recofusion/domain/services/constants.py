# Constants for the fusion pipeline.
from recofusion.domain.models.fusion import StrategyKind

# Merge order: earlier strategies win duplicate products outright
STRATEGY_PRIORITY = (
    StrategyKind.SEMANTIC,
    StrategyKind.VECTOR,
    StrategyKind.KNOWLEDGE_BASED,
    StrategyKind.COLLABORATIVE,
)

# Hybrid weights, applied once per candidate at merge time
HYBRID_WEIGHTS = {
    StrategyKind.SEMANTIC: 0.4,
    StrategyKind.VECTOR: 0.3,
    StrategyKind.KNOWLEDGE_BASED: 0.2,
    StrategyKind.COLLABORATIVE: 0.1,
}
SINGLE_STRATEGY_WEIGHT = 1.0

# Score normalization: narrower batches pass through untouched
MIN_NORMALIZE_SPREAD = 0.01

# Semantic rerank blend
SIMILARITY_WEIGHT = 0.7
LEXICAL_WEIGHT = 0.3

# Diversity provenance key fallback (product id prefix)
PROVENANCE_PREFIX_LEN = 8

# Context price caps
CONTEXT_PRICE_CAPS = {
    "cart": 200.0,
    "checkout": 100.0,
}

# Knowledge-base retrieval
KB_PASSAGE_LIMIT = 5
KB_KEY_TERMS = 5

DEFAULT_REASONS = {
    StrategyKind.SEMANTIC: "Matches your search query based on semantic understanding",
    StrategyKind.VECTOR: "Similar to your selected product based on vector analysis",
    StrategyKind.KNOWLEDGE_BASED: "Recommended from our product knowledge base for your profile",
    StrategyKind.COLLABORATIVE: "Popular with customers who share your preferences",
}
