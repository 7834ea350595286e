from __future__ import annotations

from typing import Any, Dict, List, Optional

from recofusion.domain.models.customer import CustomerProfile

EXPLANATION_SYSTEM = "You explain product recommendations to shoppers. Return strict JSON only."
EXTRACTION_SYSTEM = "You extract product identifiers from text. Return a JSON array of strings only."
QUERY_SYSTEM = "You analyze e-commerce search queries. Return strict JSON only."


def profile_summary(profile: CustomerProfile, context: str) -> Dict[str, Any]:
    return {
        "total_spent": round(profile.total_spent, 2),
        "order_count": profile.order_count,
        "premium": profile.is_premium,
        "preferred_categories": profile.preferred_categories,
        "preferred_brands": profile.preferred_brands,
        "lifestyle_tags": profile.lifestyle_tags,
        "context": context,
    }


def explanation_task() -> str:
    return (
        "For each PRODUCT, explain why it is recommended to this CUSTOMER.\n\n"
        "RULES:\n"
        "- Use ONLY the provided CUSTOMER and PRODUCTS\n"
        "- One entry per product_id you can justify; skip the rest\n"
        "- reason: 25 words max, personal and factual\n"
        "- confidence: 0.0-1.0, optional\n"
        "- Format: strict JSON, no prose, no code fences\n\n"
        'OUTPUT FORMAT: {"recommendations":[{"product_id":"<PRODUCTS.product_id>",'
        '"reason":"...","confidence":0.00}]}'
    )


def knowledge_query(profile: CustomerProfile, context: str, intent: Optional[str] = None) -> str:
    """Natural-language query sent to the knowledge base for a customer."""
    lines = [
        "Product recommendations for a customer with this profile:",
        f"- Total spent: {profile.total_spent:.2f}",
        f"- Order count: {profile.order_count}",
        f"- Premium customer: {'yes' if profile.is_premium else 'no'}",
    ]
    if profile.preferred_categories:
        lines.append(f"- Preferred categories: {', '.join(profile.preferred_categories)}")
    if profile.preferred_brands:
        lines.append(f"- Preferred brands: {', '.join(profile.preferred_brands)}")
    if profile.lifestyle_tags:
        lines.append(f"- Lifestyle: {', '.join(profile.lifestyle_tags)}")
    if intent:
        lines.append(f"Intent: {intent}")
    lines.append(f"Context: {context}")
    lines.append("Recommend products matching their spending pattern, preferred categories and lifestyle.")
    return "\n".join(lines)


def extraction_prompt(passages: List[str]) -> str:
    content = "\n---\n".join(passages)
    return (
        "Extract the product IDs referenced in the following knowledge base content.\n"
        "Product IDs are UUIDs (8-4-4-4-12 hex).\n\n"
        f"CONTENT:\n{content}\n\n"
        "Return ONLY a JSON array of strings, e.g. [\"uuid1\", \"uuid2\"]. "
        "If there are none, return []."
    )


def query_analysis_prompt(query: str) -> str:
    return (
        f"Analyze this e-commerce search query: \"{query}\"\n\n"
        "Return JSON with:\n"
        '{"intent":"product_search|comparison|gift_suggestion|...",'
        '"entities":[{"type":"product|brand|category|feature|price","value":"...","confidence":0.0}],'
        '"sentiment":"positive|negative|neutral",'
        '"complexity":"simple|medium|complex",'
        '"required_context":["..."]}'
    )
