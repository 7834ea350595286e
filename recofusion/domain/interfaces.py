# recofusion/domain/interfaces.py
"""
Collaborator contracts of the fusion pipeline.

The pipeline only ever talks to these; the Mongo/Redis/OpenAI adapters in
domain/repositories and domain/services implement them, and tests swap in
in-memory fakes.
"""
from __future__ import annotations

from typing import List, Optional, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel

from recofusion.domain.models.customer import CustomerProfile
from recofusion.domain.models.fusion import Candidate, RetrievalParams
from recofusion.domain.models.product import Product


class KnowledgePassage(BaseModel):
    content: str
    source: Optional[str] = None
    score: float = 0.0


@runtime_checkable
class ProfileProvider(Protocol):
    async def get_profile(self, customer_id: str) -> Optional[CustomerProfile]: ...


@runtime_checkable
class CandidateSource(Protocol):
    async def retrieve(self, params: RetrievalParams) -> List[Candidate]: ...


@runtime_checkable
class Catalog(Protocol):
    async def resolve_by_ids(self, product_ids: Sequence[str]) -> List[Product]: ...

    async def get_by_product_id(self, product_id: str) -> Optional[Product]: ...

    async def get_by_category(self, category_id: str, limit: int = 10) -> List[Product]: ...


@runtime_checkable
class TextGenerator(Protocol):
    async def generate(self, prompt: str, *, system: Optional[str] = None) -> str: ...


@runtime_checkable
class AnalyticsSink(Protocol):
    async def log_recommendation(
        self,
        customer_id: str,
        recommendation_type: str,
        context: str,
        product_ids: Sequence[str],
        session_id: str,
    ) -> None: ...


@runtime_checkable
class KnowledgeBase(Protocol):
    async def retrieve(self, query: str, limit: int = 5) -> List[KnowledgePassage]: ...


@runtime_checkable
class ProductSearch(Protocol):
    async def text_search(self, query_text: str, *, limit: int = 10, filters=None) -> List[dict]: ...

    async def vector_search(self, query_vector: List[float], *, limit: int = 10, filters=None) -> List[dict]: ...


@runtime_checkable
class CoPurchaseMiner(Protocol):
    async def co_purchased_with(
        self, product_ids: Sequence[str], *, limit: int = 20, exclude: Sequence[str] = ()
    ) -> List[dict]: ...


@runtime_checkable
class EmbeddingProvider(Protocol):
    async def embed_product(self, product: Product) -> Optional[List[float]]: ...
