# recofusion/api/deps.py
from fastapi import HTTPException, Request

from recofusion.domain.services.pipeline_svc import FusionEngine


def get_engine(request: Request) -> FusionEngine:
    """FusionEngine built by the lifespan; overridden in tests."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Recommendation engine not initialized")
    return engine
