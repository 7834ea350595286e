# recofusion/api/v1/routers/health.py
import time

from fastapi import APIRouter

from recofusion.core.config import get_settings
from recofusion.db import mongo
from recofusion.db.redis import get_redis

router = APIRouter(tags=["health"])
START_TIME = time.time()


@router.get("/health")
async def health():
    """
    Tolerant health check:
    - Mongo ping
    - Redis ping, "skipped" when not configured
    - OpenAI key presence only
    """
    settings = get_settings()
    checks: dict[str, object] = {
        "app_name": settings.APP_NAME,
        "env": settings.APP_ENV,
        "version": settings.GIT_SHA,
        "uptime_seconds": int(time.time() - START_TIME),
    }

    try:
        await mongo.get_db().command("ping")
        checks["mongodb"] = "ok"
    except Exception as e:
        checks["mongodb"] = f"error: {e}"

    try:
        r = get_redis()
        if r:
            await r.ping()
            checks["redis"] = "ok"
        else:
            checks["redis"] = "skipped"
    except Exception as e:
        checks["redis"] = f"error: {e}"

    checks["openai_api_key_set"] = bool(settings.OPENAI_API_KEY)

    def _is_ok(v):
        return v in ("ok", "skipped") or v is True

    status = "ok" if all(_is_ok(checks.get(k)) for k in ("mongodb", "redis", "openai_api_key_set")) else "error"
    return {"status": status, "checks": checks, "timestamp": int(time.time())}
