import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from recofusion.api.v1.routers.health import router as health_router
from recofusion.api.v1.routers.recommendations import router as recommendations_router
from recofusion.api.v1.routers.similar import router as similar_router
from recofusion.core.config import get_settings
from recofusion.core.errors import InvalidRequestError, NotFoundError
from recofusion.core.lifespan import lifespan
from recofusion.core.logging import configure_logging

settings = get_settings()
configure_logging(level=logging.DEBUG if settings.DEBUG else logging.INFO)

app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# ------- CORS -------
# ALLOWED_ORIGINS is a CSV, e.g. "https://shop.example.com,https://admin.example.com"
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,
)


# ------- Client errors -------
@app.exception_handler(InvalidRequestError)
async def invalid_request_handler(request: Request, exc: InvalidRequestError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# ------- Routes -------
app.include_router(health_router)
app.include_router(recommendations_router)
app.include_router(similar_router)
