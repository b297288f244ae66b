from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from piggybank import models  # noqa: F401
from piggybank.api.routes.open_requests import router as open_requests_router
from piggybank.api.routes.piggy_bank import router as piggy_bank_router
from piggybank.core.config import settings
from piggybank.core.exceptions import register_exception_handlers
from piggybank.core.logging import setup_json_logging
from piggybank.core.rate_limit import RateLimitMiddleware
from piggybank.core.request_logging import RequestLoggingMiddleware

setup_json_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    redis: Redis | None = None
    if settings.redis_url:
        redis = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    app.state.redis = redis
    try:
        yield
    finally:
        if redis is not None:
            await redis.aclose()


app = FastAPI(title="piggybank api", lifespan=lifespan)
register_exception_handlers(app)
allowed_origins = [item.strip() for item in settings.cors_allowed_origins.split(",") if item.strip()]
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Group-Id", "X-Request-Id", "Idempotency-Key"],
)
app.include_router(piggy_bank_router)
app.include_router(open_requests_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {
        "status": "ok",
        "env": settings.app_env,
        "commit": settings.git_sha or "unknown",
        "build": settings.build_id or "unknown",
    }
