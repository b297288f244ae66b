from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from piggybank.core.exceptions import error_body

logger = logging.getLogger("piggybank.api.rate_limit")


@dataclass(frozen=True)
class RateLimitRule:
    key_prefix: str
    limit: int
    window_seconds: int


GLOBAL_RULE = RateLimitRule(key_prefix="global", limit=120, window_seconds=60)
MUTATION_RULE = RateLimitRule(key_prefix="piggy-mutation", limit=30, window_seconds=60)

_MUTATING_METHODS = frozenset({"POST", "PATCH"})


def _extract_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _rules_for(request: Request) -> list[RateLimitRule]:
    rules = [GLOBAL_RULE]
    if request.method.upper() in _MUTATING_METHODS and request.url.path.startswith("/piggy-bank"):
        rules.append(MUTATION_RULE)
    return rules


async def _increment_and_check(redis: Redis, *, rule: RateLimitRule, ip: str) -> bool:
    key = f"rate:{rule.key_prefix}:{ip}"
    value = await redis.incr(key)
    if value == 1:
        await redis.expire(key, rule.window_seconds)
    return int(value) <= rule.limit


class RateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        redis: Redis | None = getattr(request.app.state, "redis", None)
        if redis is None:
            return await call_next(request)

        ip = _extract_ip(request)
        try:
            for rule in _rules_for(request):
                if not await _increment_and_check(redis, rule=rule, ip=ip):
                    return JSONResponse(
                        status_code=429,
                        content=error_body(code="RATE_LIMIT", message="Too many requests"),
                    )
        except RedisError:
            # Fail open while Redis is unavailable.
            logger.warning("rate_limit.unavailable", extra={"route": request.url.path})

        return await call_next(request)
