from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from piggybank.core.rate_limit import GLOBAL_RULE, MUTATION_RULE, RateLimitMiddleware


class _FakeRedis:
    def __init__(self) -> None:
        self.counters: dict[str, int] = {}
        self.expiries: dict[str, int] = {}

    async def incr(self, key: str) -> int:
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    async def expire(self, key: str, seconds: int) -> None:
        self.expiries[key] = seconds


def _app(redis: _FakeRedis | None) -> FastAPI:
    app = FastAPI()
    app.state.redis = redis
    app.add_middleware(RateLimitMiddleware)

    @app.post("/piggy-bank/spend")
    def spend() -> dict[str, bool]:
        return {"ok": True}

    return app


def test_mutations_are_limited_per_ip() -> None:
    redis = _FakeRedis()
    client = TestClient(_app(redis))

    statuses = [client.post("/piggy-bank/spend").status_code for _ in range(MUTATION_RULE.limit + 1)]

    assert statuses[:-1] == [200] * MUTATION_RULE.limit
    assert statuses[-1] == 429
    assert redis.expiries["rate:piggy-mutation:testclient"] == MUTATION_RULE.window_seconds
    assert redis.expiries["rate:global:testclient"] == GLOBAL_RULE.window_seconds


def test_without_redis_requests_pass_through() -> None:
    client = TestClient(_app(None))
    assert all(client.post("/piggy-bank/spend").status_code == 200 for _ in range(MUTATION_RULE.limit + 5))
