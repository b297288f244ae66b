from __future__ import annotations

import logging
from time import perf_counter
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

logger = logging.getLogger("piggybank.api.request")

REQUEST_ID_HEADER = "X-Request-Id"


def _resolve_route(request: Request) -> str:
    route_path = getattr(request.scope.get("route"), "path", None)
    return route_path if isinstance(route_path, str) else request.url.path


def _request_context(request: Request, request_id: str) -> dict[str, object]:
    return {
        "request_id": request_id,
        "group_id": getattr(request.state, "group_id", None),
        "user_id": getattr(request.state, "user_id", None),
        "route": _resolve_route(request),
        "method": request.method,
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request.failed",
                extra={
                    **_request_context(request, request_id),
                    "status_code": 500,
                    "execution_time_ms": round((perf_counter() - started) * 1000, 2),
                },
            )
            raise

        logger.info(
            "request.completed",
            extra={
                **_request_context(request, request_id),
                "status_code": response.status_code,
                "execution_time_ms": round((perf_counter() - started) * 1000, 2),
            },
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
