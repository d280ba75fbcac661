from __future__ import annotations

import logging
import re
from time import perf_counter
from typing import Any
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

logger = logging.getLogger("squadlink.api.request")

_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{8,64}$")
_QUIET_PATHS = frozenset({"/health"})


def _request_id(request: Request) -> str:
    incoming = request.headers.get("X-Request-Id") or ""
    if _REQUEST_ID_PATTERN.match(incoming):
        return incoming
    return str(uuid4())


def _resolve_route(request: Request) -> str:
    route = request.scope.get("route")
    route_path = getattr(route, "path", None)
    if isinstance(route_path, str):
        return route_path
    return request.url.path


def _context(request: Request, request_id: str, started: float) -> dict[str, Any]:
    return {
        "request_id": request_id,
        "user_id": getattr(request.state, "user_id", None),
        "session_id": request.path_params.get("session_id"),
        "route": _resolve_route(request),
        "method": request.method,
        "execution_time_ms": round((perf_counter() - started) * 1000, 2),
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = perf_counter()
        request_id = _request_id(request)
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request.failed", extra={**_context(request, request_id, started), "status_code": 500})
            raise

        response.headers["X-Request-Id"] = request_id
        if request.url.path in _QUIET_PATHS and response.status_code < 400:
            return response

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "request.completed",
            extra={**_context(request, request_id, started), "status_code": response.status_code},
        )
        return response
