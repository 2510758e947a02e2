from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request

from src.dashboard.errors import REQUEST_ID_HEADER, error_response, request_id_for
from src.dashboard.state import get_state

logger = logging.getLogger(__name__)

RATE_LIMITED_PREFIX = "/api/"
RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."

# Requests under these prefixes are not reported to performance monitoring.
UNTRACKED_PREFIXES = ("/api/health", "/docs", "/openapi.json", "/redoc")


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _is_tracked(path: str) -> bool:
    return path != "/" and not path.startswith(UNTRACKED_PREFIXES)


def _track(request: Request, started_ms: float, status_code: int) -> None:
    monitoring = get_state(request.app).monitoring
    path = request.url.path
    monitoring.track_api_call(
        f"{request.method} {path}",
        started_ms,
        time.time() * 1000.0,
        {
            "method": request.method,
            "path": path,
            "statusCode": status_code,
            "userAgent": request.headers.get("user-agent"),
            "ip": _client_ip(request),
            "failed": status_code >= 400,
        },
    )


# PUBLIC_INTERFACE
def install_middleware(app: FastAPI) -> None:
    """
    Register the request pipeline middleware.

    Per request:
    - assigns/echoes X-Request-ID
    - applies the per-IP sliding-window rate limit to /api/* (RateLimit-* headers, 429 when exceeded)
    - reports timing and status to performance monitoring
    """

    @app.middleware("http")
    async def request_pipeline(request: Request, call_next):  # type: ignore[override]
        rid = request_id_for(request)
        path = request.url.path
        started_ms = time.time() * 1000.0
        state = get_state(request.app)

        decision = None
        if state.config.rate_limit_enabled and path.startswith(RATE_LIMITED_PREFIX):
            decision = state.rate_limiter.hit(_client_ip(request))
            if not decision.allowed:
                logger.warning("Rate limit exceeded ip=%s path=%s", _client_ip(request), path)
                return error_response(
                    request,
                    429,
                    RATE_LIMIT_MESSAGE,
                    "TooManyRequests",
                    headers={
                        "RateLimit-Limit": str(decision.limit),
                        "RateLimit-Remaining": "0",
                        "RateLimit-Reset": str(decision.reset_after_sec),
                        "Retry-After": str(decision.reset_after_sec),
                    },
                )

        try:
            response = await call_next(request)
        except Exception:
            if _is_tracked(path):
                _track(request, started_ms, 500)
            raise

        response.headers[REQUEST_ID_HEADER] = rid
        if decision is not None:
            response.headers["RateLimit-Limit"] = str(decision.limit)
            response.headers["RateLimit-Remaining"] = str(decision.remaining)
            response.headers["RateLimit-Reset"] = str(decision.reset_after_sec)
        if _is_tracked(path):
            _track(request, started_ms, response.status_code)
        return response
