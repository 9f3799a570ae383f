"""
Rate limiting middleware for the JSON API
"""
from typing import Callable, List, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from travelpi.core.config import settings
from travelpi.core.exceptions import RateLimitExceededError
from travelpi.core.logging_config import logger
from travelpi.core.security import decode_access_token
from travelpi.services.rate_limiter import RateLimitResult


def get_client_ip(request: Request) -> Optional[str]:
    """First hop of X-Forwarded-For, then X-Real-IP, then the socket peer"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else None


def _tier_from_request(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization") or ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None

    payload = decode_access_token(token)
    return payload.get("tier") if payload else None


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies the per-tier hourly quota to /api routes
    The limiter itself lives on app.state so tests can swap its Redis client
    """

    LIMITED_PREFIXES: List[str] = [
        "/api/",
    ]

    # Provider callbacks and health checks are never throttled
    EXEMPTED_PREFIXES: List[str] = [
        "/api/webhooks",
        "/health",
    ]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not settings.RATE_LIMIT_ENABLED or self._is_exempted(request.url.path):
            return await call_next(request)

        rate_limiter = getattr(request.app.state, "rate_limiter", None)
        if rate_limiter is None:
            return await call_next(request)

        client_ip = get_client_ip(request) or "unknown"
        tier = _tier_from_request(request)
        result = await run_in_threadpool(rate_limiter.check, client_ip, tier)

        if not result.allowed:
            logger.warning(f"Rate limit exceeded for {client_ip} ({tier or 'free'}) on {request.url.path}")
            error = RateLimitExceededError(retry_after=result.retry_after)
            response = JSONResponse(
                status_code=error.status_code,
                content={"error": error.message, "code": error.code, "retryAfter": error.retry_after},
            )
            response.headers["Retry-After"] = str(result.retry_after)
            self._set_headers(response, result)
            return response

        response = await call_next(request)
        self._set_headers(response, result)
        return response

    def _is_exempted(self, path: str) -> bool:
        for prefix in self.EXEMPTED_PREFIXES:
            if path.startswith(prefix):
                return True

        return not any(path.startswith(prefix) for prefix in self.LIMITED_PREFIXES)

    @staticmethod
    def _set_headers(response: Response, result: RateLimitResult) -> None:
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        response.headers["X-RateLimit-Reset"] = str(result.reset)
