"""Redis-backed fixed-window rate limiting, per client address."""

import time
from collections.abc import Iterable
from typing import Any

import structlog
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from spacehook.redis_client import get_redis

logger = structlog.get_logger()


def client_address(request: Request, trust_forwarded_for: bool = False) -> str:
    """Best guess at the caller's address.

    Behind a reverse proxy the first ``X-Forwarded-For`` hop is the client;
    only honour it when the deployment says the proxy is trusted.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Count requests per address and window in Redis; 429 past the budget.

    Without Redis (not configured or unreachable) requests pass unthrottled.
    """

    def __init__(
        self,
        app: Any,  # noqa: ANN401
        requests_per_window: int = 300,
        window_seconds: int = 60,
        exempt_paths: Iterable[str] = (),
        trust_forwarded_for: bool = False,
    ) -> None:
        super().__init__(app)
        self.requests_per_window = requests_per_window
        self.window_seconds = window_seconds
        self.exempt_paths = frozenset(exempt_paths)
        self.trust_forwarded_for = trust_forwarded_for

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        window = int(time.time()) // self.window_seconds
        rate_key = f"ratelimit:{client_address(request, self.trust_forwarded_for)}:{window}"

        try:
            pipe = get_redis().pipeline()
            pipe.incr(rate_key)
            pipe.expire(rate_key, self.window_seconds + 1)
            results: list[Any] = await pipe.execute()
        except RuntimeError:
            return await call_next(request)
        except RedisError:
            logger.warning("rate_limit_unavailable", exc_info=True)
            return await call_next(request)

        current_count: int = results[0]
        remaining = max(0, self.requests_per_window - current_count)

        if current_count > self.requests_per_window:
            logger.info("rate_limited", path=request.url.path, count=current_count)
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={
                    "Retry-After": str(self.window_seconds),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Limit": str(self.requests_per_window),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_window)
        return response
