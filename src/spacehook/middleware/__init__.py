"""HTTP middleware stack.

Starlette runs middleware outermost-first in reverse order of registration,
so requests pass through:

    CORS -> request id -> access log -> rate limit -> route

CORS is outermost so 429 responses still carry CORS headers. The request id is
bound before the access log so every event of a request shares it.
"""

from fastapi import FastAPI

from spacehook.config import Settings
from spacehook.middleware.cors import setup_cors
from spacehook.middleware.error_handler import setup_error_handlers
from spacehook.middleware.logging import AccessLogMiddleware, setup_logging
from spacehook.middleware.rate_limit import RateLimitMiddleware
from spacehook.middleware.request_id import RequestIdMiddleware

# Probes and long-lived streams are never rate limited
RATE_LIMIT_EXEMPT = frozenset({"/health", "/ready", "/api/events", "/ws/events"})


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        exempt_paths=RATE_LIMIT_EXEMPT,
        trust_forwarded_for=settings.trust_forwarded_for,
    )
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
