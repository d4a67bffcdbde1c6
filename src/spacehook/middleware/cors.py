"""CORS for the dashboard and the browser extension."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from spacehook.config import Settings


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the dashboard origins plus extension origins matching ``cors_origin_regex``.

    Nothing is credentialed: the extension posts anonymously and the
    dashboard only reads.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_origin_regex=settings.cors_origin_regex,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-Id"],
        expose_headers=["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit"],
        max_age=600,
    )
