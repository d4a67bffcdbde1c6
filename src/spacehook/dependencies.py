"""Shared FastAPI dependencies."""

from fastapi import Request

from spacehook.config import Settings
from spacehook.live.hub import FanoutHub
from spacehook.webhooks.fingerprint import FingerprintSpec


def get_app_settings(request: Request) -> Settings:
    """The settings the application was created with."""
    return request.app.state.settings


def get_hub(request: Request) -> FanoutHub:
    """The application's live fan-out hub."""
    return request.app.state.hub


def get_fingerprint(request: Request) -> FingerprintSpec:
    """The configured duplicate fingerprint definition."""
    return request.app.state.fingerprint
