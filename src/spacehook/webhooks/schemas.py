"""Webhook Pydantic schemas.

Canonical wire shape (camelCase, snake_case also accepted):

    {userId, mediaUrl, mediaType, spaceName, tweetUrl, ip, city, region, country}

``playlistUrl`` is accepted as a deprecated alias of ``mediaUrl`` for older
extension builds.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Literal
from urllib.parse import urlsplit

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

UNKNOWN_USER_SENTINEL = "unknown"


def _check_url(value: str) -> str:
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        msg = "must be an absolute http(s) URL"
        raise ValueError(msg)
    return value


class WebhookIn(BaseModel):
    """Incoming download event from the browser extension."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    user_id: str = Field(validation_alias=AliasChoices("userId", "user_id"))
    media_url: str = Field(validation_alias=AliasChoices("mediaUrl", "media_url", "playlistUrl", "playlist_url"))
    media_type: str = Field("audio", validation_alias=AliasChoices("mediaType", "media_type"), max_length=32)
    space_name: str = Field(validation_alias=AliasChoices("spaceName", "space_name"))
    tweet_url: str = Field(validation_alias=AliasChoices("tweetUrl", "tweet_url"))
    ip: str = Field(max_length=64)
    city: str
    region: str
    country: str

    @field_validator("user_id")
    @classmethod
    def _user_id_known(cls, value: str) -> str:
        if not value:
            msg = "must not be empty"
            raise ValueError(msg)
        if value.lower() == UNKNOWN_USER_SENTINEL:
            msg = "must identify a real submitter"
            raise ValueError(msg)
        return value

    @field_validator("media_url", "tweet_url")
    @classmethod
    def _url_well_formed(cls, value: str) -> str:
        return _check_url(value)

    def candidate(self) -> dict[str, str]:
        """Column values for a new event row."""
        return self.model_dump()


class WebhookOut(BaseModel):
    """Public view of a stored event. The origin IP is never exposed."""

    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    id: uuid.UUID
    user_id: str
    media_url: str
    media_type: str
    space_name: str
    tweet_url: str
    city: str
    region: str
    country: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive datetimes; everything is stored in UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def to_public(event: Any) -> dict[str, Any]:
    """JSON-ready public fields of a stored event (HTTP responses and live pushes)."""
    return WebhookOut.model_validate(event).model_dump(mode="json", by_alias=True)


class FieldError(BaseModel):
    field: str
    message: str


class WebhookResult(BaseModel):
    """Outcome of one ingested item."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: Literal["created", "duplicate", "invalid", "error"]
    status_code: int
    webhook: dict[str, Any] | None = None
    message: str | None = None
    details: list[FieldError] | None = None
    request_id: str | None = None
