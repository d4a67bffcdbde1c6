"""Webhook ingestion.

Each item moves through ``received -> parsed -> validated`` and ends in one of
``created``, ``duplicate``, ``invalid`` or ``error``. A batch is processed item
by item so one bad item never aborts the others, and results keep the input
order. On ``created`` the row is committed before the event is pushed to the
live hub, and the push finishes before the response is sent.
"""

from __future__ import annotations

import json
from typing import Any

import pydantic
import structlog

from spacehook.live.hub import FanoutHub
from spacehook.webhooks import errors
from spacehook.webhooks.guard import DuplicateGuard
from spacehook.webhooks.schemas import FieldError, WebhookIn, WebhookResult, to_public

# Wire names used in field-level error details
_WIRE_NAMES = {
    "user_id": "userId",
    "media_url": "mediaUrl",
    "media_type": "mediaType",
    "space_name": "spaceName",
    "tweet_url": "tweetUrl",
}


def parse_body(raw: bytes | str | dict[str, Any] | list[Any]) -> tuple[list[Any], bool]:
    """Decode a request body into a list of items.

    Accepts an already-parsed object or array, a JSON string, or raw bytes.
    A JSON document that is itself a string holding JSON is unwrapped once.

    Returns:
        Tuple of (items, is_batch).

    Raises:
        ParseError: body is not JSON, or not an object/array.
    """
    data: Any = raw
    if isinstance(data, (bytes, bytearray)):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise errors.ParseError("Body is not valid UTF-8") from exc
    if isinstance(data, str):
        data = _loads(data)
        if isinstance(data, str):
            data = _loads(data)

    if isinstance(data, list):
        return data, True
    if isinstance(data, dict):
        return [data], False
    raise errors.ParseError("Body must be a JSON object or an array of objects")


def _loads(text: str) -> Any:
    if not text.strip():
        raise errors.ParseError("Body is empty")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise errors.ParseError(f"Malformed JSON: {exc.msg} at position {exc.pos}") from exc


def validate_item(item: Any) -> WebhookIn:
    """Check one decoded item against the required-field schema."""
    if not isinstance(item, dict):
        raise errors.ParseError("Item must be a JSON object")
    try:
        return WebhookIn.model_validate(item)
    except pydantic.ValidationError as exc:
        details = []
        for err in exc.errors(include_url=False):
            loc = err.get("loc") or ("body",)
            name = str(loc[0])
            details.append({"field": _WIRE_NAMES.get(name, name), "message": err["msg"]})
        raise errors.ValidationError(details) from exc


class IngestionService:
    """Orchestrates parse, validate, duplicate check, persist and fan-out."""

    def __init__(
        self,
        guard: DuplicateGuard,
        hub: FanoutHub,
        logger: structlog.stdlib.BoundLogger | None = None,
        request_id: str | None = None,
    ) -> None:
        self.guard = guard
        self.hub = hub
        self.request_id = request_id
        self.log = (logger or structlog.get_logger()).bind(request_id=request_id)

    async def ingest(
        self,
        raw: bytes | str | dict[str, Any] | list[Any],
        max_items: int | None = None,
    ) -> tuple[list[WebhookResult], bool]:
        """Process a whole request body. ParseError propagates for an undecodable body."""
        items, is_batch = parse_body(raw)
        if is_batch and not items:
            raise errors.ParseError("Batch is empty")
        if max_items is not None and len(items) > max_items:
            raise errors.ParseError(f"Batch exceeds {max_items} items")
        results = []
        for index, item in enumerate(items):
            results.append(await self.process_item(item, index=index if is_batch else None))
        return results, is_batch

    async def process_item(self, item: Any, index: int | None = None) -> WebhookResult:
        log = self.log.bind(item_index=index) if index is not None else self.log

        try:
            webhook = validate_item(item)
        except errors.ValidationError as exc:
            log.info("webhook_invalid", fields=exc.fields)
            return WebhookResult(
                status="invalid",
                status_code=exc.status_code,
                message="Validation error",
                details=[FieldError(**d) for d in exc.details],
            )
        except errors.ParseError as exc:
            log.info("webhook_unparseable", error=str(exc))
            return WebhookResult(status="invalid", status_code=exc.status_code, message=str(exc))

        candidate = webhook.candidate()
        try:
            decision = await self.guard.should_accept(candidate)
        except Exception as exc:
            event = "webhook_storage_error" if isinstance(exc, errors.StorageError) else "webhook_internal_error"
            log.error(event, payload_fields=sorted(candidate), user_id=webhook.user_id, exc_info=True)
            return WebhookResult(
                status="error",
                status_code=errors.StorageError.status_code,
                message="Failed to process webhook",
                request_id=self.request_id,
            )

        public = to_public(decision.event)
        if not decision.accepted:
            log.info("webhook_duplicate", existing_id=public["id"], user_id=webhook.user_id)
            return WebhookResult(
                status="duplicate",
                status_code=errors.DuplicateError.status_code,
                message="Webhook already processed",
                webhook=public,
            )

        recipients = await self.hub.publish(public)
        log.info(
            "webhook_accepted",
            webhook_id=public["id"],
            user_id=webhook.user_id,
            space_name=webhook.space_name,
            recipients=recipients,
        )
        return WebhookResult(status="created", status_code=201, webhook=public)
