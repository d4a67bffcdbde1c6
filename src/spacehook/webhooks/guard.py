"""Duplicate guard.

The authoritative decision is the outcome of the insert against the
fingerprint uniqueness constraint, so two concurrent submissions of the same
download yield exactly one accepted row. A lookup before the insert is only a
shortcut for the common resubmission case.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from spacehook.db.models import WebhookEvent
from spacehook.webhooks.errors import StorageError
from spacehook.webhooks.store import ConstraintViolation, EventStore


@dataclass(frozen=True)
class GuardDecision:
    """``accepted`` is True when ``event`` is the newly stored row; otherwise
    ``event`` is the previously stored row sharing the fingerprint."""

    accepted: bool
    event: WebhookEvent


class DuplicateGuard:
    """Admit a candidate into the store unless its fingerprint is already there."""

    def __init__(
        self,
        store: EventStore,
        logger: structlog.stdlib.BoundLogger | None = None,
        precheck: bool = True,
    ) -> None:
        self.store = store
        self.log = logger or structlog.get_logger()
        self.precheck = precheck

    async def should_accept(self, candidate: Mapping[str, Any]) -> GuardDecision:
        digest = self.store.fingerprint.digest(candidate)

        if self.precheck:
            existing = await self.store.get_by_fingerprint(digest)
            if existing is not None:
                self.log.debug("duplicate_precheck_hit", fingerprint=digest, existing_id=str(existing.id))
                return GuardDecision(accepted=False, event=existing)

        # The existing row can vanish between the violation and the lookup
        # (the sweep deletes stale copies), so try the insert twice.
        for _attempt in range(2):
            try:
                row = await self.store.insert(candidate)
            except ConstraintViolation:
                existing = await self.store.get_by_fingerprint(digest)
                if existing is not None:
                    self.log.debug("duplicate_constraint_hit", fingerprint=digest, existing_id=str(existing.id))
                    return GuardDecision(accepted=False, event=existing)
                continue
            return GuardDecision(accepted=True, event=row)

        msg = f"Fingerprint {digest} conflicted but no stored row was found"
        raise StorageError(msg)
