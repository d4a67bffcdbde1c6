"""Natural-duplicate fingerprint of a webhook event.

The fingerprint is an ordered tuple of event columns. It is stored as a
SHA-256 digest so the database can enforce uniqueness with one index no
matter which columns take part. The same definition drives the duplicate
guard, the distinct count in stats and the reconciliation sweep.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import InstrumentedAttribute

from spacehook.config import FINGERPRINT_CANDIDATES
from spacehook.db.models import WebhookEvent

# ASCII unit separator: cannot appear in a URL and is unlikely in names
_SEPARATOR = "\x1f"


@dataclass(frozen=True)
class FingerprintSpec:
    """Named, ordered set of columns that identify the same real-world download."""

    fields: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.fields:
            msg = "A fingerprint needs at least one field"
            raise ValueError(msg)
        unknown = [name for name in self.fields if name not in FINGERPRINT_CANDIDATES]
        if unknown:
            msg = f"Unknown fingerprint fields: {', '.join(unknown)}"
            raise ValueError(msg)

    @classmethod
    def from_names(cls, names: Sequence[str]) -> FingerprintSpec:
        return cls(tuple(names))

    def values(self, event: Mapping[str, Any] | WebhookEvent) -> tuple[str, ...]:
        """Extract the fingerprint tuple from a candidate mapping or a stored row."""
        if isinstance(event, WebhookEvent):
            return tuple(str(getattr(event, name)) for name in self.fields)
        return tuple(str(event[name]) for name in self.fields)

    def digest(self, event: Mapping[str, Any] | WebhookEvent) -> str:
        """SHA-256 hex digest of the fingerprint tuple."""
        raw = _SEPARATOR.join(self.values(event))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def columns(self) -> list[InstrumentedAttribute[str]]:
        """ORM columns in fingerprint order (for GROUP BY / DISTINCT queries)."""
        return [getattr(WebhookEvent, name) for name in self.fields]

    def __str__(self) -> str:
        return "+".join(self.fields)


DEFAULT_FINGERPRINT = FingerprintSpec(("media_url", "tweet_url"))
