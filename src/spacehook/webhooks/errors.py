"""Ingestion error taxonomy.

Each error maps to one terminal outcome of the per-item state machine:
ParseError and ValidationError are client errors (400), DuplicateError is a
conflict (409) and StorageError is an internal failure (500).
"""

from __future__ import annotations

from typing import Any


class IngestError(Exception):
    """Base class for per-item ingestion failures."""

    status_code = 500
    outcome = "failed"


class ParseError(IngestError):
    """Request body could not be decoded from its wire representation."""

    status_code = 400
    outcome = "invalid"


class ValidationError(IngestError):
    """Candidate violated the required-field schema."""

    status_code = 400
    outcome = "invalid"

    def __init__(self, details: list[dict[str, Any]]) -> None:
        self.details = details
        fields = ", ".join(d["field"] for d in details)
        super().__init__(f"Invalid fields: {fields}")

    @property
    def fields(self) -> list[str]:
        return [d["field"] for d in self.details]


class DuplicateError(IngestError):
    """Fingerprint already present in the store."""

    status_code = 409
    outcome = "duplicate"

    def __init__(self, existing: Any) -> None:
        self.existing = existing
        super().__init__("Webhook already processed")


class StorageError(IngestError):
    """Database failure other than a fingerprint collision."""

    status_code = 500
    outcome = "failed"
