"""ORM models for webhook events and daily active-user snapshots."""

from __future__ import annotations

import uuid
from datetime import date as calendar_date
from datetime import datetime

from sqlalchemy import (
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from spacehook.db.base import Base


# ---------------------------------------------------------------------------
# Webhook events
# ---------------------------------------------------------------------------


class WebhookEvent(Base):
    """One accepted download event.

    Only the sweep ever updates a row, and only its ``fingerprint`` digest.
    """

    __tablename__ = "webhooks"
    __table_args__ = (
        UniqueConstraint("fingerprint", name="uq_webhooks_fingerprint"),
        Index("ix_webhooks_created_at", "created_at"),
        Index("ix_webhooks_user_id", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    media_url: Mapped[str] = mapped_column(Text, nullable=False)
    media_type: Mapped[str] = mapped_column(String(32), nullable=False)
    space_name: Mapped[str] = mapped_column(Text, nullable=False)
    tweet_url: Mapped[str] = mapped_column(Text, nullable=False)
    ip: Mapped[str] = mapped_column(String(64), nullable=False)
    city: Mapped[str] = mapped_column(Text, nullable=False)
    region: Mapped[str] = mapped_column(Text, nullable=False)
    country: Mapped[str] = mapped_column(Text, nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Active users (imported from the extension store export)
# ---------------------------------------------------------------------------


class ActiveUserSnapshot(Base):
    """Daily active-install count, keyed by calendar date."""

    __tablename__ = "active_users"

    date: Mapped[calendar_date] = mapped_column(Date, primary_key=True)
    user_count: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
