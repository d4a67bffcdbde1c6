"""Stats Pydantic schemas."""

from __future__ import annotations

from datetime import date as calendar_date
from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WindowStat(BaseModel):
    """One window: current value, comparable previous value and percent change."""

    current: int | float
    previous: int | float
    change: float | None = None


class WindowedStats(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    today: WindowStat
    week: WindowStat
    month: WindowStat
    rolling7: WindowStat
    rolling30: WindowStat
    total: int
    generated_at: datetime


class LocationBucket(BaseModel):
    city: str
    region: str
    country: str
    count: int


class ActiveUserPoint(BaseModel):
    date: calendar_date
    users: int


class ActiveUserSeries(BaseModel):
    points: list[ActiveUserPoint]
    latest: int | None = None
