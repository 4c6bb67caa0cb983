"""
Data models for promotional discounts: scheduled windows, per-listing
promotion records and the calendar of recurring sale events.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from .enums import PromotionReason


class PromotionWindow(BaseModel):
    """A time-boxed discount scheduled for a set of listings."""

    id: str = Field(default_factory=lambda: f"promo-{uuid.uuid4().hex[:12]}")
    name: str = ""
    listing_ids: list[str]
    discount_percentage: float = Field(ge=0, le=90)
    start_time: datetime
    end_time: datetime
    reason: PromotionReason

    @model_validator(mode="after")
    def _check_span(self) -> "PromotionWindow":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        if len(set(self.listing_ids)) != len(self.listing_ids):
            raise ValueError("listing_ids must be unique")
        return self

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start_time < end and start < self.end_time


class PromotionRecord(BaseModel):
    """
    An active discount applied directly to a listing's price.

    Keeps the exact pre-discount price so removal restores it without
    inverting a rounded percentage.
    """

    listing_id: str
    original_price: float
    promotion_price: float
    discount_percentage: float
    started_at: datetime = Field(default_factory=datetime.now)
    ends_at: datetime


class LowActivityWindow(BaseModel):
    """A (weekday, hour) bucket with its average historical traffic."""

    day: str
    hour: int = Field(ge=0, le=23)
    avg_visits: float


class CalendarEvent(BaseModel):
    """A named sale event recurring every year on the same month/day."""

    name: str
    month: int = Field(ge=1, le=12)
    day: int = Field(ge=1, le=31)
    duration_hours: int = Field(gt=0)


class EventOccurrence(BaseModel):
    """Concrete upcoming occurrence of a calendar event."""

    event: CalendarEvent
    start: datetime
    end: datetime
    days_until: int
