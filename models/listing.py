"""
Data models for catalog listings and their performance telemetry.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ListingSnapshot(BaseModel):
    """
    Immutable view of one listing at decision time.

    Produced fresh by the catalog/metrics collaborators on every cadence run.
    A decision never edits a snapshot; it yields a new desired state plus a
    mutation request against the catalog.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    description: str = ""
    category: str = "general"
    price: float = Field(ge=0)
    views_last_hour: int = Field(default=0, ge=0)
    conversion_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    total_views: int = Field(default=0, ge=0)
    is_experiment_running: bool = False
    is_on_promotion: bool = False
    promotion_percentage: float = Field(default=0.0, ge=0.0, le=90.0)
    creation_timestamp: datetime = Field(default_factory=datetime.now)
    last_price_change: datetime | None = None  # None = never changed by us
    last_refresh: datetime | None = None

    def age_days(self, now: datetime | None = None) -> float:
        """Days elapsed since the listing was created."""
        now = now or datetime.now()
        return (now - self.creation_timestamp).total_seconds() / 86400


class ListingPerformance(BaseModel):
    """Rolling performance metrics for a single listing."""

    listing_id: str
    views_last_7_days: int = 0
    views_last_30_days: int = 0
    sales_last_7_days: int = 0
    conversion_rate: float = Field(default=0.0, ge=0.0, le=1.0)
