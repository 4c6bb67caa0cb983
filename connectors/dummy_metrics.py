"""
Module: connectors.dummy_metrics

Provides a synthetic metrics gateway: hourly visit series with a daily
traffic curve, detailed analytics read from a catalog, and fixed
price-elasticity estimates.
"""

from datetime import datetime, timedelta
from typing import Any

import numpy as np
import pandas as pd

from models.listing import ListingSnapshot

from .errors import MetricsUnavailableError

# Relative traffic by hour of day (peaks around lunch and evening).
_HOURLY_SHAPE = np.array(
    [0.2, 0.1, 0.1, 0.1, 0.1, 0.2, 0.4, 0.7, 0.9, 1.0, 1.0, 1.1,
     1.3, 1.2, 1.0, 0.9, 0.9, 1.0, 1.2, 1.4, 1.5, 1.3, 0.9, 0.5]
)


class DummyMetricsGateway:
    """
    Dummy analytics backend for demos and tests.
    """

    def __init__(
        self,
        catalog: Any,
        elasticities: dict[str, float] | None = None,
        base_visits_per_hour: float = 40.0,
        weekend_multiplier: float = 1.3,
        seed: int = 42,
    ):
        self.catalog = catalog
        self.elasticities = dict(elasticities or {})
        self.base_visits_per_hour = base_visits_per_hour
        self.weekend_multiplier = weekend_multiplier
        self.seed = seed

    async def fetch_hourly_series(
        self,
        listing_id: str | None,
        days_back: int,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Hourly ``{"timestamp", "visits"}`` points for one listing or the whole catalog."""
        if days_back <= 0:
            raise MetricsUnavailableError("days_back must be positive")
        end = (now or datetime.now()).replace(minute=0, second=0, microsecond=0)
        index = pd.date_range(end=end - timedelta(hours=1), periods=days_back * 24, freq="h")

        seed_parts = [self.seed] if listing_id is None else [self.seed, *map(ord, listing_id)]
        rng = np.random.default_rng(seed_parts)
        scale = self.base_visits_per_hour if listing_id is None else self.base_visits_per_hour / 4
        weekend = np.where(index.dayofweek >= 5, self.weekend_multiplier, 1.0)
        expected = scale * _HOURLY_SHAPE[index.hour] * weekend
        visits = rng.poisson(expected)

        return [
            {"timestamp": ts.to_pydatetime(), "visits": int(v)}
            for ts, v in zip(index, visits)
        ]

    async def fetch_detailed_analytics(self) -> list[ListingSnapshot]:
        return await self.catalog.fetch_all()

    async def fetch_elasticity(self, listing_id: str) -> float | None:
        """Long-term price elasticity estimate, or None when history is too short."""
        return self.elasticities.get(listing_id)
