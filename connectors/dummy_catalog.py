"""
Module: connectors.dummy_catalog

Provides a dummy in-memory listing catalog for demos and tests. Implements
the catalog capability consumed by the optimization engine: listing reads,
performance reads, price/field writes and promotion window registration.
"""

import asyncio
import copy
from datetime import datetime, timedelta
from typing import Any

from models.listing import ListingPerformance, ListingSnapshot
from models.promotion import PromotionWindow

from .errors import CatalogError

# Catalog fields the engine is allowed to write through update_fields.
WRITABLE_FIELDS = {
    "title",
    "description",
    "price",
    "is_experiment_running",
    "is_on_promotion",
    "promotion_percentage",
    "promotion_end",
    "last_refresh",
}


def _sample_listings(now: datetime) -> dict[str, dict[str, Any]]:
    return {
        "L100": {
            "id": "L100",
            "title": "Cold Email Sequence Builder",
            "description": "Five-step outreach sequence for B2B sales.",
            "category": "marketing",
            "price": 100.0,
            "views_last_hour": 25,
            "conversion_rate": 0.15,
            "total_views": 420,
            "creation_timestamp": now - timedelta(days=90),
        },
        "L200": {
            "id": "L200",
            "title": "SEO Blog Outline Generator",
            "description": "Keyword-driven outlines for long-form posts.",
            "category": "writing",
            "price": 60.0,
            "views_last_hour": 35,
            "conversion_rate": 0.02,
            "total_views": 650,
            "creation_timestamp": now - timedelta(days=45),
        },
        "L300": {
            "id": "L300",
            "title": "Quarterly OKR Planner",
            "description": "Turns strategy notes into measurable OKRs.",
            "category": "business",
            "price": 45.0,
            "views_last_hour": 4,
            "conversion_rate": 0.05,
            "total_views": 180,
            "creation_timestamp": now - timedelta(days=12),
        },
        "L400": {
            "id": "L400",
            "title": "Product Launch Checklist",
            "description": "Launch plan covering pricing, messaging and channels.",
            "category": "business",
            "price": 80.0,
            "views_last_hour": 9,
            "conversion_rate": 0.01,
            "total_views": 1200,
            "creation_timestamp": now - timedelta(days=200),
        },
    }


class DummyCatalog:
    """
    Dummy catalog connector backed by dictionaries.

    ``failing_listings`` makes every write for those ids raise CatalogError,
    which lets demos and tests exercise per-listing failure isolation.
    """

    def __init__(
        self,
        listings: dict[str, dict[str, Any]] | None = None,
        performance: dict[str, dict[str, Any]] | None = None,
        failing_listings: set[str] | None = None,
        latency: float = 0.0,
    ):
        now = datetime.now()
        self._listings = copy.deepcopy(listings) if listings is not None else _sample_listings(now)
        self._performance = copy.deepcopy(performance) if performance is not None else {}
        self.failing_listings = set(failing_listings or ())
        self.latency = latency
        self.promotions: dict[str, PromotionWindow] = {}
        self.writes: list[tuple[str, str, dict[str, Any]]] = []  # (op, listing_id, payload)

    async def _pause(self) -> None:
        await asyncio.sleep(self.latency)

    def _require(self, listing_id: str) -> dict[str, Any]:
        record = self._listings.get(listing_id)
        if record is None:
            raise CatalogError(f"Unknown listing {listing_id}", listing_id)
        return record

    def _check_writable(self, listing_id: str) -> dict[str, Any]:
        record = self._require(listing_id)
        if listing_id in self.failing_listings:
            raise CatalogError(f"Write rejected for listing {listing_id}", listing_id)
        return record

    async def fetch_all(self) -> list[ListingSnapshot]:
        """Snapshot every listing."""
        await self._pause()
        return [ListingSnapshot(**record) for record in self._listings.values()]

    async def fetch_listing(self, listing_id: str) -> ListingSnapshot:
        await self._pause()
        return ListingSnapshot(**self._require(listing_id))

    async def fetch_performance(self, listing_id: str) -> ListingPerformance:
        """Rolling performance; derived from the listing when none was seeded."""
        await self._pause()
        record = self._require(listing_id)
        seeded = self._performance.get(listing_id)
        if seeded is not None:
            return ListingPerformance(listing_id=listing_id, **seeded)
        views_7d = record.get("views_last_hour", 0) * 24 * 7
        conversion = record.get("conversion_rate", 0.0)
        return ListingPerformance(
            listing_id=listing_id,
            views_last_7_days=views_7d,
            views_last_30_days=views_7d * 4,
            sales_last_7_days=int(views_7d * conversion),
            conversion_rate=conversion,
        )

    async def set_price(self, listing_id: str, price: float) -> None:
        await self._pause()
        record = self._check_writable(listing_id)
        record["price"] = price
        record["last_price_change"] = datetime.now()
        self.writes.append(("set_price", listing_id, {"price": price}))

    async def update_fields(self, listing_id: str, fields: dict[str, Any]) -> None:
        await self._pause()
        record = self._check_writable(listing_id)
        unknown = set(fields) - WRITABLE_FIELDS
        if unknown:
            raise CatalogError(f"Fields not writable: {sorted(unknown)}", listing_id)
        for name, value in fields.items():
            if name == "promotion_end":
                continue  # Stored by the remote catalog only
            record[name] = value
        self.writes.append(("update_fields", listing_id, dict(fields)))

    async def create_promotion(self, window: PromotionWindow) -> PromotionWindow:
        await self._pause()
        for listing_id in window.listing_ids:
            self._check_writable(listing_id)
        self.promotions[window.id] = window
        self.writes.append(("create_promotion", window.id, {"listing_ids": list(window.listing_ids)}))
        return window

    async def cancel_promotion(self, window_id: str) -> None:
        await self._pause()
        if self.promotions.pop(window_id, None) is None:
            raise CatalogError(f"Unknown promotion {window_id}")
        self.writes.append(("cancel_promotion", window_id, {}))
