"""
Promotion scheduler.

Plans time-boxed discount windows (flash sales in quiet hours, annual
calendar events) and applies or withdraws direct per-listing discounts.
Active discounts and scheduled windows are tracked in the StateStore; the
catalog's ``is_on_promotion`` flag is written alongside every change.
"""

import logging
import random
from collections.abc import Callable, Iterable, Sequence
from datetime import date, datetime, time, timedelta
from typing import Any

import pandas as pd

from config.config import PromotionConfig
from connectors.state_store import StateStore
from models.actions import ActionRecord
from models.enums import ActionType, PromotionReason
from models.listing import ListingSnapshot
from models.promotion import (
    EventOccurrence,
    LowActivityWindow,
    PromotionRecord,
    PromotionWindow,
)
from utils.money import round_half_up

logger = logging.getLogger(__name__)

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


class PromotionScheduler:
    def __init__(
        self,
        catalog: Any,
        store: StateStore,
        config: PromotionConfig | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.catalog = catalog
        self.store = store
        self.config = config or PromotionConfig()
        self.rng = rng or random.Random()
        self.clock = clock

    # --- Planning helpers --- #

    def find_low_activity_windows(self, series: Iterable[dict[str, Any]] | pd.DataFrame) -> list[LowActivityWindow]:
        """
        Quietest (weekday, hour) buckets of an hourly visit series.

        Buckets before ``night_end_hour`` are ignored. Ties keep the order in
        which buckets first appear in the series.
        """
        df = series if isinstance(series, pd.DataFrame) else pd.DataFrame(list(series))
        if df.empty:
            return []

        timestamps = pd.to_datetime(df["timestamp"])
        buckets = pd.DataFrame(
            {
                "day": timestamps.dt.day_name(),
                "hour": timestamps.dt.hour,
                "visits": df["visits"].fillna(0).astype(float),
            }
        )
        buckets = buckets[buckets["hour"] >= self.config.night_end_hour]
        averages = (
            buckets.groupby(["day", "hour"], sort=False)["visits"]
            .mean()
            .reset_index(name="avg_visits")
            .sort_values("avg_visits", kind="stable")
            .head(self.config.low_activity_top_n)
        )
        return [
            LowActivityWindow(day=row.day, hour=int(row.hour), avg_visits=float(row.avg_visits))
            for row in averages.itertuples(index=False)
        ]

    @staticmethod
    def next_occurrence(day: str, hour: int, now: datetime | None = None) -> datetime:
        """
        Next moment strictly after ``now`` falling on ``day`` at ``hour``:00.
        An unknown day name means tomorrow at ``hour``.
        """
        now = now or datetime.now()
        midnight = datetime.combine(now.date(), time())
        if day not in WEEKDAYS:
            return midnight + timedelta(days=1, hours=hour)

        days_ahead = (WEEKDAYS.index(day) - now.weekday()) % 7
        candidate = midnight + timedelta(days=days_ahead, hours=hour)
        if candidate <= now:
            candidate += timedelta(days=7)
        return candidate

    def check_upcoming_calendar_events(self, today: date | datetime | None = None) -> list[EventOccurrence]:
        """Calendar events starting within the lookahead period, nearest first."""
        today = today or self.clock()
        if isinstance(today, datetime):
            today = today.date()

        upcoming = []
        for event in self.config.special_events:
            try:
                event_date = date(today.year, event.month, event.day)
                if event_date < today:
                    event_date = event_date.replace(year=today.year + 1)
            except ValueError:
                logger.warning(f"Skipping calendar event '{event.name}' with invalid date {event.month}/{event.day}")
                continue
            days_until = (event_date - today).days
            if days_until > self.config.event_lookahead_days:
                continue
            start = datetime.combine(event_date, time())
            upcoming.append(
                EventOccurrence(
                    event=event,
                    start=start,
                    end=start + timedelta(hours=event.duration_hours),
                    days_until=days_until,
                )
            )
        return sorted(upcoming, key=lambda o: o.days_until)

    def is_eligible(self, listing: ListingSnapshot, start: datetime | None = None, end: datetime | None = None) -> bool:
        """Not discounted now and, for a planned span, not already in an overlapping window."""
        if listing.is_on_promotion or self.store.get_promotion(listing.id) is not None:
            return False
        if start is None or end is None:
            return True
        return not any(w.overlaps(start, end) for w in self.store.windows_for(listing.id))

    def select_listings(
        self,
        listings: Sequence[ListingSnapshot],
        count: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[ListingSnapshot]:
        """Up to ``count`` eligible listings, sampled at random when there are more."""
        eligible = [listing for listing in listings if self.is_eligible(listing, start, end)]
        if len(eligible) <= count:
            return eligible
        return self.rng.sample(eligible, count)

    # --- Windows --- #

    async def _register_window(self, window: PromotionWindow) -> ActionRecord:
        created = await self.catalog.create_promotion(window)
        if created is None:
            created = window
        await self.store.add_window(created)
        return ActionRecord(
            type=ActionType.SCHEDULE_PROMOTION,
            listing_id=None,
            details={
                "window_id": created.id,
                "name": created.name,
                "reason": created.reason.value,
                "listing_ids": list(created.listing_ids),
                "discount_percentage": created.discount_percentage,
                "start_time": created.start_time.isoformat(),
                "end_time": created.end_time.isoformat(),
            },
            timestamp=self.clock().isoformat(),
        )

    async def schedule_flash_promotions(
        self,
        windows: Sequence[LowActivityWindow],
        listings: Sequence[ListingSnapshot],
        now: datetime | None = None,
    ) -> list[ActionRecord]:
        """Schedule short flash discounts in the quietest upcoming hours."""
        cfg = self.config
        actions = []
        for window in list(windows)[: cfg.max_flash_windows]:
            start = self.next_occurrence(window.day, window.hour, now or self.clock())
            end = start + timedelta(hours=cfg.flash_duration_hours)
            selected = self.select_listings(listings, cfg.listings_per_flash, start, end)
            if not selected:
                logger.info(f"No listings available for a flash sale on {window.day} at {window.hour}h")
                continue
            try:
                promotion = PromotionWindow(
                    name=f"Flash Sale {window.day} {window.hour}h",
                    listing_ids=[listing.id for listing in selected],
                    discount_percentage=cfg.flash_discount,
                    start_time=start,
                    end_time=end,
                    reason=PromotionReason.FLASH,
                )
                actions.append(await self._register_window(promotion))
            except Exception as e:
                logger.error(f"Could not schedule flash sale for {window.day} at {window.hour}h: {e}")
                continue
            logger.info(
                f"Flash sale scheduled for {start.isoformat()} on {len(selected)} listing(s)"
            )
        return actions

    async def schedule_event_promotions(
        self,
        events: Sequence[EventOccurrence],
        listings: Sequence[ListingSnapshot],
    ) -> list[ActionRecord]:
        """One window per upcoming calendar event covering every eligible listing."""
        actions = []
        for occurrence in events:
            selected = [listing for listing in listings if self.is_eligible(listing, occurrence.start, occurrence.end)]
            if not selected:
                logger.info(f"No listings available for event '{occurrence.event.name}'")
                continue
            try:
                promotion = PromotionWindow(
                    name=occurrence.event.name,
                    listing_ids=[listing.id for listing in selected],
                    discount_percentage=self.config.special_event_discount,
                    start_time=occurrence.start,
                    end_time=occurrence.end,
                    reason=PromotionReason.CALENDAR_EVENT,
                )
                actions.append(await self._register_window(promotion))
            except Exception as e:
                logger.error(f"Could not schedule promotion for event '{occurrence.event.name}': {e}")
                continue
            logger.info(
                f"Event promotion '{occurrence.event.name}' scheduled "
                f"from {occurrence.start.isoformat()} to {occurrence.end.isoformat()}"
            )
        return actions

    async def cancel_window(self, window_id: str) -> ActionRecord | None:
        """Withdraw a scheduled window from the catalog and forget it."""
        try:
            await self.catalog.cancel_promotion(window_id)
        except Exception as e:
            logger.error(f"Could not cancel promotion window {window_id}: {e}")
            return None
        window = await self.store.pop_window(window_id)
        logger.info(f"Promotion window {window_id} cancelled")
        return ActionRecord(
            type=ActionType.CANCEL_PROMOTION,
            listing_id=None,
            details={
                "window_id": window_id,
                "listing_ids": list(window.listing_ids) if window else [],
            },
            timestamp=self.clock().isoformat(),
        )

    # --- Direct discounts --- #

    async def apply(
        self,
        listing_id: str,
        discount_percentage: float,
        duration_hours: float,
        now: datetime | None = None,
    ) -> ActionRecord | None:
        """
        Discount a listing's price. No-op if it is already on promotion or
        the discount would overlap one of its scheduled windows.
        """
        cfg = self.config
        discount = max(0.0, min(float(discount_percentage), cfg.max_discount))
        duration = min(duration_hours, cfg.max_promotion_duration_hours)
        started_at = now or self.clock()
        ends_at = started_at + timedelta(hours=duration)
        try:
            listing = await self.catalog.fetch_listing(listing_id)
            if not self.is_eligible(listing, started_at, ends_at):
                logger.info(f"Listing {listing_id} is already on promotion during {started_at} - {ends_at}")
                return None

            promotion_price = float(round_half_up(listing.price * (1 - discount / 100)))
            await self.catalog.update_fields(
                listing_id,
                {
                    "price": promotion_price,
                    "is_on_promotion": True,
                    "promotion_percentage": discount,
                    "promotion_end": ends_at.isoformat(),
                },
            )
        except Exception as e:
            logger.error(f"Could not apply promotion to listing {listing_id}: {e}")
            return None

        await self.store.put_promotion(
            PromotionRecord(
                listing_id=listing_id,
                original_price=listing.price,
                promotion_price=promotion_price,
                discount_percentage=discount,
                started_at=started_at,
                ends_at=ends_at,
            )
        )
        logger.info(
            f"{discount:g}% promotion applied to listing {listing_id}, "
            f"price {listing.price} -> {promotion_price}"
        )
        return ActionRecord(
            type=ActionType.APPLY_PROMOTION,
            listing_id=listing_id,
            before={"price": listing.price},
            after={"price": promotion_price, "promotion_percentage": discount},
            details={
                "requested_discount": discount_percentage,
                "requested_duration_hours": duration_hours,
                "duration_hours": duration,
                "ends_at": ends_at.isoformat(),
            },
            timestamp=self.clock().isoformat(),
        )

    async def remove(self, listing_id: str) -> ActionRecord | None:
        """
        End a listing's discount and restore its price.

        The stored pre-discount price is restored exactly. A discount applied
        outside this scheduler has no record; its price is recovered by
        inverting the catalog's promotion percentage.
        """
        try:
            listing = await self.catalog.fetch_listing(listing_id)
            record = self.store.get_promotion(listing_id)
            if not listing.is_on_promotion and record is None:
                logger.info(f"Listing {listing_id} is not on promotion")
                return None

            if record is not None:
                restored_price = record.original_price
                discount = record.discount_percentage
            else:
                discount = listing.promotion_percentage
                restored_price = float(round_half_up(listing.price / (1 - discount / 100)))
            await self.catalog.update_fields(
                listing_id,
                {"price": restored_price, "is_on_promotion": False, "promotion_percentage": 0},
            )
        except Exception as e:
            logger.error(f"Could not remove promotion from listing {listing_id}: {e}")
            return None

        await self.store.pop_promotion(listing_id)
        logger.info(f"Promotion removed from listing {listing_id}, price {listing.price} -> {restored_price}")
        return ActionRecord(
            type=ActionType.REMOVE_PROMOTION,
            listing_id=listing_id,
            before={"price": listing.price, "promotion_percentage": discount},
            after={"price": restored_price},
            details={"exact_recovery": record is not None},
            timestamp=self.clock().isoformat(),
        )
