"""
Optimization orchestrator: the recurring cadences of the engine.

Each cadence fetches a fresh listing set, folds the pricing, experiment,
content and promotion rules over it and returns the list of actions that
actually succeeded. A cadence never raises: any failure is logged,
notified and turned into an empty action list.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from config.config import EngineConfig
from connectors.content_generator import IMPROVE_INSTRUCTION, REFRESH_INSTRUCTION
from connectors.state_store import StateStore
from models.actions import ActionRecord, Notification, actions_to_json
from models.enums import ActionType, Cadence, NotificationType
from models.listing import ListingPerformance, ListingSnapshot
from utils.cache import MetricsCache

from .conclusion_worker import ConclusionWorker
from .experiment_controller import ExperimentController
from .pricing_policy import PricingPolicy
from .promotion_scheduler import PromotionScheduler

logger = logging.getLogger(__name__)


class OptimizationOrchestrator:
    """Coordinates pricing, experiments, content and promotions across cadences."""

    def __init__(
        self,
        catalog: Any,
        metrics: Any,
        content_generator: Any,
        notifier: Any,
        config: EngineConfig | None = None,
        store: StateStore | None = None,
        cache: MetricsCache | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.catalog = catalog
        self.metrics = metrics
        self.content_generator = content_generator
        self.notifier = notifier
        self.config = config or EngineConfig()
        self.store = store or StateStore()
        self.cache = cache or MetricsCache()
        self.clock = clock

        self.policy = PricingPolicy(self.config.pricing, clock)
        self.experiments = ExperimentController(catalog, self.store, self.config.experiments, clock)
        self.promotions = PromotionScheduler(catalog, self.store, self.config.promotions, rng, clock)
        self.conclusion_worker = ConclusionWorker(self.experiments)

    # --- Plumbing --- #

    async def _notify(
        self,
        type: NotificationType,
        subject: str,
        message: str,
        attachment: str | None = None,
    ) -> None:
        try:
            await self.notifier.notify(
                Notification(type=type, subject=subject, message=message, attachment=attachment)
            )
        except Exception as e:
            logger.error(f"Failed to send notification '{subject}': {e}")

    async def _run_cadence(
        self, cadence: Cadence, body: Callable[[], Awaitable[list[ActionRecord]]]
    ) -> list[ActionRecord]:
        logger.info(f"Starting {cadence.value} optimization...")
        try:
            actions = await body()
        except Exception as e:
            logger.error(f"Error during {cadence.value} optimization: {e}", exc_info=True)
            await self._notify(
                NotificationType.ERROR,
                f"{cadence.value.capitalize()} optimization error",
                f"An error occurred during the {cadence.value} optimization: {e}",
            )
            return []
        if actions:
            self.cache.invalidate("listings")
            self.cache.invalidate("detailed_analytics")
        logger.info(f"{cadence.value.capitalize()} optimization finished: {len(actions)} action(s)")
        return actions

    async def run(self, cadence: Cadence) -> list[ActionRecord]:
        """Dispatch a cadence by name (for external schedulers)."""
        runners = {
            Cadence.HOURLY: self.run_hourly,
            Cadence.DAILY: self.run_daily,
            Cadence.WEEKLY: self.run_weekly,
            Cadence.PROMOTIONS: self.run_promotions,
        }
        return await runners[Cadence(cadence)]()

    async def _cached_listings(self) -> list[ListingSnapshot]:
        return await self.cache.get_or_fetch(
            "listings", self.config.orchestrator.listing_cache_ttl_seconds, self.catalog.fetch_all
        )

    async def _performance(self, listing_id: str) -> ListingPerformance | None:
        try:
            return await self.catalog.fetch_performance(listing_id)
        except Exception as e:
            logger.error(f"Could not fetch performance for listing {listing_id}: {e}")
            return None

    # --- Hourly --- #

    async def run_hourly(self) -> list[ActionRecord]:
        return await self._run_cadence(Cadence.HOURLY, self._hourly)

    async def _hourly(self) -> list[ActionRecord]:
        running = self.store.running_listing_ids()
        actions = []
        for snapshot in await self._cached_listings():
            if snapshot.id in running:
                logger.info(f"Listing {snapshot.id} has an A/B test running, price left unchanged")
                continue
            decision = self.policy.decide(snapshot, self.config.bounds)
            if decision is None:
                continue
            action = await self.policy.apply(decision, self.catalog)
            if action:
                actions.append(action)
        return actions

    # --- Daily --- #

    async def run_daily(self) -> list[ActionRecord]:
        return await self._run_cadence(Cadence.DAILY, self._daily)

    async def _daily(self) -> list[ActionRecord]:
        snapshots = await self.cache.get_or_fetch(
            "detailed_analytics",
            self.config.orchestrator.listing_cache_ttl_seconds,
            self.metrics.fetch_detailed_analytics,
        )
        actions = []
        actions.extend(await self._advance_experiments(snapshots))
        actions.extend(await self._improve_low_performers(snapshots))
        actions.extend(await self._long_term_pricing(snapshots))
        return actions

    async def _advance_experiments(self, snapshots: list[ListingSnapshot]) -> list[ActionRecord]:
        """Fill the daily experiment slots with listings that have a testable variant set."""
        actions = []
        slots = self.config.experiments.batch_size
        for snapshot in self.experiments.eligible_candidates(snapshots):
            if slots <= 0:
                break
            if self.store.get_experiment(snapshot.id) is None:
                state = await self.experiments.generate_variants(snapshot, self.content_generator)
                if state is None:
                    continue
            slots -= 1
            action = await self.experiments.advance(snapshot.id)
            if action:
                actions.append(action)
        return actions

    async def _improve_low_performers(self, snapshots: list[ListingSnapshot]) -> list[ActionRecord]:
        min_views = self.config.experiments.min_test_views * 2
        low_conversion = self.config.pricing.low_conversion_threshold
        running = self.store.running_listing_ids()
        low_performers = [
            s
            for s in snapshots
            if s.total_views > min_views
            and s.conversion_rate < low_conversion
            and not s.is_experiment_running
            and s.id not in running
        ]
        actions = []
        for snapshot in low_performers[: self.config.orchestrator.content_improvement_cap]:
            action = await self._rewrite_content(snapshot, IMPROVE_INSTRUCTION, ActionType.IMPROVE_CONTENT)
            if action:
                actions.append(action)
        return actions

    async def _rewrite_content(
        self, snapshot: ListingSnapshot, instruction: str, action_type: ActionType
    ) -> ActionRecord | None:
        try:
            draft = await self.content_generator.rewrite(snapshot.title, snapshot.description, instruction)
            fields: dict[str, Any] = {"title": draft.title, "description": draft.description}
            if action_type == ActionType.REFRESH_CONTENT:
                fields["last_refresh"] = self.clock()
            await self.catalog.update_fields(snapshot.id, fields)
        except Exception as e:
            logger.error(f"Content {instruction} failed for listing {snapshot.id}: {e}")
            return None

        logger.info(f"Content of listing {snapshot.id} updated ({instruction})")
        return ActionRecord(
            type=action_type,
            listing_id=snapshot.id,
            before={"title": snapshot.title, "description": snapshot.description},
            after={"title": draft.title, "description": draft.description},
            timestamp=self.clock().isoformat(),
        )

    async def _long_term_pricing(self, snapshots: list[ListingSnapshot]) -> list[ActionRecord]:
        now = self.clock()
        running = self.store.running_listing_ids()
        stable = [
            s
            for s in snapshots
            if s.id not in running
            and self.policy.is_stable(s, self.config.experiments.min_test_views, now)
        ]
        actions = []
        for snapshot in stable:
            try:
                elasticity = await self.metrics.fetch_elasticity(snapshot.id)
            except Exception as e:
                logger.error(f"Could not fetch elasticity for listing {snapshot.id}: {e}")
                continue
            decision = self.policy.decide_long_term(snapshot, elasticity, self.config.bounds)
            if decision is None:
                continue
            action = await self.policy.apply(decision, self.catalog)
            if action:
                actions.append(action)
        return actions

    # --- Weekly --- #

    async def run_weekly(self) -> list[ActionRecord]:
        return await self._run_cadence(Cadence.WEEKLY, self._weekly)

    async def _weekly(self) -> list[ActionRecord]:
        cfg = self.config.orchestrator
        listings = await self.catalog.fetch_all()
        performances = await asyncio.gather(*(self._performance(listing.id) for listing in listings))
        with_performance = [
            (listing, perf) for listing, perf in zip(listings, performances) if perf is not None
        ]

        actions = []
        actions.extend(await self._refresh_old_listings(listings))

        high_demand = [
            listing
            for listing, perf in with_performance
            if perf.views_last_7_days > cfg.high_demand_views_7d
            and perf.conversion_rate > self.config.pricing.high_conversion_threshold
            and (listing.is_on_promotion or self.store.get_promotion(listing.id) is not None)
        ]
        for listing in high_demand[: cfg.promotion_removal_cap]:
            action = await self.promotions.remove(listing.id)
            if action:
                actions.append(action)

        removed = {a.listing_id for a in actions if a.type == ActionType.REMOVE_PROMOTION}
        promo_start = self.clock()
        promo_end = promo_start + timedelta(
            hours=min(cfg.weekly_promotion_hours, self.config.promotions.max_promotion_duration_hours)
        )
        low_demand = [
            listing
            for listing, perf in with_performance
            if cfg.low_demand_min_views_7d < perf.views_last_7_days < cfg.low_demand_max_views_7d
            and perf.conversion_rate < self.config.pricing.low_conversion_threshold
            and listing.id not in removed
            and self.promotions.is_eligible(listing, promo_start, promo_end)
        ]
        for listing in low_demand[: cfg.promotion_apply_cap]:
            action = await self.promotions.apply(
                listing.id,
                self.config.promotions.standard_discount,
                cfg.weekly_promotion_hours,
                now=promo_start,
            )
            if action:
                actions.append(action)

        await self._notify(
            NotificationType.REPORT,
            "Weekly optimization report",
            self._summarize(actions),
            attachment=actions_to_json(actions),
        )
        return actions

    async def _refresh_old_listings(self, listings: list[ListingSnapshot]) -> list[ActionRecord]:
        cfg = self.config.orchestrator
        now = self.clock()
        running = self.store.running_listing_ids()
        old = sorted(
            (
                listing
                for listing in listings
                if listing.age_days(now) > cfg.refresh_min_age_days
                and not listing.is_experiment_running
                and listing.id not in running
            ),
            key=lambda listing: listing.creation_timestamp,
        )
        actions = []
        for listing in old[: cfg.weekly_refresh_cap]:
            action = await self._rewrite_content(listing, REFRESH_INSTRUCTION, ActionType.REFRESH_CONTENT)
            if action:
                actions.append(action)
        return actions

    @staticmethod
    def _summarize(actions: list[ActionRecord]) -> str:
        if not actions:
            return "Weekly optimization completed with no actions."
        counts: dict[str, int] = {}
        for action in actions:
            counts[action.type.value] = counts.get(action.type.value, 0) + 1
        breakdown = ", ".join(f"{name}: {count}" for name, count in sorted(counts.items()))
        return f"Weekly optimization completed with {len(actions)} action(s) ({breakdown})."

    # --- Promotions --- #

    async def run_promotions(self) -> list[ActionRecord]:
        return await self._run_cadence(Cadence.PROMOTIONS, self._promotions)

    async def _promotions(self) -> list[ActionRecord]:
        now = self.clock()
        days = self.config.promotions.history_days
        series = await self.cache.get_or_fetch(
            f"hourly_series:{days}",
            self.config.orchestrator.series_cache_ttl_seconds,
            lambda: self.metrics.fetch_hourly_series(None, days),
        )
        windows = self.promotions.find_low_activity_windows(series)
        listings = await self.catalog.fetch_all()
        await self.store.prune_windows(now)

        actions = await self.promotions.schedule_flash_promotions(windows, listings, now)
        events = self.promotions.check_upcoming_calendar_events(now)
        actions.extend(await self.promotions.schedule_event_promotions(events, listings))

        if actions:
            await self._notify(
                NotificationType.INFO,
                "Promotions scheduled",
                f"{len(actions)} promotion(s) were configured automatically.",
            )
        return actions
