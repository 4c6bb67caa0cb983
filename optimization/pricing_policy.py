"""
Pricing policy: maps a listing snapshot to a price decision.

Two variants share the same clamping and application path:
- the hourly rule reacts to demand (views per hour) and conversion,
- the long-term rule follows a price-elasticity estimate for stable listings.
"""

import logging
from datetime import datetime, timedelta
from collections.abc import Callable
from typing import Any

from config.config import PriceBounds, PricingPolicyConfig
from models.actions import ActionRecord
from models.enums import ActionType
from models.listing import ListingSnapshot
from models.pricing import PriceDecision
from utils.money import round_price

logger = logging.getLogger(__name__)


class PricingPolicy:
    """
    Decision functions for price adjustments plus the single catalog write
    that applies them.
    """

    def __init__(
        self,
        config: PricingPolicyConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or PricingPolicyConfig()
        self.clock = clock

    def decide(self, snapshot: ListingSnapshot, bounds: PriceBounds) -> PriceDecision | None:
        """Hourly rule: increase on strong demand, decrease on weak conversion."""
        cfg = self.config
        if snapshot.is_experiment_running:
            logger.info(f"Listing {snapshot.id} has an A/B test running, price left unchanged")
            return None

        price = snapshot.price
        if (
            snapshot.conversion_rate > cfg.high_conversion_threshold
            and snapshot.views_last_hour > cfg.high_view_threshold
        ):
            new_price = round_price(bounds.clamp(price * bounds.max_adjustment_factor))
            if new_price > price + cfg.min_price_delta:
                return PriceDecision(
                    listing_id=snapshot.id,
                    action=ActionType.PRICE_INCREASE,
                    old_price=price,
                    new_price=new_price,
                    reason="high_conversion",
                )
        elif (
            snapshot.views_last_hour > cfg.high_view_threshold * cfg.decrease_view_multiplier
            and snapshot.conversion_rate < cfg.low_conversion_threshold
        ):
            new_price = round_price(bounds.clamp(price * bounds.min_adjustment_factor))
            if new_price < price - cfg.min_price_delta:
                return PriceDecision(
                    listing_id=snapshot.id,
                    action=ActionType.PRICE_DECREASE,
                    old_price=price,
                    new_price=new_price,
                    reason="many_views_low_conversion",
                )
        return None

    def is_stable(self, snapshot: ListingSnapshot, min_test_views: int, now: datetime | None = None) -> bool:
        """Eligible for the long-term rule: enough traffic, no recent change, not testing."""
        if snapshot.is_experiment_running or snapshot.total_views <= min_test_views * 3:
            return False
        if snapshot.last_price_change is None:
            return True
        now = now or self.clock()
        return now - snapshot.last_price_change > timedelta(days=self.config.recent_price_change_days)

    def decide_long_term(
        self,
        snapshot: ListingSnapshot,
        elasticity: float | None,
        bounds: PriceBounds,
    ) -> PriceDecision | None:
        """Follow the long-term elasticity estimate; hold inside the neutral band."""
        cfg = self.config
        if snapshot.is_experiment_running:
            return None
        if elasticity is None:
            logger.info(f"Not enough history to optimize the price of listing {snapshot.id}")
            return None

        price = snapshot.price
        if elasticity > cfg.elasticity_threshold:
            action, factor = ActionType.PRICE_UP_ELASTICITY, cfg.long_term_up_factor
        elif elasticity < -cfg.elasticity_threshold:
            action, factor = ActionType.PRICE_DOWN_ELASTICITY, cfg.long_term_down_factor
        else:
            logger.info(f"Listing {snapshot.id} held at {price} (neutral elasticity {elasticity:.3f})")
            return None

        new_price = round_price(bounds.clamp(price * factor))
        if new_price == price:
            logger.info(f"Listing {snapshot.id} already at its price bound ({price})")
            return None
        return PriceDecision(
            listing_id=snapshot.id,
            action=action,
            old_price=price,
            new_price=new_price,
            reason="long_term_elasticity",
            elasticity=elasticity,
        )

    async def apply(self, decision: PriceDecision, catalog: Any) -> ActionRecord | None:
        """Write the decided price. Returns None (and logs) if the catalog rejects it."""
        try:
            await catalog.set_price(decision.listing_id, decision.new_price)
        except Exception as e:
            logger.error(
                f"Price update failed for listing {decision.listing_id} "
                f"({decision.old_price} -> {decision.new_price}): {e}"
            )
            return None

        logger.info(
            f"Listing {decision.listing_id} price {decision.old_price} -> {decision.new_price} "
            f"({decision.reason})"
        )
        details: dict[str, Any] = {"reason": decision.reason}
        if decision.elasticity is not None:
            details["elasticity"] = decision.elasticity
        return ActionRecord(
            type=decision.action,
            listing_id=decision.listing_id,
            before={"price": decision.old_price},
            after={"price": decision.new_price},
            details=details,
            timestamp=self.clock().isoformat(),
        )
