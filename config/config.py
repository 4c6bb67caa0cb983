"""
Configuration classes for the listing optimization engine.
Defines price bounds, policy thresholds and batch caps in a type-safe,
extensible way. Defaults reproduce the production tuning.
"""

import logging
import os
from dataclasses import dataclass, field

from models.promotion import CalendarEvent
from utils.env import load_project_dotenv

logger = logging.getLogger(__name__)


@dataclass
class PriceBounds:
    min_price: float = 25.0
    max_price: float = 150.0
    min_adjustment_factor: float = 0.95  # -5% per hourly step
    max_adjustment_factor: float = 1.05  # +5% per hourly step

    def __post_init__(self):
        if self.min_price > self.max_price:
            raise ValueError(
                f"min_price ({self.min_price}) cannot exceed max_price ({self.max_price})"
            )
        if not 0 < self.min_adjustment_factor <= 1 <= self.max_adjustment_factor:
            raise ValueError("adjustment factors must satisfy 0 < min <= 1 <= max")

    def clamp(self, price: float) -> float:
        return max(self.min_price, min(self.max_price, price))


@dataclass
class PricingPolicyConfig:
    high_conversion_threshold: float = 0.12
    low_conversion_threshold: float = 0.03
    high_view_threshold: int = 20  # views per hour
    decrease_view_multiplier: float = 1.5
    min_price_delta: float = 1.0  # currency units
    long_term_up_factor: float = 1.1
    long_term_down_factor: float = 0.9
    elasticity_threshold: float = 0.1
    recent_price_change_days: int = 7


@dataclass
class ExperimentConfig:
    min_test_views: int = 100
    max_candidate_conversion: float = 0.12  # Strong converters are not tested
    batch_size: int = 2
    min_variants: int = 2
    test_duration_hours: int = 3 * 24
    poll_interval_seconds: float = 300.0


def _default_special_events() -> list[CalendarEvent]:
    return [
        CalendarEvent(name="Summer Sale", month=6, day=21, duration_hours=7 * 24),
        CalendarEvent(name="Black Friday", month=11, day=25, duration_hours=3 * 24),
        CalendarEvent(name="Cyber Monday", month=11, day=28, duration_hours=24),
        CalendarEvent(name="New Year Sale", month=1, day=1, duration_hours=7 * 24),
    ]


@dataclass
class PromotionConfig:
    flash_discount: float = 25.0
    standard_discount: float = 15.0
    special_event_discount: float = 30.0
    max_discount: float = 50.0
    max_promotion_duration_hours: int = 3 * 24
    flash_duration_hours: int = 3
    max_flash_windows: int = 3
    listings_per_flash: int = 3
    low_activity_top_n: int = 5
    night_end_hour: int = 7  # hours in [0, night_end_hour) are never promoted
    event_lookahead_days: int = 14
    history_days: int = 7
    special_events: list[CalendarEvent] = field(default_factory=_default_special_events)


@dataclass
class OrchestratorConfig:
    content_improvement_cap: int = 3
    weekly_refresh_cap: int = 2
    refresh_min_age_days: int = 30
    high_demand_views_7d: int = 500
    low_demand_min_views_7d: int = 100
    low_demand_max_views_7d: int = 300
    promotion_removal_cap: int = 3
    promotion_apply_cap: int = 3
    weekly_promotion_hours: int = 7 * 24
    listing_cache_ttl_seconds: float = 30 * 60
    series_cache_ttl_seconds: float = 30 * 60


@dataclass
class EngineConfig:
    bounds: PriceBounds = field(default_factory=PriceBounds)
    pricing: PricingPolicyConfig = field(default_factory=PricingPolicyConfig)
    experiments: ExperimentConfig = field(default_factory=ExperimentConfig)
    promotions: PromotionConfig = field(default_factory=PromotionConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    state_redis_url: str | None = None  # None keeps engine state in memory
    content_model: str = "gpt-4o-mini"


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring malformed {name}={value!r}; using {default}")
        return default


def load_engine_config() -> EngineConfig:
    """Build an EngineConfig from the project .env / process environment."""
    load_project_dotenv()
    bounds = PriceBounds(
        min_price=_env_float("MIN_LISTING_PRICE", PriceBounds.min_price),
        max_price=_env_float("MAX_LISTING_PRICE", PriceBounds.max_price),
    )
    experiments = ExperimentConfig(
        poll_interval_seconds=_env_float(
            "CONCLUSION_POLL_SECONDS", ExperimentConfig.poll_interval_seconds
        )
    )
    state_redis_url = os.getenv("ENGINE_REDIS_URL") or None
    return EngineConfig(
        bounds=bounds,
        experiments=experiments,
        state_redis_url=state_redis_url,
        content_model=os.getenv("CONTENT_MODEL", EngineConfig.content_model),
    )
