"""
Demo script for the listing optimization engine.

Runs every cadence once against the dummy catalog, synthetic metrics and
the template content generator, then simulates the passage of the A/B
test period so the conclusion worker has something to conclude.

Set ENGINE_REDIS_URL (e.g. redis://localhost:6379/3) to keep engine state
in Redis; otherwise it stays in memory.
"""

import asyncio
import random
from datetime import datetime, timedelta

from config.config import load_engine_config
from connectors.content_generator import TemplateContentGenerator
from connectors.dummy_catalog import DummyCatalog
from connectors.dummy_metrics import DummyMetricsGateway
from connectors.notifier import LogNotifier
from connectors.state_store import StateStore
from models.experiment import Variant
from optimization.orchestrator import OptimizationOrchestrator
from utils.logger import get_logger

logger = get_logger("demos.optimization_engine")


def _log_actions(label: str, actions):
    logger.info(f"{label}: {len(actions)} action(s)")
    for action in actions:
        logger.info(f"  {action.type.value:<22} {action.listing_id or '-':<6} {action.after or action.details}")


async def run_optimization_demo():
    logger.info("--- Listing Optimization Engine Demo ---")
    config = load_engine_config()
    catalog = DummyCatalog()
    metrics = DummyMetricsGateway(catalog, elasticities={"L400": 0.25, "L200": -0.3})
    notifier = LogNotifier()
    store = await StateStore.connect(config.state_redis_url) if config.state_redis_url else StateStore()
    orchestrator = OptimizationOrchestrator(
        catalog,
        metrics,
        TemplateContentGenerator(),
        notifier,
        config=config,
        store=store,
        rng=random.Random(7),
    )

    await orchestrator.experiments.supply_variants(
        "L200",
        [
            Variant(title="SEO Outlines in 60 Seconds", description="Ranked outlines built from your keyword."),
            Variant(title="Blog Outline Generator Pro", description="Structured H2/H3 outlines for long posts."),
        ],
    )

    _log_actions("Hourly", await orchestrator.run_hourly())
    _log_actions("Daily", await orchestrator.run_daily())
    _log_actions("Weekly", await orchestrator.run_weekly())
    _log_actions("Promotions", await orchestrator.run_promotions())

    # Pretend the test period has elapsed and let the worker conclude.
    later = datetime.now() + timedelta(hours=config.experiments.test_duration_hours + 1)
    _log_actions("Conclusions", await orchestrator.experiments.process_due(later))

    logger.info(f"Notifications sent: {len(notifier.sent)}")
    await store.close()
    logger.info("--- Listing Optimization Engine Demo Finished ---")


if __name__ == "__main__":
    asyncio.run(run_optimization_demo())
