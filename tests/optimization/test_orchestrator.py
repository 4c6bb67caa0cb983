import json
import logging
import random
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from connectors.content_generator import TemplateContentGenerator
from connectors.dummy_catalog import DummyCatalog
from connectors.dummy_metrics import DummyMetricsGateway
from connectors.errors import CatalogError
from models.content import VariantBatch
from models.enums import ActionType, Cadence, NotificationType, PromotionReason
from models.experiment import ExperimentState, Variant
from models.promotion import PromotionWindow
from optimization.orchestrator import OptimizationOrchestrator
from tests.mocks import FIXED_NOW, FailingNotifier, listing_record


def build_orchestrator(catalog, notifier, store, elasticities=None, generator=None):
    return OptimizationOrchestrator(
        catalog,
        DummyMetricsGateway(catalog, elasticities=elasticities),
        generator or TemplateContentGenerator(year=2024),
        notifier,
        store=store,
        rng=random.Random(3),
        clock=lambda: FIXED_NOW,
    )


# --- Hourly --- #


@pytest.mark.asyncio
async def test_run_hourly_adjusts_prices(notifier, store):
    catalog = DummyCatalog(
        listings={
            "UP": listing_record("UP", price=100.0, conversion_rate=0.15, views_last_hour=25),
            "DOWN": listing_record("DOWN", price=100.0, conversion_rate=0.02, views_last_hour=35),
            "TESTING": listing_record(
                "TESTING", price=100.0, conversion_rate=0.15, views_last_hour=25, is_experiment_running=True
            ),
            "QUIET": listing_record("QUIET", price=100.0, conversion_rate=0.05, views_last_hour=2),
        }
    )
    orchestrator = build_orchestrator(catalog, notifier, store)

    actions = await orchestrator.run_hourly()

    assert [(a.listing_id, a.type, a.after["price"]) for a in actions] == [
        ("UP", ActionType.PRICE_INCREASE, 105.0),
        ("DOWN", ActionType.PRICE_DECREASE, 95.0),
    ]
    assert (await catalog.fetch_listing("TESTING")).price == 100.0
    assert notifier.sent == []
    assert {a.timestamp for a in actions} == {FIXED_NOW.isoformat()}


@pytest.mark.asyncio
async def test_run_hourly_skips_listing_testing_in_store(notifier, store):
    catalog = DummyCatalog(
        listings={"X": listing_record("X", price=100.0, conversion_rate=0.15, views_last_hour=25)}
    )
    await store.put_experiment(
        ExperimentState(
            listing_id="X",
            variants=[Variant(title="A", description="a"), Variant(title="B", description="b")],
            is_running=True,
        )
    )
    orchestrator = build_orchestrator(catalog, notifier, store)

    assert await orchestrator.run_hourly() == []
    assert (await catalog.fetch_listing("X")).price == 100.0


@pytest.mark.asyncio
async def test_run_hourly_isolates_listing_failures(notifier, store, caplog):
    catalog = DummyCatalog(
        listings={
            "BROKEN": listing_record("BROKEN", conversion_rate=0.15, views_last_hour=25),
            "OK": listing_record("OK", conversion_rate=0.15, views_last_hour=25),
        },
        failing_listings={"BROKEN"},
    )
    orchestrator = build_orchestrator(catalog, notifier, store)

    with caplog.at_level(logging.ERROR):
        actions = await orchestrator.run_hourly()

    assert [a.listing_id for a in actions] == ["OK"]
    assert "Price update failed for listing BROKEN" in caplog.text


@pytest.mark.asyncio
async def test_cadence_failure_returns_empty_and_notifies(notifier, store, caplog):
    catalog = DummyCatalog(listings={})
    catalog.fetch_all = AsyncMock(side_effect=RuntimeError("catalog API down"))
    orchestrator = build_orchestrator(catalog, notifier, store)

    with caplog.at_level(logging.ERROR):
        actions = await orchestrator.run_hourly()

    assert actions == []
    assert "Error during hourly optimization: catalog API down" in caplog.text
    [notification] = notifier.sent
    assert notification.type == NotificationType.ERROR
    assert notification.subject == "Hourly optimization error"
    assert "catalog API down" in notification.message


@pytest.mark.asyncio
async def test_notifier_failure_never_propagates(store, caplog):
    catalog = DummyCatalog(listings={})
    catalog.fetch_all = AsyncMock(side_effect=RuntimeError("boom"))
    orchestrator = build_orchestrator(catalog, FailingNotifier(), store)

    with caplog.at_level(logging.ERROR):
        assert await orchestrator.run_hourly() == []
    assert "Failed to send notification 'Hourly optimization error'" in caplog.text


@pytest.mark.asyncio
async def test_run_dispatches_by_cadence(notifier, store):
    catalog = DummyCatalog(listings={"UP": listing_record("UP", conversion_rate=0.15, views_last_hour=25)})
    orchestrator = build_orchestrator(catalog, notifier, store)
    actions = await orchestrator.run(Cadence.HOURLY)
    assert [a.type for a in actions] == [ActionType.PRICE_INCREASE]


# --- Daily --- #


@pytest.mark.asyncio
async def test_run_daily_respects_batch_caps(notifier, store):
    catalog = DummyCatalog(
        listings={
            f"P{i}": listing_record(f"P{i}", total_views=1000, conversion_rate=0.01, views_last_hour=0)
            for i in range(10)
        }
    )
    orchestrator = build_orchestrator(catalog, notifier, store)

    actions = await orchestrator.run_daily()

    experiment_actions = [a for a in actions if a.type in (ActionType.START_EXPERIMENT, ActionType.APPLY_WINNER)]
    improve_actions = [a for a in actions if a.type == ActionType.IMPROVE_CONTENT]
    assert len(experiment_actions) == 2
    assert len(improve_actions) == 3
    assert {a.listing_id for a in experiment_actions}.isdisjoint(a.listing_id for a in improve_actions)
    assert improve_actions[0].after["title"].endswith("- Optimized")
    assert store.running_listing_ids() == {a.listing_id for a in experiment_actions}


@pytest.mark.asyncio
async def test_run_daily_uses_stored_variants(notifier, store):
    catalog = DummyCatalog(listings={"L1": listing_record("L1", total_views=500, conversion_rate=0.05)})
    orchestrator = build_orchestrator(catalog, notifier, store)
    await orchestrator.experiments.supply_variants(
        "L1", [Variant(title="A", description="a"), Variant(title="B", description="b")]
    )

    actions = await orchestrator.run_daily()

    assert [a.type for a in actions] == [ActionType.START_EXPERIMENT]
    assert actions[0].after["title"] == "A"


@pytest.mark.asyncio
async def test_run_daily_thin_variant_sets_do_not_hold_slots(notifier, store):
    catalog = DummyCatalog(
        listings={
            lid: listing_record(lid, total_views=500, conversion_rate=0.05, views_last_hour=0)
            for lid in ("A", "B", "C")
        }
    )
    generator = TemplateContentGenerator(year=2024)
    template_variants = generator.generate_variants
    asked = []

    async def uneven_variants(topic, count=3):
        asked.append(topic)
        if topic in ("Listing A", "Listing B"):
            return VariantBatch(titles=[f"{topic} v1"], descriptions=["Only one"])
        return await template_variants(topic, count)

    generator.generate_variants = uneven_variants
    orchestrator = build_orchestrator(catalog, notifier, store, generator=generator)

    first = await orchestrator.run_daily()
    second = await orchestrator.run_daily()

    assert [(a.type, a.listing_id) for a in first] == [(ActionType.START_EXPERIMENT, "C")]
    assert second == []
    assert store.get_experiment("A") is None
    assert asked == ["Listing A", "Listing B", "Listing C", "Listing A", "Listing B"]


@pytest.mark.asyncio
async def test_run_daily_long_term_pricing(notifier, store):
    catalog = DummyCatalog(
        listings={
            "RISE": listing_record("RISE", price=100.0, total_views=1000, conversion_rate=0.2),
            "FALL": listing_record("FALL", price=100.0, total_views=1000, conversion_rate=0.2),
            "RECENT": listing_record(
                "RECENT",
                price=100.0,
                total_views=1000,
                conversion_rate=0.2,
                last_price_change=FIXED_NOW - timedelta(days=2),
            ),
            "THIN": listing_record("THIN", price=100.0, total_views=250, conversion_rate=0.2),
        }
    )
    orchestrator = build_orchestrator(
        catalog, notifier, store, elasticities={"RISE": 0.4, "FALL": -0.2, "RECENT": 0.4, "THIN": 0.4}
    )

    actions = await orchestrator.run_daily()

    assert [(a.listing_id, a.type, a.after["price"]) for a in actions] == [
        ("RISE", ActionType.PRICE_UP_ELASTICITY, 110.0),
        ("FALL", ActionType.PRICE_DOWN_ELASTICITY, 90.0),
    ]
    assert actions[0].details["elasticity"] == 0.4


# --- Weekly --- #


@pytest.fixture
def weekly_catalog() -> DummyCatalog:
    young = FIXED_NOW - timedelta(days=10)
    return DummyCatalog(
        listings={
            "OLD1": listing_record("OLD1", creation_timestamp=FIXED_NOW - timedelta(days=200), views_last_hour=0),
            "OLD2": listing_record("OLD2", creation_timestamp=FIXED_NOW - timedelta(days=100), views_last_hour=0),
            "OLD3": listing_record("OLD3", creation_timestamp=FIXED_NOW - timedelta(days=40), views_last_hour=0),
            "HOT": listing_record(
                "HOT",
                price=85.0,
                is_on_promotion=True,
                promotion_percentage=15.0,
                creation_timestamp=young,
            ),
            "COLD": listing_record("COLD", price=80.0, creation_timestamp=young),
        },
        performance={
            "HOT": {"views_last_7_days": 600, "conversion_rate": 0.2},
            "COLD": {"views_last_7_days": 200, "conversion_rate": 0.01},
        },
    )


@pytest.mark.asyncio
async def test_run_weekly(weekly_catalog, notifier, store):
    orchestrator = build_orchestrator(weekly_catalog, notifier, store)

    actions = await orchestrator.run_weekly()

    assert [(a.type, a.listing_id) for a in actions] == [
        (ActionType.REFRESH_CONTENT, "OLD1"),
        (ActionType.REFRESH_CONTENT, "OLD2"),
        (ActionType.REMOVE_PROMOTION, "HOT"),
        (ActionType.APPLY_PROMOTION, "COLD"),
    ]
    assert actions[0].after["title"] == "Listing OLD1 [2024 Edition]"
    assert (await weekly_catalog.fetch_listing("OLD1")).last_refresh == FIXED_NOW

    hot = await weekly_catalog.fetch_listing("HOT")
    assert hot.price == 100.0
    assert not hot.is_on_promotion

    apply = actions[3]
    assert apply.after == {"price": 68.0, "promotion_percentage": 15.0}
    assert apply.details["requested_duration_hours"] == 168
    assert apply.details["duration_hours"] == 72
    assert store.get_promotion("COLD").original_price == 80.0

    [report] = notifier.sent
    assert report.type == NotificationType.REPORT
    assert "4 action(s)" in report.message
    assert len(json.loads(report.attachment)) == 4


@pytest.mark.asyncio
async def test_run_weekly_performance_failure_skips_listing(weekly_catalog, notifier, store, caplog):
    real_fetch = weekly_catalog.fetch_performance

    async def flaky_fetch(listing_id):
        if listing_id == "COLD":
            raise CatalogError("analytics timeout", listing_id)
        return await real_fetch(listing_id)

    weekly_catalog.fetch_performance = flaky_fetch
    orchestrator = build_orchestrator(weekly_catalog, notifier, store)

    with caplog.at_level(logging.ERROR):
        actions = await orchestrator.run_weekly()

    assert ActionType.APPLY_PROMOTION not in [a.type for a in actions]
    assert ActionType.REMOVE_PROMOTION in [a.type for a in actions]
    assert "Could not fetch performance for listing COLD" in caplog.text


@pytest.mark.asyncio
async def test_run_weekly_does_not_stack_on_scheduled_window(weekly_catalog, notifier, store):
    await store.add_window(
        PromotionWindow(
            name="Flash Sale Monday 14h",
            listing_ids=["COLD"],
            discount_percentage=25,
            start_time=FIXED_NOW + timedelta(hours=2),
            end_time=FIXED_NOW + timedelta(hours=5),
            reason=PromotionReason.FLASH,
        )
    )
    orchestrator = build_orchestrator(weekly_catalog, notifier, store)

    actions = await orchestrator.run_weekly()

    assert ActionType.APPLY_PROMOTION not in [a.type for a in actions]
    assert (await weekly_catalog.fetch_listing("COLD")).price == 80.0
    assert store.get_promotion("COLD") is None


@pytest.mark.asyncio
async def test_run_weekly_always_reports(notifier, store):
    catalog = DummyCatalog(listings={})
    orchestrator = build_orchestrator(catalog, notifier, store)

    assert await orchestrator.run_weekly() == []
    [report] = notifier.sent
    assert report.type == NotificationType.REPORT
    assert report.message == "Weekly optimization completed with no actions."
    assert json.loads(report.attachment) == []


# --- Promotions --- #


@pytest.mark.asyncio
async def test_run_promotions(notifier, store):
    catalog = DummyCatalog(listings={"L1": listing_record("L1"), "L2": listing_record("L2")})
    orchestrator = build_orchestrator(catalog, notifier, store)

    actions = await orchestrator.run_promotions()

    reasons = [a.details["reason"] for a in actions]
    assert all(a.type == ActionType.SCHEDULE_PROMOTION for a in actions)
    assert 1 <= reasons.count("flash") <= 3
    assert reasons.count("calendar_event") == 1  # Summer Sale, 11 days after FIXED_NOW
    [info] = notifier.sent
    assert info.type == NotificationType.INFO
    assert info.subject == "Promotions scheduled"


@pytest.mark.asyncio
async def test_run_promotions_caches_hourly_series(notifier, store):
    catalog = DummyCatalog(listings={})
    orchestrator = build_orchestrator(catalog, notifier, store)
    orchestrator.metrics.fetch_hourly_series = AsyncMock(return_value=[])

    await orchestrator.run_promotions()
    await orchestrator.run_promotions()

    orchestrator.metrics.fetch_hourly_series.assert_awaited_once_with(None, 7)
    assert notifier.sent == []
