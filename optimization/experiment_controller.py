"""
Experiment controller: runs sequential A/B content tests per listing.

Each listing cycles through its stored variants one at a time. Starting a
variant writes its copy to the catalog and registers a durable conclusion
due after the test duration; the conclusion records the measured
conversion. Once every variant has a result, the best one is applied
permanently.
"""

import logging
from collections.abc import Callable, Iterable, Iterator
from datetime import datetime, timedelta
from itertools import islice
from typing import Any

from config.config import ExperimentConfig
from connectors.state_store import StateStore
from models.actions import ActionRecord
from models.enums import ActionType, ExperimentStatus
from models.experiment import ExperimentState, PendingConclusion, Variant, conclusion_key
from models.listing import ListingSnapshot

logger = logging.getLogger(__name__)


class ExperimentController:
    def __init__(
        self,
        catalog: Any,
        store: StateStore,
        config: ExperimentConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.catalog = catalog
        self.store = store
        self.config = config or ExperimentConfig()
        self.clock = clock

    def eligible_candidates(self, snapshots: Iterable[ListingSnapshot]) -> Iterator[ListingSnapshot]:
        """
        Listings worth testing, in input order: enough traffic, weak
        conversion, nothing running, no finished experiment and no stored
        variant set too small to test.
        """
        running = self.store.running_listing_ids()
        for snapshot in snapshots:
            if snapshot.total_views <= self.config.min_test_views:
                continue
            if snapshot.conversion_rate >= self.config.max_candidate_conversion:
                continue
            if snapshot.is_experiment_running or snapshot.id in running:
                continue
            state = self.store.get_experiment(snapshot.id)
            if state is not None and (state.is_terminal or len(state.variants) < self.config.min_variants):
                continue
            yield snapshot

    def select_candidates(self, snapshots: Iterable[ListingSnapshot]) -> list[ListingSnapshot]:
        """Eligible candidates capped to the batch size."""
        return list(islice(self.eligible_candidates(snapshots), self.config.batch_size))

    async def supply_variants(self, listing_id: str, variants: list[Variant]) -> ExperimentState:
        """Register a fresh variant set for a listing. Rejected while a test runs."""
        existing = self.store.get_experiment(listing_id)
        if existing is not None and existing.is_running:
            raise ValueError(f"Experiment for listing {listing_id} is running; variants not replaced")
        if len(variants) < self.config.min_variants:
            logger.info(
                f"Listing {listing_id} has {len(variants)} variant(s); "
                f"at least {self.config.min_variants} are needed to test"
            )
        state = ExperimentState(listing_id=listing_id, variants=list(variants))
        await self.store.put_experiment(state)
        return state

    async def generate_variants(
        self, snapshot: ListingSnapshot, generator: Any, count: int = 3
    ) -> ExperimentState | None:
        """
        Ask the content generator for variants and register them. A batch
        too small to test is discarded so the listing can be asked again.
        """
        if snapshot.id in self.store.running_listing_ids():
            return None
        try:
            batch = await generator.generate_variants(snapshot.title or snapshot.id, count)
        except Exception as e:
            logger.error(f"Variant generation failed for listing {snapshot.id}: {e}")
            return None
        variants = [Variant(title=t, description=d) for t, d in batch.pairs()]
        if len(variants) < self.config.min_variants:
            logger.info(f"Only {len(variants)} variant(s) generated for listing {snapshot.id}, not testing it yet")
            return None
        return await self.supply_variants(snapshot.id, variants)

    async def advance(self, listing_id: str) -> ActionRecord | None:
        """Start the next untested variant, or apply the winner once all are tested."""
        state = self.store.get_experiment(listing_id)
        if state is None or len(state.variants) < self.config.min_variants:
            logger.info(f"Not enough variants to test listing {listing_id}")
            return None
        if state.is_terminal:
            logger.info(f"Experiment for listing {listing_id} already {state.status.value}")
            return None
        if state.is_running:
            logger.info(f"Listing {listing_id} is already testing variant #{state.current_variant_index}")
            return None

        if state.is_exhausted:
            return await self._apply_winner(state)
        return await self._start_variant(state)

    async def _apply_winner(self, state: ExperimentState) -> ActionRecord | None:
        best = state.best_result()
        if best is None:
            logger.info(f"No test results recorded for listing {state.listing_id}")
            return None
        try:
            await self.catalog.update_fields(
                state.listing_id,
                {"title": best.title, "description": best.description, "is_experiment_running": False},
            )
        except Exception as e:
            logger.error(f"Could not apply winning variant to listing {state.listing_id}: {e}")
            return None

        state.status = ExperimentStatus.CONCLUDED
        state.winner = best
        state.updated_at = self.clock()
        await self.store.put_experiment(state)
        logger.info(
            f"Best variant #{best.variant_index} applied to listing {state.listing_id} "
            f"(conversion {best.conversion:.4f})"
        )
        return ActionRecord(
            type=ActionType.APPLY_WINNER,
            listing_id=state.listing_id,
            after={"title": best.title, "description": best.description},
            details={
                "variant_index": best.variant_index,
                "conversion": best.conversion,
                "variants_tested": state.tested_count,
            },
            timestamp=self.clock().isoformat(),
        )

    async def _start_variant(self, state: ExperimentState) -> ActionRecord | None:
        index = state.tested_count
        variant = state.variants[index]
        try:
            current = await self.catalog.fetch_listing(state.listing_id)
            await self.catalog.update_fields(
                state.listing_id,
                {"title": variant.title, "description": variant.description, "is_experiment_running": True},
            )
        except Exception as e:
            logger.error(f"Could not start variant #{index} for listing {state.listing_id}: {e}")
            return None

        now = self.clock()
        due_at = now + timedelta(hours=self.config.test_duration_hours)
        state.is_running = True
        state.current_variant_index = index
        state.status = ExperimentStatus.RUNNING
        state.updated_at = now
        await self.store.put_experiment(state)
        await self.store.add_conclusion(
            PendingConclusion(listing_id=state.listing_id, variant_index=index, due_at=due_at)
        )
        logger.info(f"A/B test started for listing {state.listing_id}: variant #{index}, due {due_at.isoformat()}")
        return ActionRecord(
            type=ActionType.START_EXPERIMENT,
            listing_id=state.listing_id,
            before={"title": current.title, "description": current.description},
            after={"title": variant.title, "description": variant.description},
            details={"variant_index": index, "due_at": due_at.isoformat()},
            timestamp=self.clock().isoformat(),
        )

    async def conclude(self, listing_id: str, variant_index: int) -> ActionRecord | None:
        """
        Record the measured conversion for a running variant.

        Safe to call more than once for the same (listing, variant): a
        conclusion that was already recorded only drops its pending entry.
        A failed performance fetch leaves the experiment running and marks
        the pending entry failed; ``cancel`` is then the way out.
        """
        key = conclusion_key(listing_id, variant_index)
        state = self.store.get_experiment(listing_id)
        if (
            state is None
            or state.has_result_for(variant_index)
            or not state.is_running
            or state.current_variant_index != variant_index
        ):
            logger.info(f"Conclusion {key} has nothing left to do")
            await self.store.remove_conclusion(key)
            return None

        try:
            performance = await self.catalog.fetch_performance(listing_id)
        except Exception as e:
            logger.error(f"Could not conclude A/B test {key}: {e}")
            await self.store.mark_conclusion_failed(key, str(e))
            return None

        result = state.record_result(variant_index, performance.conversion_rate)
        await self.store.put_experiment(state)
        await self.store.remove_conclusion(key)

        try:
            await self.catalog.update_fields(listing_id, {"is_experiment_running": False})
        except Exception as e:
            logger.error(f"Could not clear the testing flag for listing {listing_id}: {e}")

        logger.info(
            f"A/B test finished for listing {listing_id}, variant #{variant_index}: "
            f"conversion {result.conversion:.4f}"
        )
        return ActionRecord(
            type=ActionType.CONCLUDE_EXPERIMENT,
            listing_id=listing_id,
            details={
                "variant_index": variant_index,
                "conversion": result.conversion,
                "tested_count": state.tested_count,
            },
            timestamp=self.clock().isoformat(),
        )

    async def cancel(self, listing_id: str) -> ActionRecord | None:
        """Abort a listing's experiment and drop its pending conclusions."""
        state = self.store.get_experiment(listing_id)
        if state is None or state.is_terminal:
            return None

        dropped = [c.key for c in self.store.conclusions_for(listing_id)]
        for key in dropped:
            await self.store.remove_conclusion(key)
        was_running = state.current_variant_index
        state.is_running = False
        state.current_variant_index = None
        state.status = ExperimentStatus.CANCELLED
        state.updated_at = self.clock()
        await self.store.put_experiment(state)

        try:
            await self.catalog.update_fields(listing_id, {"is_experiment_running": False})
        except Exception as e:
            logger.error(f"Could not clear the testing flag for listing {listing_id}: {e}")

        logger.info(f"Experiment for listing {listing_id} cancelled ({len(dropped)} pending conclusion(s) dropped)")
        return ActionRecord(
            type=ActionType.CANCEL_EXPERIMENT,
            listing_id=listing_id,
            details={
                "running_variant_index": was_running,
                "tested_count": state.tested_count,
                "dropped_conclusions": dropped,
            },
            timestamp=self.clock().isoformat(),
        )

    async def process_due(self, now: datetime | None = None) -> list[ActionRecord]:
        """Conclude every pending variant whose test period has elapsed."""
        now = now or self.clock()
        actions = []
        for pending in self.store.due_conclusions(now):
            action = await self.conclude(pending.listing_id, pending.variant_index)
            if action:
                actions.append(action)
        return actions
