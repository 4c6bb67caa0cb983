"""
Module: connectors.state_store

Durable engine state: experiment states, pending experiment conclusions,
active promotion records and scheduled promotion windows.

With a Redis client every mutation is written through to one Redis hash
per collection (``<prefix>experiments`` etc.), each field holding the
item's JSON. Reads are served from an in-memory mirror filled by
``load()``. Without a client the state lives in memory only.
"""

import logging
from datetime import datetime

import redis.asyncio as redis
from pydantic import BaseModel, Field

from models.enums import ConclusionStatus
from models.experiment import ExperimentState, PendingConclusion
from models.promotion import PromotionRecord, PromotionWindow

logger = logging.getLogger(__name__)

STATE_KEY_PREFIX = "engine_state:"

_COLLECTIONS: dict[str, type[BaseModel]] = {
    "experiments": ExperimentState,
    "conclusions": PendingConclusion,
    "promotions": PromotionRecord,
    "windows": PromotionWindow,
}


class EngineState(BaseModel):
    """In-memory mirror of the stored collections."""

    experiments: dict[str, ExperimentState] = Field(default_factory=dict)
    conclusions: dict[str, PendingConclusion] = Field(default_factory=dict)
    promotions: dict[str, PromotionRecord] = Field(default_factory=dict)
    windows: dict[str, PromotionWindow] = Field(default_factory=dict)
    version: int = 0  # Bumped on every write


class StateStore:
    """
    State store for the experiment controller and promotion scheduler.
    """

    def __init__(self, client: redis.Redis | None = None, key_prefix: str = STATE_KEY_PREFIX):
        self.client = client
        self.key_prefix = key_prefix
        self.state = EngineState()

    @classmethod
    async def connect(cls, url: str, key_prefix: str = STATE_KEY_PREFIX) -> "StateStore":
        """Open a Redis-backed store and load whatever it already holds."""
        client = redis.Redis.from_url(url, decode_responses=True)
        await client.ping()
        logger.info(f"Connected to Redis state store at {url}")
        store = cls(client, key_prefix)
        await store.load()
        return store

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()

    def _key(self, collection: str) -> str:
        return f"{self.key_prefix}{collection}"

    async def load(self) -> None:
        """Replace the in-memory mirror with the stored collections."""
        if self.client is None:
            return
        for collection, model in _COLLECTIONS.items():
            raw = await self.client.hgetall(self._key(collection))
            items = {item_id: model.model_validate_json(value) for item_id, value in raw.items()}
            setattr(self.state, collection, items)
        logger.info(
            f"Loaded engine state: {len(self.state.experiments)} experiments, "
            f"{len(self.state.conclusions)} pending conclusions"
        )

    async def _write(self, collection: str, item_id: str, item: BaseModel) -> None:
        self.state.version += 1
        if self.client is not None:
            await self.client.hset(self._key(collection), item_id, item.model_dump_json())

    async def _delete(self, collection: str, *item_ids: str) -> None:
        self.state.version += 1
        if self.client is not None:
            await self.client.hdel(self._key(collection), *item_ids)

    # --- Experiments --- #

    def get_experiment(self, listing_id: str) -> ExperimentState | None:
        return self.state.experiments.get(listing_id)

    async def put_experiment(self, experiment: ExperimentState) -> None:
        self.state.experiments[experiment.listing_id] = experiment
        await self._write("experiments", experiment.listing_id, experiment)

    def running_listing_ids(self) -> set[str]:
        return {lid for lid, exp in self.state.experiments.items() if exp.is_running}

    # --- Conclusions --- #

    async def add_conclusion(self, conclusion: PendingConclusion) -> None:
        self.state.conclusions[conclusion.key] = conclusion
        await self._write("conclusions", conclusion.key, conclusion)

    def get_conclusion(self, key: str) -> PendingConclusion | None:
        return self.state.conclusions.get(key)

    async def remove_conclusion(self, key: str) -> None:
        if self.state.conclusions.pop(key, None) is not None:
            await self._delete("conclusions", key)

    def conclusions_for(self, listing_id: str) -> list[PendingConclusion]:
        return [c for c in self.state.conclusions.values() if c.listing_id == listing_id]

    def due_conclusions(self, now: datetime) -> list[PendingConclusion]:
        """Pending (not failed) conclusions due at or before ``now``, oldest first."""
        due = [
            c
            for c in self.state.conclusions.values()
            if c.status == ConclusionStatus.PENDING and c.due_at <= now
        ]
        return sorted(due, key=lambda c: c.due_at)

    async def mark_conclusion_failed(self, key: str, error: str) -> None:
        conclusion = self.state.conclusions.get(key)
        if conclusion is None:
            return
        conclusion.status = ConclusionStatus.FAILED
        conclusion.last_error = error
        await self._write("conclusions", key, conclusion)

    # --- Promotions --- #

    def get_promotion(self, listing_id: str) -> PromotionRecord | None:
        return self.state.promotions.get(listing_id)

    async def put_promotion(self, record: PromotionRecord) -> None:
        self.state.promotions[record.listing_id] = record
        await self._write("promotions", record.listing_id, record)

    async def pop_promotion(self, listing_id: str) -> PromotionRecord | None:
        record = self.state.promotions.pop(listing_id, None)
        if record is not None:
            await self._delete("promotions", listing_id)
        return record

    async def add_window(self, window: PromotionWindow) -> None:
        self.state.windows[window.id] = window
        await self._write("windows", window.id, window)

    async def pop_window(self, window_id: str) -> PromotionWindow | None:
        window = self.state.windows.pop(window_id, None)
        if window is not None:
            await self._delete("windows", window_id)
        return window

    def windows_for(self, listing_id: str) -> list[PromotionWindow]:
        return [w for w in self.state.windows.values() if listing_id in w.listing_ids]

    async def prune_windows(self, now: datetime) -> int:
        """Forget windows that have already ended."""
        expired = [wid for wid, w in self.state.windows.items() if w.end_time <= now]
        for wid in expired:
            del self.state.windows[wid]
        if expired:
            await self._delete("windows", *expired)
        return len(expired)
