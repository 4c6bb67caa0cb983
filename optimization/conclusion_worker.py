"""
Background worker that concludes A/B test variants once they are due.

Pending conclusions live in the StateStore, so a restarted worker picks up
where the previous process stopped. Each poll may deliver a conclusion
more than once (e.g. after a crash between the catalog read and the store
write); ExperimentController.conclude is idempotent per listing/variant.
"""

import asyncio
import logging

from models.actions import ActionRecord

from .experiment_controller import ExperimentController

logger = logging.getLogger(__name__)


class ConclusionWorker:
    def __init__(self, controller: ExperimentController, poll_interval_seconds: float | None = None):
        self.controller = controller
        self.poll_interval_seconds = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else controller.config.poll_interval_seconds
        )
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> list[ActionRecord]:
        """Process everything due now."""
        actions = await self.controller.process_due()
        if actions:
            logger.info(f"Concluded {len(actions)} A/B test variant(s)")
        return actions

    async def _run_loop(self):
        logger.info(f"Conclusion worker started (poll every {self.poll_interval_seconds}s)")
        try:
            while not self._stopping.is_set():
                try:
                    await self.run_once()
                except Exception as e:
                    logger.error(f"Error while processing due conclusions: {e}", exc_info=True)
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval_seconds)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Conclusion worker cancelled.")
            raise
        finally:
            logger.info("Conclusion worker stopped.")

    def start(self) -> asyncio.Task:
        """Start polling in the running event loop. Starting twice is a no-op."""
        if self.is_running:
            return self._task
        self._stopping.clear()
        self._task = asyncio.create_task(self._run_loop())
        return self._task

    async def stop(self):
        """Ask the loop to finish its current poll and wait for it."""
        if self._task is None:
            return
        self._stopping.set()
        try:
            await self._task
        finally:
            self._task = None
