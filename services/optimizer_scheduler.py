"""Adaptive loop driving the image optimizer.

After each batch the next delay is picked from how much work the batch
found: a full batch continues immediately to drain the backlog, a partial
batch waits a little, an empty one waits longest, and a failed batch backs
off briefly before retrying. Without `stop()` the loop runs for the life of
the process.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from models.optimizer_models import BatchStats
from services.image_optimizer import ImageOptimizer

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """Delays in seconds for each batch outcome."""

    error_delay: float = 5.0
    partial_delay: float = 10.0
    idle_delay: float = 60.0

    def next_delay(self, stats: Optional[BatchStats], limit: int) -> float:
        """Return the pause before the next batch.

        Args:
            stats: Statistics of the batch that just ran, or None if it failed.
            limit: The limit that batch ran with.
        """
        if stats is None:
            return self.error_delay
        if stats.found == 0:
            return self.idle_delay
        if stats.found < limit:
            return self.partial_delay
        return 0.0


class OptimizerScheduler:
    """Run `ImageOptimizer.run_once` forever with adaptive pauses.

    Args:
        optimizer: Batch processor to drive.
        batch_size: Limit used for every batch after the first.
        initial_batch_size: Limit for the quick first batch after startup.
        policy: Delay policy; defaults to `BackoffPolicy()`.
        stop_event: Event set by `stop()`. Pass the one given to the
            optimizer so a stop also ends the in-flight batch early.
    """

    def __init__(
        self,
        optimizer: ImageOptimizer,
        batch_size: int = 10,
        initial_batch_size: int = 5,
        policy: Optional[BackoffPolicy] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        self._optimizer = optimizer
        self.batch_size = batch_size
        self.initial_batch_size = initial_batch_size
        self.policy = policy or BackoffPolicy()
        self._stop = stop_event if stop_event is not None else asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Ask the loop to exit once the in-flight batch has returned."""
        self._stop.set()

    async def run(self) -> None:
        """Drive batches until `stop()` is called."""
        LOGGER.info("optimizer: starting background worker")
        limit = self.initial_batch_size
        while not self._stop.is_set():
            stats: Optional[BatchStats]
            try:
                stats = await self._optimizer.run_once(limit)
            except Exception:  # pylint: disable=broad-exception-caught
                # Already logged by run_once.
                stats = None
            delay = self.policy.next_delay(stats, limit)
            limit = self.batch_size
            if delay > 0:
                await self._sleep(delay)
        LOGGER.info("optimizer: background worker stopped")

    async def _sleep(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
