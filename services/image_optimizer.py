"""Batch processor for the background image optimizer.

Pulls a bounded batch of not-yet-optimized IMAGE rows, runs the CPU-bound
transform for each one on a worker pool and persists every outcome on its
own, so one failing row never blocks its siblings. A batch returns only
after every selected row has been handled.

The resampler is pure Python and holds the GIL, so threads only overlap
Pillow's decode and encode. `use_processes=True` runs the transform in a
process pool instead; it then has to be picklable, as
`ImageTransformer.optimize` is.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Awaitable, Callable, Optional

from dal.image_dal import ImageDAL
from models.image_record import ImageRecord
from models.optimizer_models import BatchStats, OptimizedImage, WorkResult
from services.optimizer_metrics import OptimizerMetrics

LOGGER = logging.getLogger(__name__)

Transform = Callable[[bytes, str], OptimizedImage]


class ImageOptimizer:
    """Optimize batches of stored images.

    Args:
        image_dal: Store exposing `list_unoptimized`, the three mark/update
            operations and `record_optimize_failure`.
        transform: Callable turning (data, mime) into an `OptimizedImage`;
            typically `ImageTransformer.optimize`. It runs on the worker pool.
        metrics: Collector receiving each batch's statistics.
        max_workers: Worker pool cap. Defaults to the CPU count.
        max_failures: Failed attempts after which a row is marked optimized
            unchanged. 0 keeps retrying forever.
        use_processes: Run the transform in a process pool rather than threads.
        stop_event: When set, workers stop taking new rows; rows already in
            flight are still persisted and the rest are left for a later batch.
    """

    def __init__(
        self,
        image_dal: ImageDAL,
        transform: Transform,
        metrics: Optional[OptimizerMetrics] = None,
        max_workers: Optional[int] = None,
        max_failures: int = 5,
        use_processes: bool = False,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        self._dal = image_dal
        self._transform = transform
        self.metrics = metrics if metrics is not None else OptimizerMetrics()
        self._max_workers = max_workers
        self._max_failures = max_failures
        self._use_processes = use_processes
        self._stop_event = stop_event

    async def run_once(self, limit: int) -> BatchStats:
        """Run one batch, record metrics and log a summary.

        Raises:
            Exception: Whatever the store raised while listing candidates.
        """
        start = time.perf_counter()
        try:
            stats = await self.optimize_batch(limit)
        except Exception:
            duration = time.perf_counter() - start
            self.metrics.observe_batch(BatchStats(limit=limit), duration, failed=True)
            LOGGER.warning(
                "optimizer: batch finished with errors limit=%d duration_ms=%.1f",
                limit,
                duration * 1000,
                exc_info=True,
            )
            raise

        duration = time.perf_counter() - start
        self.metrics.observe_batch(stats, duration)
        level = logging.INFO if stats.found > 0 else logging.DEBUG
        LOGGER.log(
            level,
            "optimizer: batch finished limit=%d found=%d resized=%d kept=%d empty=%d "
            "decode_errors=%d store_errors=%d abandoned=%d skipped=%d deferred=%d duration_ms=%.1f",
            stats.limit,
            stats.found,
            stats.resized,
            stats.kept,
            stats.empty,
            stats.decode_errors,
            stats.store_errors,
            stats.abandoned,
            stats.skipped,
            stats.deferred,
            duration * 1000,
        )
        return stats

    async def optimize_batch(self, limit: int) -> BatchStats:
        """Optimize up to `limit` eligible images and return the batch statistics."""
        stats = BatchStats(limit=limit)
        records = await self._dal.list_unoptimized(limit)
        stats.found = len(records)
        if not records:
            return stats

        jobs: asyncio.Queue = asyncio.Queue()
        for record in records:
            jobs.put_nowait(record)
        results: asyncio.Queue = asyncio.Queue()

        workers = self.pool_size(len(records))
        with self._executor(workers) as executor:
            tasks = [asyncio.create_task(self._worker(jobs, results, executor)) for _ in range(workers)]
            try:
                for _ in range(len(records)):
                    await self._persist(await results.get(), stats)
                await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                raise
        return stats

    def pool_size(self, batch_len: int) -> int:
        """Return the worker count for a batch of `batch_len` records."""
        available = self._max_workers or os.cpu_count() or 1
        return max(1, min(available, batch_len))

    def _executor(self, workers: int) -> Executor:
        if self._use_processes:
            return ProcessPoolExecutor(max_workers=workers)
        return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="image-optimizer")

    async def _worker(self, jobs: asyncio.Queue, results: asyncio.Queue, executor: Executor) -> None:
        while True:
            try:
                record = jobs.get_nowait()
            except asyncio.QueueEmpty:
                return
            if self._stop_event is not None and self._stop_event.is_set():
                results.put_nowait(WorkResult(image_id=record.id, deferred=True))
                continue
            results.put_nowait(await self._process(record, executor))

    async def _process(self, record: ImageRecord, executor: Executor) -> WorkResult:
        if not record.data:
            return WorkResult(image_id=record.id, empty=True)
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(executor, self._transform, record.data, record.mime)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            return WorkResult(image_id=record.id, error=exc)
        return WorkResult(image_id=record.id, result=result)

    async def _persist(self, outcome: WorkResult, stats: BatchStats) -> None:
        image_id = outcome.image_id

        if outcome.deferred:
            stats.deferred += 1
            return

        if outcome.empty:
            if await self._store_write(
                lambda: self._dal.mark_optimized_empty(image_id), image_id, "mark empty image optimized", stats
            ):
                stats.empty += 1
            return

        if outcome.error is not None:
            stats.decode_errors += 1
            LOGGER.warning("optimizer: skip image %s (decode/encode error): %s", image_id, outcome.error)
            await self._note_failure(image_id, stats)
            return

        result = outcome.result
        if not result.changed:
            if await self._store_write(
                lambda: self._dal.mark_optimized_no_change(image_id), image_id, "mark optimized", stats
            ):
                stats.kept += 1
            return

        if await self._store_write(
            lambda: self._dal.update_optimized_data(image_id, result.data, result.mime),
            image_id,
            "update image",
            stats,
        ):
            stats.resized += 1

    async def _note_failure(self, image_id: str, stats: BatchStats) -> None:
        if self._max_failures <= 0:
            return
        try:
            failures = await self._dal.record_optimize_failure(image_id)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            stats.store_errors += 1
            LOGGER.warning("optimizer: failed to record failure for image %s: %s", image_id, exc)
            return
        if failures < self._max_failures:
            return
        if await self._store_write(
            lambda: self._dal.mark_optimized_no_change(image_id), image_id, "give up on image", stats
        ):
            stats.abandoned += 1
            LOGGER.warning("optimizer: giving up on image %s after %d failed attempts", image_id, failures)

    async def _store_write(
        self,
        write: Callable[[], Awaitable[bool]],
        image_id: str,
        action: str,
        stats: BatchStats,
    ) -> bool:
        """Run one per-record store write; failures are logged and counted, never raised.

        Returns True only when the write changed a row.
        """
        try:
            changed = await write()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            stats.store_errors += 1
            LOGGER.warning("optimizer: failed to %s %s: %s", action, image_id, exc)
            return False
        if not changed:
            stats.skipped += 1
            LOGGER.debug("optimizer: image %s was already optimized or removed", image_id)
            return False
        return True

