"""Single-consumer progress aggregation for a generation run."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..types import BatchOutcome, ProgressUpdate
from .results import ResultCollector

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressUpdate], Any]

_STOP = object()


class ProgressAggregator:
    """Fold batch outcomes into cumulative counters.

    Tasks only ever :meth:`publish`; :meth:`run` is the sole writer of the
    counters and of the :class:`ResultCollector`, so no locking is needed.
    Every outcome produces exactly one :class:`ProgressUpdate` for the sink.
    """

    def __init__(
        self,
        total_batches: int,
        collector: ResultCollector,
        *,
        sink: ProgressSink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.total_batches = total_batches
        self.collector = collector
        self.sink = sink
        self._clock = clock
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._started = clock()
        self._completed = 0
        self._entries = 0
        self._errors = 0
        self._retries = 0
        self._cancelled = 0
        self._latest = ProgressUpdate(
            batch_completed=None,
            entries_generated=0,
            errors_count=0,
            retries_count=0,
            concurrent_batches_remaining=total_batches,
            entries_per_second=0.0,
        )

    # ------------------------------------------------------------------
    def publish(self, outcome: BatchOutcome) -> None:
        self._queue.put_nowait(outcome)

    def stop(self) -> None:
        self._queue.put_nowait(_STOP)

    def snapshot(self) -> ProgressUpdate:
        return self._latest

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def cancelled(self) -> int:
        return self._cancelled

    # ------------------------------------------------------------------
    async def run(self) -> None:
        """Consume outcomes until :meth:`stop`; everything queued before it is applied."""

        while True:
            item = await self._queue.get()
            if item is _STOP:
                break
            await self._apply(item)
        logger.debug(
            "Progress aggregator drained: %d/%d batch(es), %d entries, %d error(s), %d retries",
            self._completed,
            self.total_batches,
            self._entries,
            self._errors,
            self._retries,
        )

    async def _apply(self, outcome: BatchOutcome) -> None:
        if not self.collector.record(outcome):
            return
        self._completed += 1
        self._retries += outcome.retry_count
        if outcome.succeeded:
            self._entries += len(outcome.entries)
        elif outcome.failed:
            self._errors += 1
        else:
            self._cancelled += 1

        elapsed = self._clock() - self._started
        update = ProgressUpdate(
            batch_completed=outcome.batch_id if outcome.succeeded else None,
            entries_generated=self._entries,
            errors_count=self._errors,
            retries_count=self._retries,
            concurrent_batches_remaining=max(0, self.total_batches - self._completed),
            entries_per_second=self._entries / elapsed if elapsed > 0 else 0.0,
        )
        self._latest = update
        await self._emit(update)

    async def _emit(self, update: ProgressUpdate) -> None:
        if self.sink is None:
            return
        try:
            result = self.sink(update)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Progress sink raised; continuing")


@dataclass
class GenerationProgress:
    """Consumer-side view of a run, built by folding progress updates."""

    total_batches: int
    target_entries: int
    current_batch: int = 0
    entries_generated: int = 0
    errors_count: int = 0
    retries_count: int = 0
    concurrent_batches: int = 0
    entries_per_second: float = 0.0
    status: str = "pending"
    estimated_completion: str = "Calculating..."

    def apply(self, update: ProgressUpdate) -> None:
        self.entries_generated = update.entries_generated
        self.errors_count = update.errors_count
        self.retries_count = update.retries_count
        self.concurrent_batches = update.concurrent_batches_remaining
        self.entries_per_second = update.entries_per_second
        if update.batch_completed is not None:
            self.current_batch = max(self.current_batch, update.batch_completed + 1)

        if update.entries_per_second > 0:
            remaining = max(0, self.target_entries - update.entries_generated)
            self.estimated_completion = format_eta(remaining / update.entries_per_second)

        if update.entries_generated >= self.target_entries:
            self.status = "completed"
            self.estimated_completion = "Finished"
        else:
            self.status = f"Processing {update.concurrent_batches_remaining} concurrent batches"

    def finish(self, *, cancelled: bool = False) -> None:
        if cancelled:
            self.status = "cancelled"
            return
        if self.entries_generated < self.target_entries:
            self.status = "partial"
            return
        self.status = "completed"
        self.estimated_completion = "Finished"


def format_eta(seconds: float) -> str:
    if seconds < 60.0:
        return f"{seconds:.0f} seconds"
    return f"{seconds / 60.0:.1f} minutes"


__all__ = ["GenerationProgress", "ProgressAggregator", "ProgressSink", "format_eta"]
