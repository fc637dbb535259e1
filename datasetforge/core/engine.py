"""Bounded-concurrency batch generation engine."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional

from ..config import GenerationConfig
from ..errors import ConfigurationError, GenerationCancelled
from ..logging_utils import batch_extra
from ..types import BatchOutcome, DatasetEntry, GenerationTask
from .batching import total_entries, validate_tasks
from .cancellation import CancellationToken
from .connectors import GenerationClient
from .parsing import ResponseParser
from .progress import ProgressAggregator, ProgressSink
from .rate_limiter import RateLimiterRegistry
from .results import ResultCollector
from .retry import RetryExecutor, TextGenerator

logger = logging.getLogger(__name__)


@dataclass
class ConcurrencyStats:
    admitted: int = 0
    abandoned: int = 0
    in_flight: int = 0
    peak_in_flight: int = 0


class ConcurrencyController:
    """Admit at most ``max_concurrent_batches`` tasks at a time.

    Cancellation is checked before queueing for a permit, while waiting for it
    and right after obtaining it. The permit is released whatever the outcome.
    """

    def __init__(self, max_concurrent_batches: int) -> None:
        if max_concurrent_batches < 1:
            raise ConfigurationError("max_concurrent_batches must be >= 1")
        self.limit = max_concurrent_batches
        self._semaphore = asyncio.Semaphore(max_concurrent_batches)
        self.stats = ConcurrencyStats()

    async def run(
        self,
        task: GenerationTask,
        cancellation: CancellationToken,
        execute: Callable[[GenerationTask, CancellationToken], Awaitable[BatchOutcome]],
    ) -> BatchOutcome:
        if cancellation.is_cancelled():
            return self._abandon(task)
        try:
            await cancellation.race(self._semaphore.acquire())
        except GenerationCancelled:
            return self._abandon(task)

        self.stats.in_flight += 1
        self.stats.peak_in_flight = max(self.stats.peak_in_flight, self.stats.in_flight)
        try:
            if cancellation.is_cancelled():
                return self._abandon(task)
            self.stats.admitted += 1
            return await execute(task, cancellation)
        finally:
            self.stats.in_flight -= 1
            self._semaphore.release()

    def _abandon(self, task: GenerationTask) -> BatchOutcome:
        self.stats.abandoned += 1
        logger.debug("Batch %s abandoned before dispatch", task.batch_id, extra=batch_extra(task))
        return BatchOutcome.cancellation(task.batch_id)


class ConcurrentGenerator:
    """Fan a list of generation tasks out over the configured backends.

    Example:
        >>> async with ConcurrentGenerator(GenerationConfig()) as generator:
        ...     entries = await generator.run(tasks, cancellation, print)
    """

    def __init__(
        self,
        config: GenerationConfig | None = None,
        *,
        client: TextGenerator | None = None,
        parser: ResponseParser | None = None,
    ) -> None:
        self.config = (config or GenerationConfig()).validate()
        self._owns_client = client is None
        self.client: TextGenerator = client or GenerationClient(
            self.config.backends, timeout=self.config.request_timeout
        )
        self.parser = parser or ResponseParser()
        self.limiters = RateLimiterRegistry(self.config.requests_per_second)
        self.stats: Optional[ConcurrencyStats] = None

    async def run(
        self,
        tasks: Iterable[GenerationTask],
        cancellation: CancellationToken | None = None,
        progress_sink: ProgressSink | None = None,
    ) -> List[DatasetEntry]:
        """Execute every task and return entries ordered by ``batch_id``.

        Failed or cancelled batches contribute nothing; the result is whatever
        succeeded. Only invalid configuration or task lists raise.
        """

        task_list = sorted(tasks, key=lambda task: task.batch_id)
        validate_tasks(task_list)
        for task in task_list:
            if task.backend not in self.limiters:
                raise ConfigurationError(f"No rate limit configured for backend {task.backend.value}")
        cancellation = cancellation or CancellationToken()

        total_batches = len(task_list)
        controller = ConcurrencyController(self.config.max_concurrent_batches)
        executor = RetryExecutor(self.config, self.client, self.limiters, self.parser)
        collector = ResultCollector()
        aggregator = ProgressAggregator(total_batches, collector, sink=progress_sink)
        self.stats = controller.stats

        logger.info(
            "Starting generation: %d batch(es), %d entries requested, %d concurrent batch(es)",
            total_batches,
            total_entries(task_list),
            self.config.max_concurrent_batches,
        )
        start = time.monotonic()
        consumer = asyncio.create_task(aggregator.run(), name="progress-aggregator")
        workers = [
            asyncio.create_task(
                self._run_task(controller, executor, aggregator, task, cancellation),
                name=f"batch-{task.batch_id}",
            )
            for task in task_list
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for worker in workers:
                if not worker.done():
                    worker.cancel()
            aggregator.stop()
            await asyncio.gather(consumer, return_exceptions=True)

        entries = collector.assemble(total_batches)
        snapshot = aggregator.snapshot()
        logger.info(
            "Generation %s in %.2fs: %d entries, %d error(s), %d retries, %d batch(es) cancelled",
            "cancelled" if cancellation.is_cancelled() else "finished",
            time.monotonic() - start,
            len(entries),
            snapshot.errors_count,
            snapshot.retries_count,
            aggregator.cancelled,
        )
        return entries

    async def _run_task(
        self,
        controller: ConcurrencyController,
        executor: RetryExecutor,
        aggregator: ProgressAggregator,
        task: GenerationTask,
        cancellation: CancellationToken,
    ) -> None:
        try:
            outcome = await controller.run(task, cancellation, executor.execute)
        except Exception as exc:  # pragma: no cover - defensive
            logger.exception("Batch %s crashed: %s", task.batch_id, exc, extra=batch_extra(task))
            outcome = BatchOutcome.failure(task.batch_id, exc, elapsed=0.0, retry_count=0)
        if outcome.succeeded:
            logger.info(
                "Batch %s completed with %d entries",
                outcome.batch_id,
                len(outcome.entries),
                extra=batch_extra(task, attempt=outcome.retry_count + 1),
            )
        aggregator.publish(outcome)

    async def aclose(self) -> None:
        if self._owns_client and isinstance(self.client, GenerationClient):
            await self.client.aclose()

    async def __aenter__(self) -> "ConcurrentGenerator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def run_generation(
    tasks: Iterable[GenerationTask],
    config: GenerationConfig | None = None,
    *,
    cancellation: CancellationToken | None = None,
    progress_sink: ProgressSink | None = None,
) -> List[DatasetEntry]:
    """Synchronous wrapper around :meth:`ConcurrentGenerator.run`."""

    async def _run() -> List[DatasetEntry]:
        async with ConcurrentGenerator(config) as generator:
            return await generator.run(tasks, cancellation, progress_sink)

    return asyncio.run(_run())


__all__ = [
    "ConcurrencyController",
    "ConcurrencyStats",
    "ConcurrentGenerator",
    "run_generation",
]
