"""Per-batch execution with bounded, fixed-delay retries."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Protocol, Sequence

from ..config import GenerationConfig
from ..errors import BackendError, GenerationCancelled, RetriesExhausted
from ..logging_utils import batch_extra
from ..types import BackendIdentity, BatchOutcome, BatchState, DatasetEntry, GenerationTask
from .batching import split_sub_batches
from .cancellation import CancellationToken
from .parsing import ResponseParser
from .prompting import build_generation_prompt
from .rate_limiter import RateLimiterRegistry

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    async def generate(
        self,
        backend: BackendIdentity,
        model_id: str,
        prompt: str,
        *,
        timeout: float | None = None,
        cancellation: CancellationToken | None = None,
    ) -> str: ...


class RetryExecutor:
    """Drive one task from ``PENDING`` to a terminal state.

    Each attempt fans the batch out into sub-batches that run concurrently;
    a single failing sub-batch abandons the whole attempt. Failed attempts are
    retried after a fixed ``retry_delay`` until ``max_retries`` is used up.
    """

    def __init__(
        self,
        config: GenerationConfig,
        client: TextGenerator,
        limiters: RateLimiterRegistry,
        parser: ResponseParser | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.limiters = limiters
        self.parser = parser or ResponseParser()

    async def execute(self, task: GenerationTask, cancellation: CancellationToken) -> BatchOutcome:
        start = time.monotonic()
        state = BatchState.PENDING
        failures = 0
        last_error: BaseException | None = None

        while True:
            if cancellation.is_cancelled():
                return self._cancelled(task, state, start, failures)

            state = self._transition(task, state, BatchState.ATTEMPTING)
            try:
                entries = await self._attempt(task, cancellation)
            except GenerationCancelled as exc:
                return self._cancelled(task, state, start, failures, exc)
            except Exception as exc:  # noqa: BLE001
                last_error = _as_backend_error(exc)
                if failures >= self.config.max_retries:
                    self._transition(task, state, BatchState.FAILED)
                    error = RetriesExhausted(task.batch_id, failures + 1, last_error)
                    logger.error("%s", error, extra=batch_extra(task, attempt=failures + 1))
                    return BatchOutcome.failure(
                        task.batch_id, error, elapsed=time.monotonic() - start, retry_count=failures
                    )
                failures += 1
                state = self._transition(task, state, BatchState.RETRYING)
                logger.warning(
                    "Batch %s failed, retrying in %.2fs (attempt %d/%d): %s",
                    task.batch_id,
                    self.config.retry_delay,
                    failures,
                    self.config.max_retries,
                    exc,
                    extra=batch_extra(task, attempt=failures),
                )
                try:
                    await cancellation.sleep(self.config.retry_delay)
                except GenerationCancelled as cancelled:
                    return self._cancelled(task, state, start, failures, cancelled)
                continue

            self._transition(task, state, BatchState.SUCCEEDED)
            return BatchOutcome.success(
                task.batch_id, entries, elapsed=time.monotonic() - start, retry_count=failures
            )

    async def _attempt(self, task: GenerationTask, cancellation: CancellationToken) -> List[DatasetEntry]:
        sizes = split_sub_batches(task.entries_to_generate, self.config.max_concurrent_requests_per_batch)
        if not sizes:
            return []
        pending = [
            asyncio.ensure_future(self._sub_batch(task, size, cancellation))
            for size in sizes
        ]
        try:
            results: Sequence[List[DatasetEntry]] = await asyncio.gather(*pending)
        except BaseException:
            for future in pending:
                future.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise
        entries: List[DatasetEntry] = []
        for chunk in results:
            entries.extend(chunk)
        return entries

    async def _sub_batch(self, task: GenerationTask, size: int, cancellation: CancellationToken) -> List[DatasetEntry]:
        await self.limiters.for_backend(task.backend).acquire(cancellation)
        cancellation.raise_if_cancelled()
        prompt = build_generation_prompt(task.goal, size, task.context)
        text = await self.client.generate(
            task.backend,
            task.model_id,
            prompt,
            timeout=self.config.request_timeout,
            cancellation=cancellation,
        )
        return self.parser.parse(text, size)

    def _cancelled(
        self,
        task: GenerationTask,
        state: BatchState,
        start: float,
        failures: int,
        error: BaseException | None = None,
    ) -> BatchOutcome:
        self._transition(task, state, BatchState.CANCELLED)
        return BatchOutcome.cancellation(
            task.batch_id,
            error or GenerationCancelled(),
            elapsed=time.monotonic() - start,
            retry_count=failures,
        )

    @staticmethod
    def _transition(task: GenerationTask, current: BatchState, target: BatchState) -> BatchState:
        logger.debug(
            "Batch %s: %s -> %s", task.batch_id, current.value, target.value, extra=batch_extra(task)
        )
        return target


def _as_backend_error(exc: BaseException) -> BackendError:
    if isinstance(exc, BackendError):
        return exc
    error = BackendError(f"{type(exc).__name__}: {exc}")
    error.__cause__ = exc
    return error


__all__ = ["RetryExecutor", "TextGenerator"]
