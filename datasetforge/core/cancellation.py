"""Cooperative, broadcast cancellation shared by every task in a run."""

from __future__ import annotations

import asyncio
import signal
from typing import Awaitable, Iterable, Set, TypeVar

from ..errors import GenerationCancelled

T = TypeVar("T")


class CancellationToken:
    """One-way flag: once cancelled it stays cancelled and wakes every waiter."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._installed = False
        self._abandoned: Set[asyncio.Future] = set()

    def install_signal_handlers(self, signals: Iterable[int] | None = None) -> None:
        loop = asyncio.get_running_loop()
        if self._installed:
            return
        self._installed = True
        targets = list(signals) if signals is not None else [signal.SIGINT, signal.SIGTERM]
        for sig in targets:
            try:
                loop.add_signal_handler(sig, self.cancel)
            except NotImplementedError:  # pragma: no cover - windows fallback
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(self.cancel))

    def cancel(self) -> None:
        if not self._event.is_set():
            self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first."""

        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise GenerationCancelled()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        When cancellation wins the pending work is cancelled and left to unwind
        in the background; the caller gets :class:`GenerationCancelled` at once.
        """

        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise GenerationCancelled()

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise

        if work in done:
            waiter.cancel()
            return work.result()

        work.cancel()
        self._abandoned.add(work)
        work.add_done_callback(self._forget)
        raise GenerationCancelled()

    def _forget(self, future: asyncio.Future) -> None:
        self._abandoned.discard(future)
        if not future.cancelled():
            future.exception()


__all__ = ["CancellationToken"]
