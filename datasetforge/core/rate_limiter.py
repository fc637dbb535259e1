"""Per-backend request spacing."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Mapping

from ..errors import ConfigurationError
from ..types import BackendIdentity
from .cancellation import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterStats:
    acquisitions: int = 0
    throttled: int = 0


class RateLimiter:
    """Enforce a minimum interval between grants.

    Callers queue on a lock, so exactly one of them compares against the
    previous grant at a time. The wait is computed from a monotonic deadline
    and slept in one go rather than polled.
    """

    def __init__(self, requests_per_second: float, *, name: str = "default") -> None:
        if requests_per_second <= 0:
            raise ConfigurationError(
                f"requests_per_second for {name} must be > 0, got {requests_per_second}"
            )
        self.name = name
        self.requests_per_second = float(requests_per_second)
        self.min_interval = 1.0 / self.requests_per_second
        self._lock = asyncio.Lock()
        self._last: float | None = None
        self._stats = RateLimiterStats()

    @property
    def stats(self) -> RateLimiterStats:
        return self._stats

    async def acquire(self, cancellation: CancellationToken | None = None) -> None:
        """Return once ``min_interval`` has passed since the previous grant.

        Raises :class:`~datasetforge.errors.GenerationCancelled` without
        granting if the token fires while waiting.
        """

        if cancellation is None:
            cancellation = CancellationToken()
        cancellation.raise_if_cancelled()
        async with self._lock:
            if self._last is not None:
                wait = self._last + self.min_interval - time.monotonic()
                if wait > 0:
                    self._stats.throttled += 1
                    logger.debug("[%s] throttling for %.3fs", self.name, wait)
                    await cancellation.sleep(wait)
            cancellation.raise_if_cancelled()
            self._last = time.monotonic()
            self._stats.acquisitions += 1


class RateLimiterRegistry:
    """One limiter per backend identity; limiters are never shared across backends."""

    def __init__(self, requests_per_second: Mapping[BackendIdentity | str, float]) -> None:
        self._limiters: Dict[BackendIdentity, RateLimiter] = {}
        for backend, rate in requests_per_second.items():
            identity = BackendIdentity.coerce(backend)
            self._limiters[identity] = RateLimiter(rate, name=identity.value)

    def for_backend(self, backend: BackendIdentity | str) -> RateLimiter:
        identity = BackendIdentity.coerce(backend)
        try:
            return self._limiters[identity]
        except KeyError:
            raise ConfigurationError(f"No rate limit configured for backend {identity.value}") from None

    def __contains__(self, backend: object) -> bool:
        try:
            return BackendIdentity.coerce(backend) in self._limiters  # type: ignore[arg-type]
        except ValueError:
            return False


__all__ = ["RateLimiter", "RateLimiterRegistry", "RateLimiterStats"]
