from __future__ import annotations

import asyncio
import json
import re
import time
from typing import Dict, List, Optional, Tuple

from datasetforge.config import GenerationConfig
from datasetforge.errors import BackendError
from datasetforge.types import BackendIdentity, GenerationTask

_COUNT_RE = re.compile(r"Generate exactly (\d+)")


class StubGenerator:
    """In-memory backend: answers with numbered entries tagged by model id."""

    def __init__(
        self,
        *,
        failures: Optional[Dict[str, int]] = None,
        delays: Optional[Dict[str, float]] = None,
        default_delay: float = 0.0,
        hang: Tuple[str, ...] = (),
    ) -> None:
        self.failures = dict(failures or {})
        self.delays = dict(delays or {})
        self.default_delay = default_delay
        self.hang = set(hang)
        self.calls: List[Tuple[str, float]] = []
        self.active = 0
        self.peak = 0
        self._serial = 0

    async def generate(self, backend, model_id, prompt, *, timeout=None, cancellation=None):
        self.calls.append((model_id, time.monotonic()))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            work = self._answer(model_id, prompt)
            if cancellation is not None:
                return await cancellation.race(work)
            return await work
        finally:
            self.active -= 1

    async def _answer(self, model_id: str, prompt: str) -> str:
        if model_id in self.hang:
            await asyncio.Event().wait()
        delay = self.delays.get(model_id, self.default_delay)
        if delay:
            await asyncio.sleep(delay)
        remaining = self.failures.get(model_id, 0)
        if remaining:
            self.failures[model_id] = remaining - 1
            raise BackendError(f"{model_id} unavailable", backend="ollama", status_code=503)
        match = _COUNT_RE.search(prompt)
        count = int(match.group(1)) if match else 1
        entries = []
        for _ in range(count):
            self._serial += 1
            entries.append(
                {
                    "instruction": f"{model_id} instruction {self._serial}",
                    "input": "",
                    "output": f"{model_id} output {self._serial}",
                }
            )
        return "Here you go:\n" + json.dumps(entries)

    def calls_for(self, model_id: str) -> List[float]:
        return [stamp for name, stamp in self.calls if name == model_id]


def make_task(
    batch_id: int,
    entries: int = 10,
    *,
    model_id: str | None = None,
    backend: BackendIdentity = BackendIdentity.OLLAMA,
) -> GenerationTask:
    return GenerationTask(
        id=f"task-{batch_id}",
        batch_id=batch_id,
        entries_to_generate=entries,
        backend=backend,
        model_id=model_id or f"model-{batch_id}",
        goal="Teach a model to summarise support tickets",
        context=f"batch {batch_id}",
    )


def make_config(**overrides) -> GenerationConfig:
    values = dict(
        max_concurrent_batches=2,
        max_concurrent_requests_per_batch=1,
        requests_per_second={BackendIdentity.OLLAMA: 1000, BackendIdentity.OPENAI: 1000},
        max_retries=3,
        retry_delay=0.01,
        request_timeout=5.0,
    )
    values.update(overrides)
    return GenerationConfig(**values)
