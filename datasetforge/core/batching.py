"""Task planning and sub-batch splitting."""

from __future__ import annotations

import math
import uuid
from typing import Iterable, List, Sequence

from ..errors import ConfigurationError
from ..types import BackendIdentity, GenerationTask
from .prompting import batch_context


def split_sub_batches(entries_to_generate: int, max_requests_per_batch: int) -> List[int]:
    """Divide one batch into at most ``max_requests_per_batch`` request sizes.

    The final chunk absorbs the remainder, so the sizes always sum to
    ``entries_to_generate``.
    """

    if max_requests_per_batch < 1:
        raise ConfigurationError("max_concurrent_requests_per_batch must be >= 1")
    if entries_to_generate <= 0:
        return []
    if entries_to_generate <= max_requests_per_batch:
        return [entries_to_generate]
    size = entries_to_generate // max_requests_per_batch
    sizes = [size] * (max_requests_per_batch - 1)
    sizes.append(entries_to_generate - size * (max_requests_per_batch - 1))
    return sizes


def plan_tasks(
    target_entries: int,
    batch_size: int,
    *,
    backend: BackendIdentity | str,
    model_id: str,
    goal: str,
) -> List[GenerationTask]:
    """Cut ``target_entries`` into dense, ordered batches of ``batch_size``."""

    if target_entries < 0:
        raise ConfigurationError("target_entries must be >= 0")
    if batch_size < 1:
        raise ConfigurationError("batch_size must be >= 1")
    identity = BackendIdentity.coerce(backend)
    total_batches = math.ceil(target_entries / batch_size)
    tasks: List[GenerationTask] = []
    for batch_id in range(total_batches):
        remaining = target_entries - batch_id * batch_size
        tasks.append(
            GenerationTask(
                id=str(uuid.uuid4()),
                batch_id=batch_id,
                entries_to_generate=min(batch_size, remaining),
                backend=identity,
                model_id=model_id,
                goal=goal,
                context=batch_context(batch_id, batch_size, target_entries),
            )
        )
    return tasks


def validate_tasks(tasks: Sequence[GenerationTask]) -> None:
    """Require unique batch ids covering ``[0, len(tasks))`` and positive counts."""

    seen = set()
    for task in tasks:
        if task.batch_id in seen:
            raise ConfigurationError(f"Duplicate batch_id {task.batch_id}")
        seen.add(task.batch_id)
        if task.entries_to_generate < 0:
            raise ConfigurationError(f"Batch {task.batch_id} requests a negative entry count")
    expected = set(range(len(tasks)))
    if seen != expected:
        stray = sorted(seen - expected)
        raise ConfigurationError(f"batch_id values must be dense over [0, {len(tasks)}); unexpected: {stray}")


def total_entries(tasks: Iterable[GenerationTask]) -> int:
    return sum(task.entries_to_generate for task in tasks)


__all__ = ["plan_tasks", "split_sub_batches", "total_entries", "validate_tasks"]
