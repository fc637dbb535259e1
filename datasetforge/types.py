"""Value types shared by the generation engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import ParseFailure


class BackendIdentity(str, Enum):
    """Rate-limiting domain a task is dispatched to."""

    OLLAMA = "ollama"
    OPENAI = "openai"

    @classmethod
    def coerce(cls, value: "BackendIdentity | str") -> "BackendIdentity":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown backend: {value!r}") from exc


ENTRY_FIELDS = ("instruction", "input", "output")


@dataclass(frozen=True)
class DatasetEntry:
    instruction: str
    input: str
    output: str

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "DatasetEntry":
        if not isinstance(payload, Mapping):
            raise ParseFailure(f"Entry must be a JSON object, got {type(payload).__name__}")
        missing = [name for name in ENTRY_FIELDS if name not in payload]
        if missing:
            raise ParseFailure(f"Entry is missing field(s): {', '.join(missing)}")
        values = {}
        for name in ENTRY_FIELDS:
            value = payload[name]
            values[name] = value if isinstance(value, str) else str(value)
        return cls(**values)

    def to_dict(self) -> Dict[str, str]:
        return {"instruction": self.instruction, "input": self.input, "output": self.output}


@dataclass(frozen=True)
class GenerationTask:
    """One batch of work; immutable once planned."""

    id: str
    batch_id: int
    entries_to_generate: int
    backend: BackendIdentity
    model_id: str
    goal: str
    context: str = ""


class BatchState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (BatchState.SUCCEEDED, BatchState.FAILED, BatchState.CANCELLED)


@dataclass(frozen=True)
class BatchOutcome:
    """Terminal result of one task, produced exactly once."""

    batch_id: int
    state: BatchState
    entries: Tuple[DatasetEntry, ...] = ()
    elapsed: float = 0.0
    retry_count: int = 0
    error: Optional[BaseException] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.state.terminal:
            raise ValueError(f"Batch {self.batch_id} outcome must be terminal, got {self.state.value}")

    @classmethod
    def success(
        cls, batch_id: int, entries, *, elapsed: float, retry_count: int
    ) -> "BatchOutcome":
        return cls(
            batch_id=batch_id,
            state=BatchState.SUCCEEDED,
            entries=tuple(entries),
            elapsed=elapsed,
            retry_count=retry_count,
        )

    @classmethod
    def failure(
        cls, batch_id: int, error: BaseException, *, elapsed: float, retry_count: int
    ) -> "BatchOutcome":
        return cls(
            batch_id=batch_id,
            state=BatchState.FAILED,
            elapsed=elapsed,
            retry_count=retry_count,
            error=error,
        )

    @classmethod
    def cancellation(
        cls,
        batch_id: int,
        error: BaseException | None = None,
        *,
        elapsed: float = 0.0,
        retry_count: int = 0,
    ) -> "BatchOutcome":
        return cls(
            batch_id=batch_id,
            state=BatchState.CANCELLED,
            elapsed=elapsed,
            retry_count=retry_count,
            error=error,
        )

    @property
    def succeeded(self) -> bool:
        return self.state is BatchState.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.state is BatchState.FAILED

    @property
    def cancelled(self) -> bool:
        return self.state is BatchState.CANCELLED


@dataclass(frozen=True)
class ProgressUpdate:
    """Cumulative snapshot emitted once per finalized batch."""

    batch_completed: Optional[int]
    entries_generated: int
    errors_count: int
    retries_count: int
    concurrent_batches_remaining: int
    entries_per_second: float


__all__ = [
    "ENTRY_FIELDS",
    "BackendIdentity",
    "BatchOutcome",
    "BatchState",
    "DatasetEntry",
    "GenerationTask",
    "ProgressUpdate",
]
