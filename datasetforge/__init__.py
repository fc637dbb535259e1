"""Concurrent generation of fine-tuning datasets from LLM backends."""

from .config import GenerationConfig, load_config
from .core import CancellationToken, ConcurrentGenerator, plan_tasks, run_generation
from .errors import (
    BackendError,
    ConfigurationError,
    DatasetForgeError,
    GenerationCancelled,
    RetriesExhausted,
)
from .types import BackendIdentity, BatchOutcome, DatasetEntry, GenerationTask, ProgressUpdate

__version__ = "0.1.0"

__all__ = [
    "BackendError",
    "BackendIdentity",
    "BatchOutcome",
    "CancellationToken",
    "ConcurrentGenerator",
    "ConfigurationError",
    "DatasetEntry",
    "DatasetForgeError",
    "GenerationCancelled",
    "GenerationConfig",
    "GenerationTask",
    "ProgressUpdate",
    "RetriesExhausted",
    "load_config",
    "plan_tasks",
    "run_generation",
]
