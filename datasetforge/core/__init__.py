"""Core runtime components for datasetforge."""

from .batching import plan_tasks, split_sub_batches, validate_tasks
from .cancellation import CancellationToken
from .connectors import GenerationClient, discover_models
from .engine import ConcurrencyController, ConcurrentGenerator, run_generation
from .parsing import ResponseParser
from .progress import GenerationProgress, ProgressAggregator
from .rate_limiter import RateLimiter, RateLimiterRegistry
from .results import ResultCollector
from .retry import RetryExecutor

__all__ = [
    "CancellationToken",
    "ConcurrencyController",
    "ConcurrentGenerator",
    "GenerationClient",
    "GenerationProgress",
    "ProgressAggregator",
    "RateLimiter",
    "RateLimiterRegistry",
    "ResponseParser",
    "ResultCollector",
    "RetryExecutor",
    "discover_models",
    "plan_tasks",
    "run_generation",
    "split_sub_batches",
    "validate_tasks",
]
