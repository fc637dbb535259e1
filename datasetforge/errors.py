"""Exception hierarchy for dataset generation."""

from __future__ import annotations


class DatasetForgeError(Exception):
    """Base class for all errors raised by datasetforge."""


class ConfigurationError(DatasetForgeError, ValueError):
    """Raised when a run cannot start because its configuration is invalid."""


class GenerationCancelled(DatasetForgeError):
    """The run's cancellation signal was observed."""

    def __init__(self, message: str = "Generation cancelled") -> None:
        super().__init__(message)


class BackendError(DatasetForgeError):
    """Transport failure or non-success status from a generation backend."""

    def __init__(self, message: str, *, backend: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.backend = backend
        self.status_code = status_code


class ParseFailure(DatasetForgeError):
    """Generated text could not be decoded into entries.

    Only raised inside the response parser, which always recovers from it.
    """


class RetriesExhausted(DatasetForgeError):
    """Every attempt for a batch failed."""

    def __init__(self, batch_id: int, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Batch {batch_id} failed after {attempts} attempt(s): {last_error}")
        self.batch_id = batch_id
        self.attempts = attempts
        self.last_error = last_error


__all__ = [
    "BackendError",
    "ConfigurationError",
    "DatasetForgeError",
    "GenerationCancelled",
    "ParseFailure",
    "RetriesExhausted",
]
