"""Configuration loading and validation for datasetforge."""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Tuple

import yaml

from .errors import ConfigurationError
from .types import BackendIdentity


PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_PATH = CONFIG_DIR / "config.yaml"
ENV_CONFIG_PATH = "DATASETFORGE_CONFIG"


DEFAULT_CONFIG: Dict[str, Any] = {
    "engine": {
        "max_concurrent_batches": 4,
        "max_concurrent_requests_per_batch": 3,
        "requests_per_second": {
            "ollama": 10,
            "openai": 60,
        },
        "max_retries": 3,
        "retry_delay": 1.0,
        "request_timeout": 30.0,
    },
    "backends": {
        "ollama_url": "http://localhost:11434",
        "openai_url": "https://api.openai.com",
        "openai_api_key_env": "OPENAI_API_KEY",
        "temperature": 0.7,
        "top_p": 0.9,
        "top_k": 40,
        "max_tokens": 4000,
    },
    "generation": {
        "backend": "ollama",
        "model": "llama3",
        "goal": "",
        "target_entries": 100,
        "batch_size": 10,
    },
    "paths": {
        "outputs": "data/outputs",
        "summaries": "data/summaries",
        "logs": "logs",
    },
    "logging": {
        "console_level": "INFO",
        "file_level": "DEBUG",
        "json_logs": False,
        "color": True,
    },
}


@dataclass(frozen=True)
class ConfigLoadResult:
    """Container for the merged configuration."""

    config: Dict[str, Any]
    sources: Tuple[str, ...]


@dataclass(frozen=True)
class BackendSettings:
    ollama_url: str = "http://localhost:11434"
    openai_url: str = "https://api.openai.com"
    openai_api_key_env: str = "OPENAI_API_KEY"
    temperature: float = 0.7
    top_p: float = 0.9
    top_k: int = 40
    max_tokens: int = 4000

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BackendSettings":
        defaults = DEFAULT_CONFIG["backends"]
        merged = {**defaults, **dict(data or {})}
        return cls(
            ollama_url=str(merged["ollama_url"]).rstrip("/"),
            openai_url=str(merged["openai_url"]).rstrip("/"),
            openai_api_key_env=str(merged["openai_api_key_env"]),
            temperature=float(merged["temperature"]),
            top_p=float(merged["top_p"]),
            top_k=int(merged["top_k"]),
            max_tokens=int(merged["max_tokens"]),
        )


@dataclass(frozen=True)
class GenerationConfig:
    """Immutable engine settings shared by every task of a run.

    Durations are in seconds.
    """

    max_concurrent_batches: int = 4
    max_concurrent_requests_per_batch: int = 3
    requests_per_second: Mapping[BackendIdentity, float] = field(
        default_factory=lambda: MappingProxyType(
            {BackendIdentity.OLLAMA: 10.0, BackendIdentity.OPENAI: 60.0}
        )
    )
    max_retries: int = 3
    retry_delay: float = 1.0
    request_timeout: float = 30.0
    backends: BackendSettings = field(default_factory=BackendSettings)

    def __post_init__(self) -> None:
        rates = {
            BackendIdentity.coerce(backend): float(rate)
            for backend, rate in dict(self.requests_per_second).items()
        }
        object.__setattr__(self, "requests_per_second", MappingProxyType(rates))

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "GenerationConfig":
        """Build from a full configuration mapping (``engine`` + ``backends``)."""

        engine = dict(DEFAULT_CONFIG["engine"])
        engine.update(dict(config.get("engine") or {}))
        try:
            result = cls(
                max_concurrent_batches=int(engine["max_concurrent_batches"]),
                max_concurrent_requests_per_batch=int(engine["max_concurrent_requests_per_batch"]),
                requests_per_second=dict(engine.get("requests_per_second") or {}),
                max_retries=int(engine["max_retries"]),
                retry_delay=float(engine["retry_delay"]),
                request_timeout=float(engine["request_timeout"]),
                backends=BackendSettings.from_mapping(config.get("backends") or {}),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid engine configuration: {exc}") from exc
        return result.validate()

    def validate(self) -> "GenerationConfig":
        if self.max_concurrent_batches < 1:
            raise ConfigurationError("max_concurrent_batches must be >= 1")
        if self.max_concurrent_requests_per_batch < 1:
            raise ConfigurationError("max_concurrent_requests_per_batch must be >= 1")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0")
        if self.retry_delay < 0:
            raise ConfigurationError("retry_delay must be >= 0")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be > 0")
        if not self.requests_per_second:
            raise ConfigurationError("At least one backend rate limit must be configured")
        for backend, rate in self.requests_per_second.items():
            if rate <= 0:
                raise ConfigurationError(f"requests_per_second.{backend.value} must be > 0")
        return self


def _ensure_default_config(path: Path) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(DEFAULT_CONFIG, handle, sort_keys=True)
    tmp.replace(path)


def _load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, MutableMapping):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping at the root")
    return dict(data)


def _deep_merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in overlay.items():
        if (
            key in merged
            and isinstance(merged[key], MutableMapping)
            and isinstance(value, MutableMapping)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _resolve_paths(config: Dict[str, Any], base_dir: Path) -> Dict[str, Any]:
    paths = dict(config.get("paths", {}))
    for key, value in paths.items():
        if isinstance(value, str) and value:
            path = Path(value).expanduser()
            paths[key] = str(path if path.is_absolute() else (base_dir / path).resolve())
    config["paths"] = paths
    return config


def _collect_sources(explicit: str | Path | None) -> Iterable[Tuple[Path, bool]]:
    yield CONFIG_PATH, True
    env_path = os.getenv(ENV_CONFIG_PATH)
    if env_path:
        yield Path(env_path).expanduser(), False
    if explicit:
        yield Path(explicit).expanduser(), False


def load_config(
    path: str | Path | None = None,
    *,
    include_sources: bool = False,
    create_default: bool = True,
) -> ConfigLoadResult | Dict[str, Any]:
    """Load defaults merged with the project, environment and explicit config files."""

    config: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)
    sources: list[str] = []
    explicit = Path(path).expanduser() if path else None

    for candidate, required in _collect_sources(path):
        if required and create_default:
            _ensure_default_config(candidate)
        if not candidate.exists():
            if candidate == explicit:
                raise ConfigurationError(f"Configuration file not found: {candidate}")
            continue
        config = _deep_merge(config, _load_yaml(candidate))
        sources.append(str(candidate.resolve()))

    config = _resolve_paths(config, PROJECT_ROOT)
    GenerationConfig.from_mapping(config)

    result = ConfigLoadResult(config=config, sources=tuple(sources))
    if include_sources:
        return result
    return result.config


__all__ = [
    "DEFAULT_CONFIG",
    "BackendSettings",
    "ConfigLoadResult",
    "GenerationConfig",
    "load_config",
]
