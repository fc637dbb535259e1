"""Tests for the ``main`` module entrypoint helpers."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, Mock

import main
from datasetforge.config import ConfigLoadResult
from datasetforge.core.connectors import ModelInfo
from datasetforge.errors import ConfigurationError
from datasetforge.types import BackendIdentity


def _loaded(**generation) -> ConfigLoadResult:
    return ConfigLoadResult(
        config={
            "generation": {"goal": "Write SQL", "target_entries": 10, **generation},
            "paths": {"logs": "/tmp/logs"},
            "logging": {"console_level": "INFO"},
        },
        sources=("config/config.yaml",),
    )


def _patch(monkeypatch, *, success=True):
    logger = logging.getLogger("test-logger")
    runtime = Mock()
    runtime.run = AsyncMock(return_value=success)
    configure = Mock(return_value=logger)
    load = Mock(return_value=_loaded())
    build = Mock(return_value=runtime)

    monkeypatch.setattr(main, "configure_logging", configure)
    monkeypatch.setattr(main, "load_config", load)
    monkeypatch.setattr(main, "DatasetForgeRuntime", build)
    return logger, runtime, configure, load, build


def test_main_runs_generation_success(monkeypatch):
    logger, runtime, configure, load, build = _patch(monkeypatch)

    exit_code = main.main([])

    assert exit_code == 0
    load.assert_called_once_with(None, include_sources=True)
    configure.assert_called_once_with({"console_level": "INFO", "log_dir": "/tmp/logs"})
    build.assert_called_once()
    assert build.call_args.args[1] is logger
    runtime.run.assert_awaited_once_with(dry_run=False)


def test_main_honours_overrides(monkeypatch):
    _, runtime, configure, load, build = _patch(monkeypatch, success=False)

    exit_code = main.main(
        [
            "--config", "alt.yaml",
            "--log-level", "DEBUG",
            "--goal", "Explain regex",
            "--target", "40",
            "--batch-size", "8",
            "--backend", "openai",
            "--model", "gpt-4o-mini",
            "--dry-run",
        ]
    )

    assert exit_code == 2
    load.assert_called_once_with("alt.yaml", include_sources=True)
    assert configure.call_args.args[0]["console_level"] == "DEBUG"
    config = build.call_args.args[0]
    assert config["generation"] == {
        "goal": "Explain regex",
        "target_entries": 40,
        "batch_size": 8,
        "backend": "openai",
        "model": "gpt-4o-mini",
    }
    runtime.run.assert_awaited_once_with(dry_run=True)


def test_main_reports_configuration_errors(monkeypatch, capsys):
    monkeypatch.setattr(main, "load_config", Mock(side_effect=ConfigurationError("bad engine")))

    assert main.main([]) == 1
    assert "bad engine" in capsys.readouterr().err


def test_main_reports_runtime_configuration_errors(monkeypatch):
    _, runtime, *_ = _patch(monkeypatch)
    runtime.run = AsyncMock(side_effect=ConfigurationError("goal missing"))

    assert main.main([]) == 1


def test_list_models_prints_local_and_hosted(monkeypatch, capsys):
    _, runtime, *_ = _patch(monkeypatch)
    discover = Mock(return_value=[ModelInfo("llama3", "llama3", BackendIdentity.OLLAMA, "4GB")])
    monkeypatch.setattr(main, "discover_models", discover)

    assert main.main(["--list-models"]) == 0

    out = capsys.readouterr().out
    assert "ollama\tllama3\t4GB" in out
    assert "openai\tgpt-4o\t" in out
    runtime.run.assert_not_called()
    discover.assert_called_once_with("http://localhost:11434")
