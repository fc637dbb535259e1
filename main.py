"""Command-line entry point for datasetforge."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Sequence

from datasetforge.config import load_config
from datasetforge.core.connectors import HOSTED_MODELS, discover_models
from datasetforge.errors import ConfigurationError
from datasetforge.logging_utils import configure_logging
from datasetforge.runtime import DatasetForgeRuntime


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate a fine-tuning dataset from an LLM backend.")
    parser.add_argument("--config", help="Path to an additional YAML configuration file.")
    parser.add_argument("--log-level", help="Console log level (DEBUG, INFO, ...).")
    parser.add_argument("--goal", help="Fine-tuning goal the examples should serve.")
    parser.add_argument("--target", type=int, help="Total number of entries to generate.")
    parser.add_argument("--batch-size", type=int, help="Entries requested per batch.")
    parser.add_argument("--model", help="Model id to generate with.")
    parser.add_argument("--backend", choices=("ollama", "openai"), help="Backend that serves the model.")
    parser.add_argument("--list-models", action="store_true", help="List available models and exit.")
    parser.add_argument("--dry-run", action="store_true", help="Validate configuration and plan only.")
    return parser


def apply_overrides(config: dict, args: argparse.Namespace) -> dict:
    generation = dict(config.get("generation") or {})
    for key, value in (
        ("goal", args.goal),
        ("target_entries", args.target),
        ("batch_size", args.batch_size),
        ("model", args.model),
        ("backend", args.backend),
    ):
        if value is not None:
            generation[key] = value
    config["generation"] = generation
    logging_config = dict(config.get("logging") or {})
    if args.log_level:
        logging_config["console_level"] = args.log_level
    logging_config.setdefault("log_dir", (config.get("paths") or {}).get("logs"))
    config["logging"] = logging_config
    return config


def list_models(config: dict) -> None:
    backends = config.get("backends") or {}
    for model in discover_models(str(backends.get("ollama_url", "http://localhost:11434"))):
        print(f"ollama\t{model.id}\t{model.size}")
    for model in HOSTED_MODELS:
        print(f"openai\t{model.id}\t{model.size}")


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        result = load_config(args.config, include_sources=True)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1
    config = apply_overrides(dict(result.config), args)
    logger = configure_logging(config["logging"])
    logger.info("Loaded configuration from: %s", ", ".join(result.sources) or "<defaults>")

    if args.list_models:
        list_models(config)
        return 0

    runtime = DatasetForgeRuntime(config, logger)
    try:
        success = asyncio.run(runtime.run(dry_run=args.dry_run))
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 1
    except KeyboardInterrupt:  # pragma: no cover - manual interruption
        logger.warning("Interrupted by user.")
        return 1
    except Exception as exc:  # pragma: no cover - defensive logging
        logger.exception("Runtime terminated due to unexpected error: %s", exc)
        return 1
    return 0 if success else 2


if __name__ == "__main__":
    sys.exit(main())
