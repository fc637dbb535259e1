"""Runtime orchestration for a dataset generation run."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping

from tqdm import tqdm

from .config import GenerationConfig
from .core import CancellationToken, ConcurrentGenerator, GenerationProgress, plan_tasks
from .core.batching import total_entries
from .errors import ConfigurationError
from .types import DatasetEntry, ProgressUpdate


class DatasetForgeRuntime:
    def __init__(self, config: Mapping[str, Any], logger: logging.Logger, *, client=None) -> None:
        self.config = config
        self.logger = logger
        self.client = client
        self.cancellation = CancellationToken()
        self.progress: GenerationProgress | None = None

    async def run(self, *, dry_run: bool = False, install_signals: bool = True) -> bool:
        engine_config = GenerationConfig.from_mapping(self.config)
        generation = dict(self.config.get("generation") or {})
        goal = str(generation.get("goal") or "").strip()
        if not goal:
            raise ConfigurationError("generation.goal must describe the fine-tuning goal")

        tasks = plan_tasks(
            int(generation.get("target_entries", 0)),
            int(generation.get("batch_size", 1)),
            backend=str(generation.get("backend", "ollama")),
            model_id=str(generation.get("model", "")),
            goal=goal,
        )
        target = total_entries(tasks)
        self.logger.info(
            "Planned %d batch(es) for %d entries on %s/%s",
            len(tasks),
            target,
            generation.get("backend"),
            generation.get("model"),
        )
        if dry_run:
            self.logger.info("Dry-run mode enabled; configuration validated successfully.")
            return True
        if not tasks:
            self.logger.warning("Nothing to generate: target_entries is 0.")
            return False

        if install_signals:
            self.cancellation.install_signal_handlers()

        progress = GenerationProgress(total_batches=len(tasks), target_entries=target)
        self.progress = progress
        bar = tqdm(total=target, unit="entry", desc="Generating", leave=False)

        def _sink(update: ProgressUpdate) -> None:
            bar.update(max(0, update.entries_generated - bar.n))
            bar.set_postfix(
                errors=update.errors_count,
                retries=update.retries_count,
                rate=f"{update.entries_per_second:.2f}/s",
            )
            progress.apply(update)
            self.logger.debug("Progress: %s (eta %s)", progress.status, progress.estimated_completion)

        started = time.monotonic()
        try:
            async with ConcurrentGenerator(engine_config, client=self.client) as generator:
                entries = await generator.run(tasks, self.cancellation, _sink)
        finally:
            bar.close()
        progress.finish(cancelled=self.cancellation.is_cancelled())
        if self.cancellation.is_cancelled():
            self.logger.warning("Generation cancelled; keeping %d partial entries.", len(entries))

        paths = self.config.get("paths") or {}
        output_path = self._write_dataset(paths.get("outputs"), entries)
        self._write_summary(
            paths.get("summaries"),
            self._summary(entries, output_path, time.monotonic() - started),
        )
        return bool(entries)

    def _summary(self, entries: List[DatasetEntry], output_path: Path | None, elapsed: float) -> Dict[str, Any]:
        progress = self.progress
        return {
            "entries": len(entries),
            "target_entries": progress.target_entries if progress else 0,
            "total_batches": progress.total_batches if progress else 0,
            "errors_count": progress.errors_count if progress else 0,
            "retries_count": progress.retries_count if progress else 0,
            "status": progress.status if progress else "unknown",
            "elapsed_seconds": round(elapsed, 3),
            "output": str(output_path) if output_path else None,
            "timestamp": time.time(),
        }

    def _write_dataset(self, directory: str | None, entries: List[DatasetEntry]) -> Path | None:
        if not directory or not entries:
            return None
        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        timestamp = time.strftime("%Y%m%dT%H%M%S", time.gmtime())
        path = target_dir / f"dataset-{timestamp}.jsonl"
        with path.open("w", encoding="utf-8") as handle:
            for entry in entries:
                handle.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
        self.logger.info("Wrote %d entries to %s", len(entries), path)
        return path

    def _write_summary(self, directory: str | None, summary: Dict[str, Any]) -> None:
        if not directory:
            return
        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        timestamp = time.strftime("%Y%m%dT%H%M%S", time.gmtime())
        summary_path = target_dir / f"run-summary-{timestamp}.json"
        summary_path.write_text(json.dumps(summary, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        self.logger.info("Run summary written to %s", summary_path)


__all__ = ["DatasetForgeRuntime"]
