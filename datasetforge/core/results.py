"""Deterministic reassembly of batch results."""

from __future__ import annotations

import logging
from typing import Dict, List, Tuple

from ..types import BatchOutcome, DatasetEntry

logger = logging.getLogger(__name__)


class ResultCollector:
    """Map ``batch_id`` to entries and flatten them in ascending id order.

    Not synchronised: the progress aggregator is its only writer.
    """

    def __init__(self) -> None:
        self._results: Dict[int, Tuple[DatasetEntry, ...]] = {}
        self._seen: set[int] = set()

    def record(self, outcome: BatchOutcome) -> bool:
        if outcome.batch_id in self._seen:
            logger.error("Duplicate outcome for batch %s ignored", outcome.batch_id)
            return False
        self._seen.add(outcome.batch_id)
        if outcome.succeeded:
            self._results[outcome.batch_id] = tuple(outcome.entries)
            logger.debug(
                "Stored %d entries for batch %s, %d batch(es) collected",
                len(outcome.entries),
                outcome.batch_id,
                len(self._results),
            )
        return True

    def __len__(self) -> int:
        return len(self._results)

    def __contains__(self, batch_id: object) -> bool:
        return batch_id in self._results

    def missing(self, total_batches: int) -> List[int]:
        return [batch_id for batch_id in range(total_batches) if batch_id not in self._results]

    def assemble(self, total_batches: int) -> List[DatasetEntry]:
        entries: List[DatasetEntry] = []
        for batch_id in range(total_batches):
            chunk = self._results.get(batch_id)
            if chunk is None:
                logger.warning("No results found for batch %s", batch_id)
                continue
            entries.extend(chunk)
        logger.info(
            "Final collection: %d total entries from %d/%d batches",
            len(entries),
            len(self._results),
            total_batches,
        )
        return entries


__all__ = ["ResultCollector"]
