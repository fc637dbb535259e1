"""Extract dataset entries from free-form generated text."""

from __future__ import annotations

import json
import logging
from typing import Any, List

from ..errors import ParseFailure
from ..types import DatasetEntry

logger = logging.getLogger(__name__)


def extract_json_array(text: str) -> str:
    """Return the slice between the first ``[`` and the last ``]``.

    Falls back to the whole text when either bracket is missing.
    """

    start = text.find("[")
    end = text.rfind("]")
    if start == -1 or end == -1 or end < start:
        return text
    return text[start : end + 1]


def placeholder_entries(count: int) -> List[DatasetEntry]:
    return [
        DatasetEntry(
            instruction=f"Sample instruction {index}",
            input=f"Sample input context {index}",
            output=f"Sample response output {index}",
        )
        for index in range(1, count + 1)
    ]


class ResponseParser:
    """Decode a JSON array of entries; never fails a sub-batch."""

    def parse(self, text: str, expected_count: int) -> List[DatasetEntry]:
        try:
            entries = self.decode(text or "")
        except ParseFailure as exc:
            logger.warning("Failed to parse generated JSON (%s); using %d placeholder entries", exc, expected_count)
            logger.debug("Unparseable content: %s", text)
            return placeholder_entries(expected_count)
        if not entries:
            logger.warning("Generated JSON array was empty; using %d placeholder entries", expected_count)
            return placeholder_entries(expected_count)
        if len(entries) != expected_count:
            logger.debug("Parsed %d entries, %d requested", len(entries), expected_count)
        return entries

    def decode(self, text: str) -> List[DatasetEntry]:
        candidate = extract_json_array(text)
        try:
            payload: Any = json.loads(candidate)
        except (ValueError, RecursionError) as exc:
            raise ParseFailure(f"Invalid JSON: {type(exc).__name__}: {exc}") from exc
        if not isinstance(payload, list):
            raise ParseFailure("Generated JSON is not an array")
        return [DatasetEntry.from_mapping(item) for item in payload]


__all__ = ["ResponseParser", "extract_json_array", "placeholder_entries"]
