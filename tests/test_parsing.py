from __future__ import annotations

import json
import sys

import pytest

from datasetforge.core.parsing import ResponseParser, extract_json_array, placeholder_entries
from datasetforge.core.prompting import batch_context, build_generation_prompt
from datasetforge.types import DatasetEntry


def test_extract_json_array_strips_surrounding_prose() -> None:
    text = 'Sure! Here they are:\n[{"a": 1}, {"b": [2]}]\nLet me know.'

    assert extract_json_array(text) == '[{"a": 1}, {"b": [2]}]'
    assert extract_json_array("no brackets") == "no brackets"


def test_parse_returns_decoded_entries() -> None:
    payload = [
        {"instruction": "Summarise", "input": "Ticket #1", "output": "Printer jam"},
        {"instruction": "Classify", "input": "Ticket #2", "output": 3},
    ]

    entries = ResponseParser().parse("```json\n" + json.dumps(payload) + "\n```", 2)

    assert entries == [
        DatasetEntry("Summarise", "Ticket #1", "Printer jam"),
        DatasetEntry("Classify", "Ticket #2", "3"),
    ]


def test_parse_falls_back_to_placeholders_on_malformed_text() -> None:
    entries = ResponseParser().parse("I could not produce JSON today", 5)

    assert len(entries) == 5
    assert entries[0] == DatasetEntry(
        "Sample instruction 1", "Sample input context 1", "Sample response output 1"
    )
    assert entries[-1].instruction == "Sample instruction 5"


def test_parse_empty_array_uses_placeholders() -> None:
    assert ResponseParser().parse("[]", 3) == placeholder_entries(3)


def test_parse_entry_missing_fields_uses_placeholders() -> None:
    entries = ResponseParser().parse('[{"instruction": "only this"}]', 2)

    assert [entry.instruction for entry in entries] == ["Sample instruction 1", "Sample instruction 2"]


def test_parse_keeps_short_answers() -> None:
    text = json.dumps([{"instruction": "i", "input": "", "output": "o"}])

    assert len(ResponseParser().parse(text, 4)) == 1


def test_generation_prompt_mentions_count_goal_and_context() -> None:
    prompt = build_generation_prompt("Answer SQL questions", 7, batch_context(2, 10, 50))

    assert "Generate exactly 7 high-quality training examples" in prompt
    assert "OBJECTIVE: Answer SQL questions" in prompt
    assert "CONTEXT: Previous batches completed: 2. Current progress: 20/50 total entries." in prompt
    assert batch_context(0, 10, 50) == "This is the first batch of the dataset."


def test_parse_deeply_nested_arrays_uses_placeholders() -> None:
    text = "[" * 100_000 + "]" * 100_000

    assert ResponseParser().parse(text, 5) == placeholder_entries(5)


@pytest.mark.skipif(not hasattr(sys, "get_int_max_str_digits"), reason="no int digit limit")
def test_parse_oversized_integer_uses_placeholders() -> None:
    text = '[{"instruction": 1' + "0" * 5000 + ', "input": "", "output": ""}]'

    assert ResponseParser().parse(text, 5) == placeholder_entries(5)
