"""Prompt text for batch generation requests."""

from __future__ import annotations

SYSTEM_PROMPT = (
    "You are an expert at creating high-quality training datasets. "
    "Always respond with valid JSON arrays containing the requested training examples."
)


def build_generation_prompt(goal: str, count: int, context: str) -> str:
    """Return the prompt asking the model for ``count`` training examples."""

    return f"""Generate exactly {count} high-quality training examples for the following fine-tuning objective:

OBJECTIVE: {goal}
CONTEXT: {context}

Requirements:
1. Each example must have three fields: "instruction", "input", and "output"
2. Instructions should be clear, specific, and actionable
3. Inputs should provide relevant context or data
4. Outputs should be comprehensive and helpful responses
5. Ensure diversity in topics, complexity, and formats
6. Make examples realistic and practical

Return ONLY a valid JSON array with no additional text:
[
  {{"instruction": "...", "input": "...", "output": "..."}},
  {{"instruction": "...", "input": "...", "output": "..."}}
]"""


def batch_context(batch_id: int, batch_size: int, target_entries: int) -> str:
    if batch_id == 0:
        return "This is the first batch of the dataset."
    return (
        f"Previous batches completed: {batch_id}. "
        f"Current progress: {batch_id * batch_size}/{target_entries} total entries."
    )


__all__ = ["SYSTEM_PROMPT", "batch_context", "build_generation_prompt"]
