"""HTTP connectors for the local and hosted generation backends."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Tuple

import httpx
import requests

from ..config import BackendSettings
from ..errors import BackendError
from ..types import BackendIdentity
from .cancellation import CancellationToken
from .prompting import SYSTEM_PROMPT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    backend: BackendIdentity
    size: str = "unknown"
    modified: str = "unknown"
    capabilities: Tuple[str, ...] = ("text-generation",)


HOSTED_MODELS: Tuple[ModelInfo, ...] = (
    ModelInfo("gpt-4.1-nano", "GPT-4.1-nano", BackendIdentity.OPENAI, "nano", "2025",
              ("text-generation", "instruction-following", "fast-inference")),
    ModelInfo("gpt-4o", "GPT-4o", BackendIdentity.OPENAI, "multimodal", "2024",
              ("text-generation", "instruction-following", "multimodal")),
    ModelInfo("gpt-4o-mini", "GPT-4o-mini", BackendIdentity.OPENAI, "efficient", "2024",
              ("text-generation", "instruction-following", "fast-inference")),
    ModelInfo("gpt-4.1-mini", "GPT-4.1-mini", BackendIdentity.OPENAI, "mini", "2025",
              ("text-generation", "instruction-following", "enhanced-reasoning")),
)


class GenerationClient:
    """One ``generate`` call per sub-batch, whichever backend answers it.

    A single :class:`httpx.AsyncClient` is shared by every task of a run so
    connections are pooled per host.
    """

    def __init__(
        self,
        settings: BackendSettings | None = None,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or BackendSettings()
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_keepalive_connections=20, keepalive_expiry=30.0),
        )

    async def generate(
        self,
        backend: BackendIdentity | str,
        model_id: str,
        prompt: str,
        *,
        timeout: float | None = None,
        cancellation: CancellationToken | None = None,
    ) -> str:
        """Return the generated text, racing the request against ``cancellation``."""

        identity = BackendIdentity.coerce(backend)
        request = self._dispatch(identity, model_id, prompt, timeout or self.timeout)
        if cancellation is None:
            return await request
        return await cancellation.race(request)

    async def _dispatch(self, backend: BackendIdentity, model_id: str, prompt: str, timeout: float) -> str:
        if backend is BackendIdentity.OLLAMA:
            url, payload, headers = self._ollama_request(model_id, prompt)
        else:
            url, payload, headers = self._openai_request(model_id, prompt)

        start = time.perf_counter()
        try:
            response = await self._client.post(url, json=payload, headers=headers, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise BackendError(f"{backend.value} request timed out after {timeout:.1f}s", backend=backend.value) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"{backend.value} transport error: {exc}", backend=backend.value) from exc
        elapsed = time.perf_counter() - start

        if response.is_error:
            body = response.text[:500]
            logger.error("%s API error: %s - %s", backend.value, response.status_code, body)
            raise BackendError(
                f"{backend.value} API error: {response.status_code} - {body}",
                backend=backend.value,
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise BackendError(f"{backend.value} returned a non-JSON body", backend=backend.value) from exc

        text = self.extract_text(backend, data)
        logger.debug("%s/%s responded in %.2fs with %d chars", backend.value, model_id, elapsed, len(text))
        return text

    def _ollama_request(self, model_id: str, prompt: str) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        payload = {
            "model": model_id,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.settings.temperature,
                "top_p": self.settings.top_p,
                "top_k": self.settings.top_k,
            },
        }
        return f"{self.settings.ollama_url}/api/generate", payload, {}

    def _openai_request(self, model_id: str, prompt: str) -> Tuple[str, Dict[str, Any], Dict[str, str]]:
        api_key = os.getenv(self.settings.openai_api_key_env)
        if not api_key:
            raise BackendError(
                f"{self.settings.openai_api_key_env} not found in environment",
                backend=BackendIdentity.OPENAI.value,
            )
        payload = {
            "model": model_id,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
            "top_p": self.settings.top_p,
        }
        headers = {"Authorization": f"Bearer {api_key}"}
        return f"{self.settings.openai_url}/v1/chat/completions", payload, headers

    @staticmethod
    def extract_text(backend: BackendIdentity, payload: Mapping[str, Any]) -> str:
        if not isinstance(payload, Mapping):
            return "[]"
        if backend is BackendIdentity.OLLAMA:
            text = payload.get("response")
            return text if isinstance(text, str) else "[]"
        choices = payload.get("choices")
        if isinstance(choices, list) and choices:
            message = choices[0]
            if isinstance(message, Mapping):
                content = message.get("message")
                if isinstance(content, Mapping):
                    text = content.get("content")
                    if isinstance(text, str):
                        return text
        return "[]"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "GenerationClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def discover_models(base_url: str, *, timeout: float = 5.0) -> List[ModelInfo]:
    """Query the local model server for installed models."""

    url = f"{base_url.rstrip('/')}/api/tags"
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Unable to query local models at %s: %s", url, exc)
        return []

    try:
        payload = response.json()
    except ValueError:
        logger.warning("Model server returned non-JSON payload from %s", url)
        return []

    entries = payload.get("models") if isinstance(payload, Mapping) else None
    if not isinstance(entries, Iterable):
        return []

    models: List[ModelInfo] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        name = entry.get("name")
        if not isinstance(name, str):
            continue
        models.append(
            ModelInfo(
                id=name,
                name=name,
                backend=BackendIdentity.OLLAMA,
                size=str(entry.get("size", "unknown")),
                modified=str(entry.get("modified_at", "unknown")),
            )
        )
    if models:
        logger.info("Discovered %d local model(s).", len(models))
    return models


__all__ = ["GenerationClient", "HOSTED_MODELS", "ModelInfo", "discover_models"]
