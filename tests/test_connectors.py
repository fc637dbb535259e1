from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from unittest.mock import Mock

import httpx
import pytest
import requests

from datasetforge.config import BackendSettings
from datasetforge.core import connectors
from datasetforge.core.cancellation import CancellationToken
from datasetforge.core.connectors import HOSTED_MODELS, GenerationClient, discover_models
from datasetforge.errors import BackendError, GenerationCancelled
from datasetforge.types import BackendIdentity


@asynccontextmanager
async def _client(handler, **settings):
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        yield GenerationClient(BackendSettings(**settings), client=http)


@pytest.mark.asyncio
async def test_ollama_request_shape_and_text() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"response": '[{"instruction": "a", "input": "", "output": "b"}]'})

    async with _client(handler, ollama_url="http://gpu-box:11434") as client:
        text = await client.generate("ollama", "llama3", "make data")

    assert seen["url"] == "http://gpu-box:11434/api/generate"
    assert seen["body"]["model"] == "llama3"
    assert seen["body"]["prompt"] == "make data"
    assert seen["body"]["stream"] is False
    assert seen["body"]["options"] == {"temperature": 0.7, "top_p": 0.9, "top_k": 40}
    assert text.startswith("[")


@pytest.mark.asyncio
async def test_openai_request_uses_bearer_token(monkeypatch) -> None:
    monkeypatch.setenv("TEST_OPENAI_KEY", "sk-test")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "[]"}}]})

    async with _client(handler, openai_api_key_env="TEST_OPENAI_KEY", max_tokens=123) as client:
        text = await client.generate(BackendIdentity.OPENAI, "gpt-4o-mini", "make data")

    assert text == "[]"
    assert seen["path"] == "/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["max_tokens"] == 123
    assert [message["role"] for message in seen["body"]["messages"]] == ["system", "user"]


@pytest.mark.asyncio
async def test_openai_without_key_is_a_backend_error(monkeypatch) -> None:
    monkeypatch.delenv("MISSING_KEY_FOR_TEST", raising=False)
    handler = Mock()

    async with _client(handler, openai_api_key_env="MISSING_KEY_FOR_TEST") as client:
        with pytest.raises(BackendError, match="MISSING_KEY_FOR_TEST"):
            await client.generate("openai", "gpt-4o", "prompt")

    handler.assert_not_called()


@pytest.mark.asyncio
async def test_error_status_raises_backend_error() -> None:
    async with _client(lambda request: httpx.Response(503, text="overloaded")) as client:
        with pytest.raises(BackendError) as excinfo:
            await client.generate("ollama", "llama3", "prompt")

    assert excinfo.value.status_code == 503
    assert excinfo.value.backend == "ollama"
    assert "overloaded" in str(excinfo.value)


@pytest.mark.asyncio
async def test_transport_failure_raises_backend_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(BackendError, match="transport error"):
            await client.generate("ollama", "llama3", "prompt")


@pytest.mark.asyncio
async def test_non_json_body_raises_backend_error() -> None:
    async with _client(lambda request: httpx.Response(200, text="<html>proxy</html>")) as client:
        with pytest.raises(BackendError, match="non-JSON"):
            await client.generate("ollama", "llama3", "prompt")


@pytest.mark.asyncio
async def test_cancellation_interrupts_in_flight_request() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(10)
        return httpx.Response(200, json={"response": "[]"})

    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.05, token.cancel)

    async with _client(handler) as client:
        with pytest.raises(GenerationCancelled):
            await asyncio.wait_for(
                client.generate("ollama", "llama3", "prompt", cancellation=token), timeout=1.0
            )


def test_extract_text_tolerates_unexpected_payloads() -> None:
    assert GenerationClient.extract_text(BackendIdentity.OLLAMA, {"response": None}) == "[]"
    assert GenerationClient.extract_text(BackendIdentity.OPENAI, {"choices": []}) == "[]"
    assert GenerationClient.extract_text(BackendIdentity.OPENAI, ["not", "a", "mapping"]) == "[]"


def test_discover_models_parses_tags(monkeypatch) -> None:
    response = Mock()
    response.raise_for_status.return_value = None
    response.json.return_value = {
        "models": [
            {"name": "llama3:8b", "size": 4661224676, "modified_at": "2024-05-01"},
            {"size": 1},
        ]
    }
    get = Mock(return_value=response)
    monkeypatch.setattr(connectors.requests, "get", get)

    models = discover_models("http://localhost:11434/")

    get.assert_called_once_with("http://localhost:11434/api/tags", timeout=5.0)
    assert [model.id for model in models] == ["llama3:8b"]
    assert models[0].backend is BackendIdentity.OLLAMA
    assert models[0].size == "4661224676"


def test_discover_models_returns_empty_when_server_is_down(monkeypatch) -> None:
    monkeypatch.setattr(
        connectors.requests, "get", Mock(side_effect=requests.ConnectionError("refused"))
    )

    assert discover_models("http://localhost:11434") == []


def test_hosted_models_are_openai() -> None:
    assert {model.backend for model in HOSTED_MODELS} == {BackendIdentity.OPENAI}
    assert "gpt-4o-mini" in {model.id for model in HOSTED_MODELS}
