from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from aiohttp import web
from aiohttp import test_utils

from relay_bot.errors import (
    BackendError,
    BackendTimeoutError,
    CredentialInvalidError,
    ProbeFailedError,
    QuotaExceededError,
    SafetyBlockedError,
)
from relay_bot.services.gemini_client import GeminiClient, extract_text, translate_http_error
from relay_bot.services.history_service import ConversationTurn

GOOD_KEY = "good-key"


def _error_body(code: int, status: str, message: str) -> str:
    return json.dumps({"error": {"code": code, "status": status, "message": message}})


def test_translate_http_error_maps_to_taxonomy() -> None:
    assert isinstance(translate_http_error(429, _error_body(429, "RESOURCE_EXHAUSTED", "Quota exceeded")), QuotaExceededError)
    assert isinstance(
        translate_http_error(400, _error_body(400, "INVALID_ARGUMENT", "API key not valid. Please pass a valid API key.")),
        CredentialInvalidError,
    )
    assert isinstance(translate_http_error(403, _error_body(403, "PERMISSION_DENIED", "denied")), CredentialInvalidError)
    assert isinstance(translate_http_error(504, _error_body(504, "DEADLINE_EXCEEDED", "slow")), BackendTimeoutError)
    assert isinstance(translate_http_error(500, _error_body(500, "INTERNAL", "boom")), BackendError)
    assert isinstance(translate_http_error(502, "<html>bad gateway</html>"), BackendError)


def test_translated_error_keeps_status_and_message() -> None:
    error = translate_http_error(500, _error_body(500, "INTERNAL", "boom"))
    assert str(error) == "HTTP 500: boom"


def test_extract_text_joins_parts() -> None:
    data = {"candidates": [{"content": {"parts": [{"text": "Hello"}, {"text": " there"}]}, "finishReason": "STOP"}]}
    assert extract_text(data) == "Hello there"
    assert extract_text({"candidates": []}) == ""
    assert extract_text({}) == ""


def test_extract_text_raises_on_safety_blocks() -> None:
    with pytest.raises(SafetyBlockedError):
        extract_text({"promptFeedback": {"blockReason": "SAFETY"}})
    with pytest.raises(SafetyBlockedError):
        extract_text({"candidates": [{"finishReason": "SAFETY", "content": {"parts": []}}]})


def _make_app(received: list[dict[str, Any]]) -> web.Application:
    async def list_models(request: web.Request) -> web.Response:
        if request.headers.get("x-goog-api-key") != GOOD_KEY:
            return web.json_response(
                {"error": {"code": 400, "status": "INVALID_ARGUMENT", "message": "API key not valid."}},
                status=400,
            )
        return web.json_response({"models": [{"name": "models/test-model"}]})

    async def generate(request: web.Request) -> web.Response:
        payload = await request.json()
        received.append({"target": request.match_info["target"], "payload": payload})
        if request.headers.get("x-goog-api-key") != GOOD_KEY:
            return web.json_response(
                {"error": {"code": 429, "status": "RESOURCE_EXHAUSTED", "message": "Quota exceeded."}},
                status=429,
            )
        return web.json_response({"candidates": [{"content": {"role": "model", "parts": [{"text": "pong"}]}}]})

    async def slow(request: web.Request) -> web.Response:
        await asyncio.sleep(1)
        return web.json_response({})

    app = web.Application()
    app.router.add_get("/v1/models", list_models)
    app.router.add_post("/v1beta/models/{target}", generate)
    app.router.add_get("/slow/v1/models", slow)
    app.router.add_post("/slow/v1beta/models/{target}", slow)
    return app


def _run_against_server(scenario) -> Any:
    received: list[dict[str, Any]] = []

    async def runner() -> Any:
        async with test_utils.TestServer(_make_app(received)) as server:
            base_url = str(server.make_url("/")).rstrip("/")
            return await scenario(base_url, received)

    return asyncio.run(runner())


def test_probe_accepts_good_key_and_rejects_bad_key() -> None:
    async def scenario(base_url: str, received: list[dict[str, Any]]) -> None:
        await GeminiClient(GOOD_KEY, model="test-model", base_url=base_url).probe()
        with pytest.raises(CredentialInvalidError):
            await GeminiClient("bad-key", model="test-model", base_url=base_url).probe()
        with pytest.raises(CredentialInvalidError):
            await GeminiClient("", model="test-model", base_url=base_url).probe()

    _run_against_server(scenario)


def test_probe_network_failure_is_probe_failed() -> None:
    async def scenario(base_url: str, received: list[dict[str, Any]]) -> None:
        client = GeminiClient(GOOD_KEY, model="test-model", base_url=f"{base_url}/slow", timeout_sec=0.05)
        with pytest.raises(ProbeFailedError):
            await client.probe()
        unreachable = GeminiClient(GOOD_KEY, model="test-model", base_url="http://127.0.0.1:1", timeout_sec=1)
        with pytest.raises(ProbeFailedError):
            await unreachable.probe()

    _run_against_server(scenario)


def test_generate_sends_history_prompt_and_config() -> None:
    async def scenario(base_url: str, received: list[dict[str, Any]]) -> tuple[str, list[dict[str, Any]]]:
        client = GeminiClient(GOOD_KEY, model="test-model", base_url=base_url)
        history = [ConversationTurn("user", "hi"), ConversationTurn("model", "what")]
        text = await client.generate(
            history,
            "tell me more",
            system_prompt="be brief",
            max_output_tokens=50,
            temperature=0.2,
        )
        return text, received

    text, received = _run_against_server(scenario)
    assert text == "pong"
    assert received[0]["target"] == "test-model:generateContent"
    payload = received[0]["payload"]
    assert payload["contents"] == [
        {"role": "user", "parts": [{"text": "hi"}]},
        {"role": "model", "parts": [{"text": "what"}]},
        {"role": "user", "parts": [{"text": "tell me more"}]},
    ]
    assert payload["systemInstruction"] == {"parts": [{"text": "be brief"}]}
    assert payload["generationConfig"] == {"maxOutputTokens": 50, "temperature": 0.2}


def test_generate_translates_quota_and_timeout() -> None:
    async def scenario(base_url: str, received: list[dict[str, Any]]) -> None:
        with pytest.raises(QuotaExceededError):
            await GeminiClient("spent-key", model="test-model", base_url=base_url).generate([], "hi")
        slow_client = GeminiClient(GOOD_KEY, model="test-model", base_url=f"{base_url}/slow", timeout_sec=0.05)
        with pytest.raises(BackendTimeoutError):
            await slow_client.generate([], "hi")

    _run_against_server(scenario)
