from __future__ import annotations

import asyncio
import json
from typing import Any, Sequence

import aiohttp

from relay_bot.errors import (
    BackendError,
    BackendTimeoutError,
    CredentialInvalidError,
    ProbeFailedError,
    QuotaExceededError,
    RelayError,
    SafetyBlockedError,
)
from relay_bot.services.history_service import USER_ROLE, ConversationTurn

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
PROBE_API_VERSION = "v1"
GENERATE_API_VERSION = "v1beta"

QUOTA_MARKERS = ("quota", "rate limit", "limit exceeded", "resource_exhausted")
CREDENTIAL_MARKERS = ("api key", "api_key_invalid", "permission")
SAFETY_FINISH_REASONS = ("SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII")


def _error_detail(body: str) -> tuple[str, str]:
    """Return (status, message) from a Google API error body, falling back to raw text."""
    try:
        data = json.loads(body)
    except ValueError:
        return "", body[:300]
    error = data.get("error") if isinstance(data, dict) else None
    if not isinstance(error, dict):
        return "", body[:300]
    return str(error.get("status") or ""), str(error.get("message") or "")[:300]


def translate_http_error(status: int, body: str) -> RelayError:
    api_status, message = _error_detail(body)
    text = f"HTTP {status}: {message}" if message else f"HTTP {status}"
    lowered = f"{api_status} {message}".lower()
    if status == 429 or api_status == "RESOURCE_EXHAUSTED" or any(marker in lowered for marker in QUOTA_MARKERS):
        return QuotaExceededError(text)
    if (
        status in (401, 403)
        or api_status in ("PERMISSION_DENIED", "UNAUTHENTICATED")
        or any(marker in lowered for marker in CREDENTIAL_MARKERS)
    ):
        return CredentialInvalidError(text)
    if status in (408, 504) or api_status == "DEADLINE_EXCEEDED":
        return BackendTimeoutError(text)
    return BackendError(text)


def extract_text(data: dict[str, Any]) -> str:
    feedback = data.get("promptFeedback")
    if isinstance(feedback, dict) and feedback.get("blockReason"):
        raise SafetyBlockedError(f"Prompt blocked by safety filter: {feedback['blockReason']}")
    candidates = data.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return ""
    candidate = candidates[0]
    if candidate.get("finishReason") in SAFETY_FINISH_REASONS:
        raise SafetyBlockedError(f"Response blocked by safety filter: {candidate['finishReason']}")
    content = candidate.get("content") or {}
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    return "".join(str(part.get("text") or "") for part in parts if isinstance(part, dict))


class GeminiClient:
    """A Gemini model bound to one API key."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_sec: float = 30.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = (base_url.strip() or DEFAULT_BASE_URL).rstrip("/")
        self.timeout_sec = timeout_sec

    def _headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    async def probe(self) -> None:
        if not self.api_key.strip():
            raise CredentialInvalidError("API key is not set")
        url = f"{self.base_url}/{PROBE_API_VERSION}/models"
        timeout = aiohttp.ClientTimeout(total=self.timeout_sec)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, headers=self._headers()) as response:
                    body = await response.text()
            data = json.loads(body)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise ProbeFailedError(f"Gemini API key check failed: {str(exc) or type(exc).__name__}") from exc
        if not isinstance(data, dict):
            raise ProbeFailedError("Gemini API key check failed: unexpected response shape")
        if data.get("error"):
            _status, message = _error_detail(body)
            raise CredentialInvalidError(f"Gemini API key check failed: {message or 'unknown error'}")

    async def generate(
        self,
        history: Sequence[ConversationTurn],
        prompt: str,
        *,
        system_prompt: str = "",
        max_output_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> str:
        url = f"{self.base_url}/{GENERATE_API_VERSION}/models/{self.model}:generateContent"
        contents = [turn.to_content() for turn in history]
        contents.append(ConversationTurn(role=USER_ROLE, text=prompt).to_content())
        payload: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "maxOutputTokens": max_output_tokens,
                "temperature": temperature,
            },
        }
        if system_prompt.strip():
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        timeout = aiohttp.ClientTimeout(total=self.timeout_sec)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, headers=self._headers(), json=payload) as response:
                    body = await response.text()
                    status = response.status
        except asyncio.TimeoutError as exc:
            raise BackendTimeoutError(f"Gemini request timeout after {self.timeout_sec:.0f}s") from exc
        except aiohttp.ClientError as exc:
            raise BackendError(f"Gemini request failed: {exc}") from exc
        if status >= 400:
            raise translate_http_error(status, body)
        try:
            data = json.loads(body)
        except ValueError as exc:
            raise BackendError("Gemini returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise BackendError("Gemini returned an unexpected response shape")
        return extract_text(data)
