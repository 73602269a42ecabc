from __future__ import annotations

import asyncio
import random
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from relay_bot.config import Settings
from relay_bot.errors import (
    ROTATING_ERRORS,
    AllKeysExhaustedError,
    BackendTimeoutError,
    QuotaExceededError,
    SafetyBlockedError,
)
from relay_bot.prompts import (
    BLOCKED_CONTENT_MESSAGE,
    COOLDOWN_MESSAGE,
    EMPTY_INPUT_MESSAGE,
    EMPTY_RESPONSE_MESSAGE,
    FLAVOR_MESSAGES,
    TOO_LONG_MESSAGE,
)
from relay_bot.services.content_guard import ContentGuard
from relay_bot.services.cooldown_service import CooldownTracker, now_ms
from relay_bot.services.history_service import ConversationTurn, RawMessage, fetch_history, normalize
from relay_bot.services.key_pool_service import KeyPool
from relay_bot.services.logger_service import LoggerService

DISCORD_MESSAGE_LIMIT = 2000
ELLIPSIS = "..."

# Refusal categories
COOLDOWN = "cooldown"
EMPTY_INPUT = "empty_input"
TOO_LONG = "too_long"
BLOCKED_CONTENT = "blocked_content"
EMPTY_RESPONSE = "empty_response"
TIMEOUT = "timeout"
QUOTA = "quota"
SAFETY = "safety"
GENERIC = "generic"

FetchRecent = Callable[[int], Awaitable[Sequence[RawMessage]]]


@dataclass(frozen=True)
class MentionEvent:
    author_id: int
    is_bot: bool
    content: str
    channel_id: int
    created_at_ms: int


@dataclass(frozen=True)
class Reply:
    text: str
    truncated: bool = False

    @property
    def category(self) -> str:
        return "truncated_reply" if self.truncated else "reply"


@dataclass(frozen=True)
class Refusal:
    category: str
    text: str
    retry_after_ms: int | None = None


RelayResult = Reply | Refusal


def strip_mention(content: str, bot_id: int) -> str:
    return re.sub(rf"<@!?{int(bot_id)}>", "", content or "").strip()


def clamp_for_discord(text: str) -> tuple[str, bool]:
    if len(text) <= DISCORD_MESSAGE_LIMIT:
        return text, False
    return text[: DISCORD_MESSAGE_LIMIT - len(ELLIPSIS)] + ELLIPSIS, True


def classify_error(exc: BaseException) -> str:
    if isinstance(exc, BackendTimeoutError):
        return TIMEOUT
    if isinstance(exc, (QuotaExceededError, AllKeysExhaustedError)):
        return QUOTA
    if isinstance(exc, SafetyBlockedError):
        return SAFETY
    return GENERIC


class RelayService:
    def __init__(
        self,
        settings: Settings,
        cooldowns: CooldownTracker,
        keys: KeyPool,
        logger: LoggerService,
        *,
        guard: ContentGuard | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings
        self.cooldowns = cooldowns
        self.keys = keys
        self.logger = logger
        self.guard = guard or ContentGuard()
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def handle_mention(
        self,
        event: MentionEvent,
        fetch_recent: FetchRecent,
        bot_id: int,
        now: int | None = None,
    ) -> RelayResult:
        now_ts = int(now if now is not None else now_ms())
        decision = self.cooldowns.check_and_stamp(event.author_id, now_ts)
        if not decision.allowed:
            return Refusal(
                COOLDOWN,
                COOLDOWN_MESSAGE.format(seconds=decision.retry_after_seconds),
                retry_after_ms=decision.retry_after_ms,
            )

        prompt = strip_mention(event.content, bot_id)
        if not prompt:
            return Refusal(EMPTY_INPUT, EMPTY_INPUT_MESSAGE)
        if len(prompt) > self.settings.max_message_length:
            return Refusal(TOO_LONG, TOO_LONG_MESSAGE.format(limit=self.settings.max_message_length))
        if self.guard.is_blocked(prompt):
            self.logger.log("relay.blocked", user_id=event.author_id, channel_id=event.channel_id)
            return Refusal(BLOCKED_CONTENT, BLOCKED_CONTENT_MESSAGE)

        raw = await fetch_history(fetch_recent, self.settings.history_limit, self.logger)
        history = normalize(
            raw,
            bot_id=bot_id,
            now_ms=now_ts,
            max_count=self.settings.history_limit,
            max_age_ms=self.settings.history_max_age_ms,
            max_len_chars=self.settings.max_message_length,
        )

        try:
            text = await self._call_with_retry(history, prompt)
        except Exception as exc:  # noqa: BLE001
            category = classify_error(exc)
            self.logger.log(
                "relay.error",
                user_id=event.author_id,
                channel_id=event.channel_id,
                category=category,
                error_type=type(exc).__name__,
                error=str(exc)[:300],
            )
            return Refusal(category, self._rng.choice(FLAVOR_MESSAGES[category]))

        if not text or not text.strip():
            return Refusal(EMPTY_RESPONSE, EMPTY_RESPONSE_MESSAGE)
        outward, truncated = clamp_for_discord(text)
        self.logger.log(
            "relay.replied",
            user_id=event.author_id,
            channel_id=event.channel_id,
            history_turns=len(history),
            chars=len(text),
            truncated=truncated,
        )
        return Reply(outward, truncated=truncated)

    async def _call_with_retry(self, history: list[ConversationTurn], prompt: str) -> str:
        max_retries = self.settings.max_retries
        attempt = 0
        while True:
            try:
                return await self._call_with_failover(history, prompt)
            except Exception as exc:  # noqa: BLE001
                attempt += 1
                if attempt > max_retries:
                    raise
                self.logger.log(
                    "relay.retry",
                    attempt=attempt,
                    max_retries=max_retries,
                    error_type=type(exc).__name__,
                )
                await self._sleep(self.settings.retry_backoff_ms * attempt / 1000)

    async def _call_with_failover(self, history: list[ConversationTurn], prompt: str) -> str:
        tries = 0
        last_error: Exception | None = None
        while tries < len(self.keys):
            observed = self.keys.active_index
            try:
                return await self._call_once(history, prompt)
            except ROTATING_ERRORS as exc:
                last_error = exc
                tries += 1
                self.logger.log(
                    "keys.rotating",
                    from_key=None if observed is None else f"#{observed + 1}",
                    error_type=type(exc).__name__,
                )
                activated = await self.keys.rotate_and_activate(observed)
                while not activated and tries < len(self.keys):
                    tries += 1
                    activated = await self.keys.rotate_and_activate(self.keys.active_index)
        raise AllKeysExhaustedError("All Gemini API keys failed.") from last_error

    async def _call_once(self, history: list[ConversationTurn], prompt: str) -> str:
        client = self.keys.current_model()
        timeout_sec = self.settings.request_timeout_ms / 1000
        try:
            return await asyncio.wait_for(
                client.generate(
                    history,
                    prompt,
                    system_prompt=self.settings.system_prompt,
                    max_output_tokens=self.settings.max_output_tokens,
                    temperature=self.settings.temperature,
                ),
                timeout=timeout_sec,
            )
        except asyncio.TimeoutError as exc:
            raise BackendTimeoutError(f"Gemini request timeout after {timeout_sec:.0f}s") from exc
