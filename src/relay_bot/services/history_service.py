from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from relay_bot.services.logger_service import LoggerService

COMMAND_MARKER = "!"
USER_ROLE = "user"
MODEL_ROLE = "model"


@dataclass(frozen=True)
class RawMessage:
    author_id: int
    is_bot_author: bool
    content: str
    created_at_ms: int


@dataclass(frozen=True)
class ConversationTurn:
    role: str  # user | model
    text: str

    def to_content(self) -> dict[str, object]:
        return {"role": self.role, "parts": [{"text": self.text}]}


def normalize(
    raw_messages: Sequence[RawMessage],
    bot_id: int,
    now_ms: int,
    max_count: int,
    max_age_ms: int,
    max_len_chars: int,
) -> list[ConversationTurn]:
    """
    Turn a newest-first slice of channel messages into backend history.

    The result is chronological and either empty or opens with a `user` turn.
    """
    newest_first = list(raw_messages)[: max(0, max_count)]
    turns: list[ConversationTurn] = []
    for message in reversed(newest_first):
        content = message.content or ""
        if content.startswith(COMMAND_MARKER):
            continue
        if message.is_bot_author and message.author_id != bot_id:
            continue
        if now_ms - message.created_at_ms > max_age_ms:
            continue
        if len(content) > max_len_chars:
            continue
        role = MODEL_ROLE if message.author_id == bot_id else USER_ROLE
        turns.append(ConversationTurn(role=role, text=content))

    start = 0
    while start < len(turns) and turns[start].role == MODEL_ROLE:
        start += 1
    turns = turns[start:]
    if not turns or turns[0].role != USER_ROLE:
        return []
    return turns


async def fetch_history(
    fetch: Callable[[int], Awaitable[Sequence[RawMessage]]],
    limit: int,
    logger: LoggerService | None = None,
) -> list[RawMessage]:
    # History is context only; a failed fetch means an empty conversation.
    try:
        return list(await fetch(limit))
    except Exception as exc:  # noqa: BLE001
        if logger:
            logger.log("history.fetch_failed", error=str(exc)[:300])
        return []
