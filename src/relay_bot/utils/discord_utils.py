from __future__ import annotations

import discord

from relay_bot.services.history_service import RawMessage
from relay_bot.services.relay_service import MentionEvent


def epoch_ms(message: discord.Message) -> int:
    return int(message.created_at.timestamp() * 1000)


def to_raw_message(message: discord.Message) -> RawMessage:
    return RawMessage(
        author_id=message.author.id,
        is_bot_author=bool(message.author.bot),
        content=str(message.content or ""),
        created_at_ms=epoch_ms(message),
    )


def to_mention_event(message: discord.Message) -> MentionEvent:
    return MentionEvent(
        author_id=message.author.id,
        is_bot=bool(message.author.bot),
        content=str(message.content or ""),
        channel_id=message.channel.id,
        created_at_ms=epoch_ms(message),
    )


def mentions_user(message: discord.Message, user_id: int) -> bool:
    return any(user.id == user_id for user in message.mentions)


async def fetch_recent_messages(
    channel: discord.abc.Messageable,
    limit: int,
    *,
    before: discord.Message | None = None,
) -> list[RawMessage]:
    """
    Newest-first snapshot of the channel, excluding `before` itself.

    Errors propagate; the caller decides whether history is optional.
    """

    rows: list[RawMessage] = []
    async for message in channel.history(limit=max(1, limit), before=before, oldest_first=False):
        rows.append(to_raw_message(message))
    return rows


async def send_typing(channel: discord.abc.Messageable) -> None:
    try:
        await channel.typing()
    except (AttributeError, discord.HTTPException):
        return
