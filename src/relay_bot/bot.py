from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable

import discord
from discord.ext import commands

from relay_bot.config import Settings
from relay_bot.errors import NoValidCredentialError
from relay_bot.services.cooldown_service import CooldownTracker
from relay_bot.services.gemini_client import GeminiClient
from relay_bot.services.history_service import RawMessage
from relay_bot.services.key_pool_service import KeyPool
from relay_bot.services.logger_service import LoggerService
from relay_bot.services.relay_service import Refusal, RelayService
from relay_bot.utils.discord_utils import (
    fetch_recent_messages,
    mentions_user,
    send_typing,
    to_mention_event,
)


class RelayBot(commands.Bot):
    def __init__(
        self,
        settings: Settings,
        *,
        client_factory: Callable[[str], GeminiClient] | None = None,
        logger: LoggerService | None = None,
    ) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.messages = True
        intents.message_content = True
        super().__init__(command_prefix=settings.command_prefix, intents=intents, help_command=None)
        self.settings = settings
        self.logger = logger or LoggerService()
        self.cooldowns = CooldownTracker(settings.cooldown_ms, self.logger)
        self.keys = KeyPool(settings.gemini_keys, client_factory or self._default_client, self.logger)
        self.relay = RelayService(settings, self.cooldowns, self.keys, self.logger)
        self.started_at = datetime.now(tz=timezone.utc)
        self._sweep_task: asyncio.Task | None = None
        self._ready_once = False

    def _default_client(self, api_key: str) -> GeminiClient:
        return GeminiClient(
            api_key,
            model=self.settings.gemini_model,
            base_url=self.settings.gemini_base_url,
            timeout_sec=self.settings.request_timeout_ms / 1000,
        )

    async def setup_hook(self) -> None:
        # Serving starts only once a key has passed its probe.
        await self.keys.activate_first_valid()
        self._sweep_task = asyncio.create_task(
            self.cooldowns.sweep_loop(self.settings.cooldown_sweep_interval_ms),
            name="cooldown-sweep",
        )
        self._register_commands()

    async def close(self) -> None:
        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()
        self.logger.log("bot.closing")
        await super().close()

    def _register_commands(self) -> None:
        @self.command(name="health")
        async def health(ctx: commands.Context) -> None:
            if not self.settings.channel_allowed(ctx.channel.id):
                return
            uptime = datetime.now(tz=timezone.utc) - self.started_at
            slot = self.keys.active_slot
            payload = (
                f"Uptime: `{uptime}`\n"
                f"Active key: `{slot.label if slot else 'none'}` of `{len(self.keys)}`\n"
                f"Model: `{self.settings.gemini_model}`\n"
                f"Tracked cooldowns: `{len(self.cooldowns)}`"
            )
            await ctx.send(payload)

    async def on_ready(self) -> None:
        if self._ready_once:
            return
        self._ready_once = True
        slot = self.keys.active_slot
        self.logger.log(
            "bot.ready",
            user_id=self.user.id if self.user else None,
            guilds=len(self.guilds),
            active_key=slot.label if slot else None,
        )

    async def on_command_error(self, ctx: commands.Context, exception: Exception) -> None:
        if isinstance(exception, commands.CommandNotFound):
            return
        self.logger.log("command.error", error=str(exception), command=ctx.command.name if ctx.command else "unknown")

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or not self.user:
            return
        if not self.settings.channel_allowed(message.channel.id):
            return
        if message.content.startswith(self.settings.command_prefix):
            await self.process_commands(message)
            return
        if not mentions_user(message, self.user.id):
            return
        await self._handle_mention(message, self.user.id)

    async def _handle_mention(self, message: discord.Message, bot_id: int) -> None:
        channel = message.channel

        async def fetch_recent(limit: int) -> list[RawMessage]:
            # Only reached once the mention passed every input gate.
            await send_typing(channel)
            return await fetch_recent_messages(channel, limit, before=message)

        result = await self.relay.handle_mention(to_mention_event(message), fetch_recent, bot_id)
        try:
            if isinstance(result, Refusal):
                await message.reply(result.text, mention_author=False)
            else:
                await channel.send(result.text)
        except (discord.Forbidden, discord.HTTPException) as exc:
            self.logger.log(
                "relay.send_failed",
                channel_id=channel.id,
                category=result.category,
                error=str(exc)[:300],
            )


def main() -> None:
    settings = Settings.load()
    bot = RelayBot(settings)
    try:
        bot.run(settings.discord_token)
    except NoValidCredentialError as exc:
        bot.logger.log("bot.fatal", error=str(exc))
        raise SystemExit(1) from exc
