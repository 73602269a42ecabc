from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Iterable

from relay_bot.errors import NoValidCredentialError, RelayError
from relay_bot.services.gemini_client import GeminiClient
from relay_bot.services.logger_service import LoggerService


@dataclass(frozen=True)
class CredentialSlot:
    key: str
    ordinal: int

    @property
    def label(self) -> str:
        return f"#{self.ordinal + 1}"


class KeyPool:
    """
    Ordered Gemini keys with one active slot.

    The slot list never changes after construction. Only the active index and
    the client bound to it move, and both move together under `_lock`.
    """

    def __init__(
        self,
        keys: Iterable[str],
        client_factory: Callable[[str], GeminiClient],
        logger: LoggerService,
    ) -> None:
        self.slots = tuple(CredentialSlot(key=key, ordinal=index) for index, key in enumerate(keys))
        if not self.slots:
            raise ValueError("KeyPool needs at least one API key.")
        self.client_factory = client_factory
        self.logger = logger
        self.active_index: int | None = None
        self._client: GeminiClient | None = None
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self.slots)

    @property
    def active_slot(self) -> CredentialSlot | None:
        if self.active_index is None:
            return None
        return self.slots[self.active_index]

    def current_model(self) -> GeminiClient:
        if self._client is None:
            raise NoValidCredentialError("No Gemini API key has been activated.")
        return self._client

    async def activate_first_valid(self) -> CredentialSlot:
        async with self._lock:
            for slot in self.slots:
                client = await self._probe(slot)
                if client is None:
                    continue
                self._bind(slot, client)
                self.logger.log("keys.activated", key=slot.label, reason="startup")
                return slot
        self.logger.log("keys.none_valid", pool_size=len(self.slots))
        raise NoValidCredentialError(f"None of the {len(self.slots)} Gemini API key(s) passed the probe.")

    async def rotate_and_activate(self, observed_index: int | None = None) -> bool:
        """
        Advance one slot and probe it.

        Returns True when the new slot is live. On a failed probe the cursor
        stays on the dead slot and False is returned; callers rotate again if
        they still have budget. When `observed_index` no longer matches the
        cursor, another task already rotated and this call is a no-op.
        """
        async with self._lock:
            if observed_index is not None and self.active_index is not None and observed_index != self.active_index:
                return self._client is not None
            current = -1 if self.active_index is None else self.active_index
            next_index = (current + 1) % len(self.slots)
            slot = self.slots[next_index]
            self.active_index = next_index
            client = await self._probe(slot)
            if client is None:
                return False
            self._bind(slot, client)
            self.logger.log("keys.rotated", key=slot.label)
            return True

    async def _probe(self, slot: CredentialSlot) -> GeminiClient | None:
        client = self.client_factory(slot.key)
        try:
            await client.probe()
        except RelayError as exc:
            self.logger.log("keys.probe_failed", key=slot.label, error=str(exc)[:300])
            return None
        return client

    def _bind(self, slot: CredentialSlot, client: GeminiClient) -> None:
        self.active_index = slot.ordinal
        self._client = client
