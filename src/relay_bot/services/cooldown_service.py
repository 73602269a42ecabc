from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass

from relay_bot.services.logger_service import LoggerService

STALE_FACTOR = 10


@dataclass(frozen=True)
class CooldownDecision:
    allowed: bool
    retry_after_ms: int = 0

    @property
    def retry_after_seconds(self) -> int:
        return self.retry_after_ms // 1000


def now_ms() -> int:
    return int(time.time() * 1000)


class CooldownTracker:
    """
    Per-user request spacing.

    `check_and_stamp` and `sweep` never await, so on the event loop each runs
    to completion before any other task touches the map. Two mentions from the
    same user cannot both pass, and a sweep never sees a half-written entry.
    """

    def __init__(self, window_ms: int, logger: LoggerService | None = None) -> None:
        self.window_ms = max(0, int(window_ms))
        self.logger = logger
        self._last_by_user: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._last_by_user)

    def last_request(self, user_id: int) -> int | None:
        return self._last_by_user.get(user_id)

    def check_and_stamp(self, user_id: int, now: int | None = None) -> CooldownDecision:
        now_ts = int(now if now is not None else now_ms())
        last = self._last_by_user.get(user_id)
        if last is not None:
            elapsed = now_ts - last
            if elapsed < self.window_ms:
                remaining = self.window_ms - elapsed
                return CooldownDecision(allowed=False, retry_after_ms=math.ceil(remaining / 1000) * 1000)
        self._last_by_user[user_id] = now_ts
        return CooldownDecision(allowed=True)

    def sweep(self, now: int | None = None) -> int:
        now_ts = int(now if now is not None else now_ms())
        max_age = self.window_ms * STALE_FACTOR
        stale = [user_id for user_id, last in self._last_by_user.items() if now_ts - last > max_age]
        for user_id in stale:
            del self._last_by_user[user_id]
        if stale and self.logger:
            self.logger.log("cooldown.swept", removed=len(stale), remaining=len(self._last_by_user))
        return len(stale)

    async def sweep_loop(self, interval_ms: int) -> None:
        while True:
            await asyncio.sleep(max(1, interval_ms) / 1000)
            self.sweep()
