from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from relay_bot.prompts import SYSTEM_PROMPT

DEFAULT_MODEL = "gemini-2.5-flash-lite"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"

TOKEN_NAMES = ("DISCORD_BOT_TOKEN", "DISCORD_TOKEN")
KEY_NAMES = ("GOOGLE_GEMINI_API_KEY", "GEMINI_API_KEY")
CHANNEL_NAMES = ("DISCORD_CHANNEL_ID", "DISCORD_SERVER_CHANNEL_ID")


@dataclass(frozen=True)
class Settings:
    discord_token: str
    gemini_keys: tuple[str, ...]
    allowed_channel_ids: frozenset[int] = frozenset()
    gemini_model: str = DEFAULT_MODEL
    gemini_base_url: str = DEFAULT_BASE_URL
    system_prompt: str = SYSTEM_PROMPT
    command_prefix: str = "!"
    cooldown_ms: int = 5000
    cooldown_sweep_interval_ms: int = 60_000
    max_message_length: int = 2000
    history_limit: int = 10
    history_max_age_ms: int = 24 * 60 * 60 * 1000
    max_retries: int = 2
    retry_backoff_ms: int = 1000
    request_timeout_ms: int = 30_000
    max_output_tokens: int = 1000
    temperature: float = 0.7

    def channel_allowed(self, channel_id: int) -> bool:
        if not self.allowed_channel_ids:
            return True
        return channel_id in self.allowed_channel_ids

    @staticmethod
    def load(
        environ: Mapping[str, str] | None = None,
        passwords_path: Path = Path("passwords.txt"),
    ) -> "Settings":
        env = os.environ if environ is None else environ
        file_values = _parse_passwords_file(passwords_path)

        def pick(*names: str, default: str = "") -> str:
            for name in names:
                value = str(env.get(name, "")).strip()
                if value:
                    return value
            for name in names:
                value = file_values.get(name, "").strip()
                if value:
                    return value
            return default

        token = pick(*TOKEN_NAMES)
        keys = parse_csv(pick(*KEY_NAMES))
        if not token:
            raise RuntimeError("DISCORD_BOT_TOKEN is required (environment or passwords.txt).")
        if not keys:
            raise RuntimeError("GOOGLE_GEMINI_API_KEY is required (environment or passwords.txt).")

        return Settings(
            discord_token=token,
            gemini_keys=tuple(keys),
            allowed_channel_ids=frozenset(_parse_channel_ids(pick(*CHANNEL_NAMES))),
            gemini_model=pick("GEMINI_MODEL", default=DEFAULT_MODEL),
            gemini_base_url=pick("GEMINI_BASE_URL", default=DEFAULT_BASE_URL),
            system_prompt=pick("SYSTEM_PROMPT", default=SYSTEM_PROMPT),
            command_prefix=pick("COMMAND_PREFIX", default="!"),
            cooldown_ms=_as_int("COOLDOWN_MS", pick("COOLDOWN_MS", default="5000")),
            cooldown_sweep_interval_ms=_as_int(
                "COOLDOWN_SWEEP_INTERVAL_MS", pick("COOLDOWN_SWEEP_INTERVAL_MS", default="60000")
            ),
            max_message_length=_as_int("MAX_MESSAGE_LENGTH", pick("MAX_MESSAGE_LENGTH", default="2000")),
            history_limit=_as_int("HISTORY_LIMIT", pick("HISTORY_LIMIT", default="10")),
            history_max_age_ms=_as_int("HISTORY_MAX_AGE_MS", pick("HISTORY_MAX_AGE_MS", default="86400000")),
            max_retries=_as_int("MAX_RETRIES", pick("MAX_RETRIES", default="2")),
            retry_backoff_ms=_as_int("RETRY_BACKOFF_MS", pick("RETRY_BACKOFF_MS", default="1000")),
            request_timeout_ms=_as_int("REQUEST_TIMEOUT_MS", pick("REQUEST_TIMEOUT_MS", default="30000")),
            max_output_tokens=_as_int("MAX_OUTPUT_TOKENS", pick("MAX_OUTPUT_TOKENS", default="1000")),
            temperature=_as_float("TEMPERATURE", pick("TEMPERATURE", default="0.7")),
        )


def parse_csv(raw: str) -> list[str]:
    return [part.strip() for part in str(raw or "").split(",") if part.strip()]


def _parse_channel_ids(raw: str) -> list[int]:
    out: list[int] = []
    for part in parse_csv(raw):
        if not part.isdigit():
            raise RuntimeError(f"Channel id `{part}` is not numeric.")
        out.append(int(part))
    return out


def _as_int(name: str, raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got `{raw}`.") from None
    if value < 0:
        raise RuntimeError(f"{name} must not be negative.")
    return value


def _as_float(name: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got `{raw}`.") from None


def _parse_passwords_file(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return values
