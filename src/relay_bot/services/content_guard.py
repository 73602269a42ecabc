from __future__ import annotations

import re
from typing import Iterable

# One pattern per category: exploitation, piracy, self-harm, weapons.
BLOCKED_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?:hack|crack|exploit|bypass|jailbreak)", re.IGNORECASE),
    re.compile(r"(?:illegal|piracy|torrent|download.*(?:movie|music|software))", re.IGNORECASE),
    re.compile(r"(?:suicide|self.*harm|kill.*myself)", re.IGNORECASE),
    re.compile(r"(?:bomb|weapon|explosive|terrorism)", re.IGNORECASE),
)


class ContentGuard:
    def __init__(self, patterns: Iterable[re.Pattern[str]] = BLOCKED_PATTERNS) -> None:
        self.patterns = tuple(patterns)

    def is_blocked(self, text: str) -> bool:
        if not isinstance(text, str) or not text:
            return False
        return any(pattern.search(text) for pattern in self.patterns)


_DEFAULT_GUARD = ContentGuard()


def is_blocked(text: str) -> bool:
    return _DEFAULT_GUARD.is_blocked(text)
