from __future__ import annotations

import re

from relay_bot.services.content_guard import ContentGuard, is_blocked


def test_blocks_hacking_terms_case_insensitive() -> None:
    for text in ("how do I hack a system", "BYPASS the filter", "Jailbreak mode please", "HaCk"):
        assert is_blocked(text) is True


def test_blocks_every_category() -> None:
    assert is_blocked("where is a torrent for this") is True
    assert is_blocked("download the new movie for free") is True
    assert is_blocked("thoughts about self harm") is True
    assert is_blocked("how to build a bomb") is True


def test_benign_text_passes() -> None:
    for text in ("hello", "what is the weather like today?", "tell me a joke about cats", ""):
        assert is_blocked(text) is False


def test_non_string_input_never_raises() -> None:
    assert is_blocked(None) is False  # type: ignore[arg-type]
    assert is_blocked(1234) is False  # type: ignore[arg-type]


def test_custom_patterns_short_circuit() -> None:
    calls: list[str] = []

    class CountingPattern:
        def __init__(self, hit: bool) -> None:
            self.hit = hit

        def search(self, text: str) -> bool:
            calls.append(text)
            return self.hit

    guard = ContentGuard([CountingPattern(True), CountingPattern(True)])  # type: ignore[list-item]
    assert guard.is_blocked("anything") is True
    assert calls == ["anything"]

    plain = ContentGuard([re.compile("forbidden", re.IGNORECASE)])
    assert plain.is_blocked("FORBIDDEN fruit") is True
    assert plain.is_blocked("how do I hack a system") is False
