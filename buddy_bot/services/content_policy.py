from __future__ import annotations

import re
from typing import Iterable

REFUSAL_MESSAGE = "nah, not touching that."

DEFAULT_BANNED_PATTERNS: tuple[str, ...] = (
    r"\b(?:nazi|kkk)\b",
    r"\b(?:faggot|tranny|nigger|cuntface)\b",
)


class ContentPolicy:
    """Static banned-term matcher applied before anything reaches the model."""

    def __init__(self, patterns: Iterable[str] = DEFAULT_BANNED_PATTERNS) -> None:
        self._patterns = tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)

    def is_banned(self, text: str | None) -> bool:
        if not text:
            return False
        return any(pattern.search(text) for pattern in self._patterns)

    def any_banned(self, *texts: str | None) -> bool:
        return any(self.is_banned(text) for text in texts)
