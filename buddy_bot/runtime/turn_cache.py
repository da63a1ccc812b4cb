from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable


@dataclass(frozen=True, slots=True)
class Turn:
    role: str
    content: str

    def as_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class _TurnWindow:
    turns: list[Turn] = field(default_factory=list)
    touched_at: float = 0.0


class TurnCache:
    """Short-lived per-identity conversation window; empty is a normal state, never an error."""

    def __init__(
        self,
        max_turns: int = 6,
        ttl_seconds: float = 3600.0,
        max_identities: int = 1000,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_turns = max(1, int(max_turns))
        self.ttl_seconds = max(1.0, float(ttl_seconds))
        self.max_identities = max(1, int(max_identities))
        self._clock = clock
        self._windows: OrderedDict[str, _TurnWindow] = OrderedDict()

    def __len__(self) -> int:
        return len(self._windows)

    def _expired(self, window: _TurnWindow, now: float) -> bool:
        return now - window.touched_at > self.ttl_seconds

    def _evict(self, now: float) -> None:
        # Windows are kept in activity order, oldest first.
        while self._windows:
            oldest_key = next(iter(self._windows))
            if not self._expired(self._windows[oldest_key], now) and len(self._windows) <= self.max_identities:
                break
            self._windows.pop(oldest_key)

    def add_turn(self, identity: str, role: str, content: str) -> list[Turn]:
        now = self._clock()
        window = self._windows.pop(identity, None)
        if window is None or self._expired(window, now):
            window = _TurnWindow()
        window.turns.append(Turn(role=role, content=content))
        del window.turns[: -self.max_turns]
        window.touched_at = now
        self._windows[identity] = window
        self._evict(now)
        return list(window.turns)

    def get_turns(self, identity: str) -> list[Turn]:
        window = self._windows.get(identity)
        if window is None:
            return []
        if self._expired(window, self._clock()):
            self._windows.pop(identity, None)
            return []
        return list(window.turns)

    def clear(self, identity: str) -> None:
        self._windows.pop(identity, None)

    def clear_all(self) -> None:
        self._windows.clear()
