from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

DUPLICATE_MESSAGE = "-# stop spamming twin im only replying once"
COOLDOWN_MESSAGE_TEMPLATE = "-# chill for {seconds:g}s then try again"


@dataclass(slots=True)
class RateLimitEntry:
    last_at: float = 0.0
    last_prompt: str = ""
    duplicate_count: int = 0


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allow: bool
    message: str | None = None


class RateLimiter:
    """Per-identity cooldown with a one-shot allowance for identical resubmits.

    Entries idle longer than `idle_ttl_seconds` are evicted by a sweep that runs
    from `check` at most once per `sweep_interval_seconds`.
    """

    def __init__(
        self,
        cooldown_seconds: float = 3.0,
        idle_ttl_seconds: float = 3600.0,
        *,
        sweep_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cooldown_seconds = max(0.0, float(cooldown_seconds))
        self.idle_ttl_seconds = max(self.cooldown_seconds, float(idle_ttl_seconds))
        self.sweep_interval_seconds = max(1.0, float(sweep_interval_seconds))
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}
        self._last_sweep_at: float | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def _sweep(self, now: float) -> None:
        if self._last_sweep_at is not None and now - self._last_sweep_at < self.sweep_interval_seconds:
            return
        self._last_sweep_at = now
        stale = [key for key, entry in self._entries.items() if now - entry.last_at > self.idle_ttl_seconds]
        for key in stale:
            self._entries.pop(key, None)

    def check(self, identity: str, prompt_key: str) -> RateLimitDecision:
        now = self._clock()
        self._sweep(now)
        entry = self._entries.get(identity)
        if entry is None:
            self._entries[identity] = RateLimitEntry(last_at=now, last_prompt=prompt_key)
            return RateLimitDecision(True)

        if now - entry.last_at < self.cooldown_seconds:
            if prompt_key != entry.last_prompt:
                return RateLimitDecision(False, COOLDOWN_MESSAGE_TEMPLATE.format(seconds=self.cooldown_seconds))
            entry.duplicate_count += 1
            if entry.duplicate_count > 1:
                return RateLimitDecision(False, DUPLICATE_MESSAGE)
            entry.last_at = now
            return RateLimitDecision(True)

        entry.last_at = now
        entry.last_prompt = prompt_key
        entry.duplicate_count = 0
        return RateLimitDecision(True)

    def reset(self, identity: str) -> None:
        self._entries.pop(identity, None)
