from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable


@dataclass(slots=True)
class TrackedReply:
    bot_reply_id: int
    created_at: float
    last_edit_at: float | None = None


class EditTracker:
    """Maps a user's message to the bot reply it produced so edits can rewrite that reply."""

    def __init__(
        self,
        window_seconds: float = 60.0,
        throttle_seconds: float = 2.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = max(1.0, float(window_seconds))
        self.throttle_seconds = max(0.0, float(throttle_seconds))
        self._clock = clock
        self._replies: dict[int, TrackedReply] = {}

    def __len__(self) -> int:
        return len(self._replies)

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, entry in self._replies.items() if now - entry.created_at > self.window_seconds]
        for key in expired:
            self._replies.pop(key, None)

    def track_reply(self, user_message_id: int, bot_reply_id: int) -> None:
        now = self._clock()
        self._purge_expired(now)
        self._replies[int(user_message_id)] = TrackedReply(bot_reply_id=int(bot_reply_id), created_at=now)

    def should_handle_edit(self, user_message_id: int) -> bool:
        now = self._clock()
        self._purge_expired(now)
        entry = self._replies.get(int(user_message_id))
        if entry is None:
            return False
        if entry.last_edit_at is not None and now - entry.last_edit_at < self.throttle_seconds:
            return False
        entry.last_edit_at = now
        return True

    def get_reply_id(self, user_message_id: int) -> int | None:
        entry = self._replies.get(int(user_message_id))
        return entry.bot_reply_id if entry is not None else None
