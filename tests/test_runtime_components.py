from __future__ import annotations

import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from buddy_bot.runtime import EditTracker, RateLimiter, TurnCache  # noqa: E402
from buddy_bot.runtime.rate_limiter import DUPLICATE_MESSAGE  # noqa: E402


class _Clock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_rate_limiter_allows_new_identity_and_rejects_different_prompt_in_cooldown() -> None:
    clock = _Clock()
    limiter = RateLimiter(cooldown_seconds=3.0, clock=clock)

    assert limiter.check("u1", "hello").allow is True
    clock.advance(1.0)
    decision = limiter.check("u1", "something else")

    assert decision.allow is False
    assert decision.message == "-# chill for 3s then try again"
    assert limiter.check("u2", "hello").allow is True


def test_rate_limiter_lets_one_duplicate_through_then_blocks() -> None:
    clock = _Clock()
    limiter = RateLimiter(cooldown_seconds=3.0, clock=clock)

    assert limiter.check("u1", "hi").allow is True
    clock.advance(0.5)
    assert limiter.check("u1", "hi").allow is True
    clock.advance(0.5)
    blocked = limiter.check("u1", "hi")

    assert blocked.allow is False
    assert blocked.message == DUPLICATE_MESSAGE


def test_rate_limiter_resets_after_cooldown_and_sweeps_idle_entries() -> None:
    clock = _Clock()
    limiter = RateLimiter(cooldown_seconds=3.0, idle_ttl_seconds=10.0, sweep_interval_seconds=1.0, clock=clock)

    limiter.check("u1", "hi")
    clock.advance(4.0)
    assert limiter.check("u1", "another").allow is True

    clock.advance(30.0)
    limiter.check("u2", "fresh")
    assert len(limiter) == 1


def test_turn_cache_keeps_latest_turns_only() -> None:
    cache = TurnCache(max_turns=3, clock=_Clock())

    for index in range(5):
        window = cache.add_turn("u1", "user", f"msg {index}")

    assert [turn.content for turn in window] == ["msg 2", "msg 3", "msg 4"]
    assert window[-1].as_message() == {"role": "user", "content": "msg 4"}


def test_turn_cache_expires_idle_windows_and_caps_identities() -> None:
    clock = _Clock()
    cache = TurnCache(max_turns=4, ttl_seconds=60.0, max_identities=2, clock=clock)

    cache.add_turn("a", "user", "one")
    clock.advance(120.0)
    assert cache.get_turns("a") == []

    cache.add_turn("a", "user", "x")
    cache.add_turn("b", "user", "y")
    cache.add_turn("c", "user", "z")

    assert len(cache) == 2
    assert cache.get_turns("a") == []
    assert [turn.content for turn in cache.get_turns("c")] == ["z"]

    cache.clear_all()
    assert len(cache) == 0


def test_edit_tracker_window_and_throttle() -> None:
    clock = _Clock()
    tracker = EditTracker(window_seconds=60.0, throttle_seconds=2.0, clock=clock)

    tracker.track_reply(10, 99)
    assert tracker.get_reply_id(10) == 99
    assert tracker.should_handle_edit(10) is True

    clock.advance(1.0)
    assert tracker.should_handle_edit(10) is False

    clock.advance(1.5)
    assert tracker.should_handle_edit(10) is True

    clock.advance(120.0)
    assert tracker.should_handle_edit(10) is False
    assert tracker.should_handle_edit(11) is False


def test_rate_limiter_reset_forgets_identity() -> None:
    clock = _Clock()
    limiter = RateLimiter(cooldown_seconds=3.0, clock=clock)

    limiter.check("u1", "hi")
    assert limiter.check("u1", "other").allow is False

    limiter.reset("u1")
    assert limiter.check("u1", "other").allow is True
