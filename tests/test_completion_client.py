from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from buddy_bot.prompts.context import fallback_error_line, vision_unsupported_line  # noqa: E402
from buddy_bot.services.completion_client import (  # noqa: E402
    CompletionClient,
    CompletionRequest,
    normalize_base_url,
)


class _FakeResponse:
    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body

    async def __aenter__(self) -> "_FakeResponse":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None


class _FakeSession:
    closed = False

    def __init__(self, responses: list[_FakeResponse]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, object]] = []

    def post(self, url: str, *, json: dict[str, object], headers: dict[str, str]) -> _FakeResponse:
        self.calls.append({"url": url, "json": json, "headers": headers})
        return self._responses.pop(0)


def _client(**kwargs) -> CompletionClient:
    params = {"system_prompt": "You are {BOT_NAME}.", "retry_delay_seconds": 0}
    params.update(kwargs)
    return CompletionClient("key", "https://api.example.com/v1/", "text-model", "vision-model", **params)


def _ok(text: str) -> _FakeResponse:
    return _FakeResponse(200, json.dumps({"choices": [{"message": {"content": text}}]}))


def test_normalize_base_url_strips_version_suffix() -> None:
    assert normalize_base_url("https://api.x.ai/v1/") == "https://api.x.ai"
    assert normalize_base_url("https://api.x.ai") == "https://api.x.ai"
    assert _client()._endpoint() == "https://api.example.com/v1/chat/completions"


def test_build_messages_orders_context_blocks() -> None:
    request = CompletionRequest(
        bot_name="Buddy",
        user_content="what's up",
        profile_summary="Name: Sam",
        recent_turns=[{"role": "user", "content": "earlier"}, {"role": "assistant", "content": "reply"}],
        reply_context="Reply context from Bo: hi",
        recent_user_messages=["[Jan 1, 10:00] hello"],
        recent_channel_messages=["[Jan 1, 10:01] @Bo: yo"],
        channel_summary="Likes: tea",
        guild_summary="Likes: games",
        known_users=["Sam", "Bo"],
        server_context="Server: Test",
        user_context="User: Sam",
    )

    messages = _client().build_messages(request)

    assert [message["role"] for message in messages] == ["system"] * 10 + ["user", "assistant", "user"]
    contents = [message["content"] for message in messages]
    assert contents[0] == "You are Buddy."
    assert contents[1] == "Server info:\nServer: Test"
    assert contents[2] == "User info:\nUser: Sam"
    assert contents[3] == "Reply context from Bo: hi"
    assert contents[4] == "User profile summary: Name: Sam"
    assert contents[5] == "Recent user messages:\n- [Jan 1, 10:00] hello"
    assert contents[6] == "Channel summary: Likes: tea"
    assert contents[7] == "Server summary: Likes: games"
    assert contents[8] == "Known users in this server: Sam, Bo"
    assert contents[9] == "Recent channel messages:\n- [Jan 1, 10:01] @Bo: yo"
    assert contents[-1] == "what's up"


def test_build_payload_switches_to_vision_model_for_images() -> None:
    client = _client()
    plain = client.build_payload(CompletionRequest(bot_name="Buddy", user_content="hi"))
    vision = client.build_payload(
        CompletionRequest(bot_name="Buddy", user_content="look", image_inputs=["data:image/png;base64,AA=="])
    )

    assert plain["model"] == "text-model"
    assert plain["messages"] == [
        {"role": "system", "content": "You are Buddy."},
        {"role": "user", "content": "hi"},
    ]
    assert vision["model"] == "vision-model"
    assert vision["messages"][-1]["content"] == [
        {"type": "text", "text": "look"},
        {"type": "image_url", "image_url": {"url": "data:image/png;base64,AA==", "detail": "high"}},
    ]


def test_complete_posts_and_extracts_reply() -> None:
    client = _client()
    session = _FakeSession([_ok("  hello there  ")])
    client._session = session  # type: ignore[assignment]

    reply = asyncio.run(client.complete(CompletionRequest(bot_name="Buddy", user_content="hi")))

    assert reply == "hello there"
    assert session.calls[0]["url"] == "https://api.example.com/v1/chat/completions"
    assert session.calls[0]["headers"]["Authorization"] == "Bearer key"


def test_complete_substitutes_empty_reply() -> None:
    client = _client()
    client._session = _FakeSession([_ok("   ")])  # type: ignore[assignment]

    assert asyncio.run(client.complete(CompletionRequest(bot_name="Buddy", user_content="hi"))) == "idk tbh"


def test_complete_retries_once_then_falls_back() -> None:
    client = _client()
    client._session = _FakeSession([_FakeResponse(500, "boom"), _ok("second try")])  # type: ignore[assignment]
    assert asyncio.run(client.complete(CompletionRequest(bot_name="Buddy", user_content="hi"))) == "second try"

    failing = _client()
    failing._session = _FakeSession([_FakeResponse(500, "boom"), _FakeResponse(502, "still")])  # type: ignore[assignment]
    assert asyncio.run(failing.complete(CompletionRequest(bot_name="Buddy", user_content="hi"))) == fallback_error_line()


def test_complete_reports_vision_unsupported_without_retry() -> None:
    client = _client()
    session = _FakeSession([_FakeResponse(400, "model does not support image input")])
    client._session = session  # type: ignore[assignment]

    request = CompletionRequest(bot_name="Buddy", user_content="look", image_inputs=["data:image/png;base64,AA=="])
    assert asyncio.run(client.complete(request)) == vision_unsupported_line()
    assert len(session.calls) == 1


def test_complete_propagates_cancellation(monkeypatch: pytest.MonkeyPatch) -> None:
    client = _client()
    calls = {"count": 0}

    async def _cancelled(request: CompletionRequest) -> str:
        calls["count"] += 1
        raise asyncio.CancelledError()

    monkeypatch.setattr(client, "_call_once", _cancelled)

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(client.complete(CompletionRequest(bot_name="Buddy", user_content="hi")))
    assert calls["count"] == 1
