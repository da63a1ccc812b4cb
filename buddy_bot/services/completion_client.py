from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

import aiohttp

from ..prompts.context import (
    build_channel_summary_block,
    build_guild_summary_block,
    build_known_users_block,
    build_profile_summary_block,
    build_recent_channel_messages_block,
    build_recent_user_messages_block,
    build_server_info_block,
    build_user_info_block,
    empty_reply,
    fallback_error_line,
    load_system_prompt,
    render_system_prompt,
    vision_unsupported_line,
)

logger = logging.getLogger("buddy_bot.completion")

_VISION_ERROR_RE = re.compile(r"image|vision|multimodal|unsupported|not\s+enabled", re.IGNORECASE)


class VisionUnsupportedError(RuntimeError):
    pass


@dataclass(slots=True)
class CompletionRequest:
    bot_name: str
    user_content: str
    profile_summary: str = ""
    recent_turns: Sequence[dict[str, str]] = field(default_factory=list)
    reply_context: str = ""
    image_inputs: Sequence[str] = field(default_factory=list)
    recent_user_messages: Sequence[str] = field(default_factory=list)
    recent_channel_messages: Sequence[str] = field(default_factory=list)
    channel_summary: str = ""
    guild_summary: str = ""
    known_users: Sequence[str] = field(default_factory=list)
    server_context: str = ""
    user_context: str = ""


def normalize_base_url(base_url: str) -> str:
    url = str(base_url or "").strip().rstrip("/")
    while url.endswith("/v1"):
        url = url[: -len("/v1")].rstrip("/")
    return url


class CompletionClient:
    """OpenAI-compatible chat-completions client. `complete` never raises except on cancellation."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        vision_model: str = "",
        timeout_seconds: float = 60.0,
        *,
        system_prompt: str = "",
        temperature: float = 0.3,
        top_p: float = 0.9,
        presence_penalty: float = 0.1,
        frequency_penalty: float = 0.2,
        max_tokens: int = 4096,
        retry_delay_seconds: float = 0.3,
    ) -> None:
        self.api_key = api_key
        self.base_url = normalize_base_url(base_url)
        self.model = model
        self.vision_model = vision_model or model
        self.timeout = aiohttp.ClientTimeout(total=max(1.0, float(timeout_seconds)))
        self.system_prompt = system_prompt or load_system_prompt()
        self.temperature = float(temperature)
        self.top_p = float(top_p)
        self.presence_penalty = float(presence_penalty)
        self.frequency_penalty = float(frequency_penalty)
        self.max_tokens = max(1, int(max_tokens))
        self.retry_delay_seconds = max(0.0, float(retry_delay_seconds))
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _endpoint(self) -> str:
        return f"{self.base_url}/v1/chat/completions"

    def build_messages(self, request: CompletionRequest) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": render_system_prompt(self.system_prompt, request.bot_name)}
        ]

        def system(content: str) -> None:
            messages.append({"role": "system", "content": content})

        if request.server_context:
            system(build_server_info_block(request.server_context))
        if request.user_context:
            system(build_user_info_block(request.user_context))
        if request.reply_context:
            system(request.reply_context)
        if request.profile_summary:
            system(build_profile_summary_block(request.profile_summary))
        if request.recent_user_messages:
            system(build_recent_user_messages_block(request.recent_user_messages))
        if request.channel_summary:
            system(build_channel_summary_block(request.channel_summary))
        if request.guild_summary:
            system(build_guild_summary_block(request.guild_summary))
        if request.known_users:
            system(build_known_users_block(request.known_users))
        if request.recent_channel_messages:
            system(build_recent_channel_messages_block(request.recent_channel_messages))

        for turn in request.recent_turns:
            messages.append({"role": turn["role"], "content": turn["content"]})

        if request.image_inputs:
            parts: list[dict[str, Any]] = [{"type": "text", "text": request.user_content}]
            parts.extend(
                {"type": "image_url", "image_url": {"url": url, "detail": "high"}} for url in request.image_inputs
            )
            messages.append({"role": "user", "content": parts})
        else:
            messages.append({"role": "user", "content": request.user_content})
        return messages

    def build_payload(self, request: CompletionRequest) -> dict[str, Any]:
        return {
            "model": self.vision_model if request.image_inputs else self.model,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "presence_penalty": self.presence_penalty,
            "frequency_penalty": self.frequency_penalty,
            "max_tokens": self.max_tokens,
            "messages": self.build_messages(request),
        }

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            return ""
        message = choices[0].get("message") or {}
        content = message.get("content")
        return content.strip() if isinstance(content, str) else ""

    async def _call_once(self, request: CompletionRequest) -> str:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        async with self._session.post(self._endpoint(), json=self.build_payload(request), headers=headers) as response:
            text = await response.text()
            if response.status != 200:
                if request.image_inputs and _VISION_ERROR_RE.search(text):
                    raise VisionUnsupportedError(text)
                raise RuntimeError(f"LLM error {response.status}: {text}")
        data = json.loads(text)
        return self._extract_text(data) or empty_reply()

    async def complete(self, request: CompletionRequest) -> str:
        for attempt in (1, 2):
            try:
                return await self._call_once(request)
            except asyncio.CancelledError:
                raise
            except VisionUnsupportedError:
                return vision_unsupported_line()
            except Exception:
                label = "first attempt" if attempt == 1 else "retry"
                logger.exception("LLM request failed (%s)", label)
            if attempt == 1:
                await asyncio.sleep(self.retry_delay_seconds)
        return fallback_error_line()
