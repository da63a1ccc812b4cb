from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..prompts.context import build_video_note, placeholder_prompt
from ..runtime import RateLimiter, TurnCache
from ..services.completion_client import CompletionClient, CompletionRequest
from ..services.content_policy import REFUSAL_MESSAGE, ContentPolicy
from ..services.media import MediaFetcher

logger = logging.getLogger("buddy_bot.dialogue")

T = TypeVar("T")

MAX_VIDEO_NOTES = 3


@dataclass(slots=True)
class PromptRequest:
    user_id: str
    channel_id: str | None
    guild_id: str | None
    prompt: str = ""
    reply_context_text: str = ""
    image_urls: list[str] = field(default_factory=list)
    video_urls: list[str] = field(default_factory=list)
    allow_memory: bool = False
    already_recorded: bool = False
    display_name: str | None = None

    def rate_key(self) -> str:
        return "|".join([self.prompt, self.reply_context_text, *self.image_urls, *self.video_urls])


@dataclass(slots=True)
class _MemoryContext:
    profile_summary: str = ""
    recent_user_messages: list[str] = field(default_factory=list)
    recent_channel_messages: list[str] = field(default_factory=list)
    channel_summary: str = ""
    guild_summary: str = ""
    known_users: list[str] = field(default_factory=list)
    server_context: str = ""
    user_context: str = ""


def build_memory_line(request: PromptRequest) -> str:
    """Text stored for a turn that may carry no words of its own."""
    content = request.prompt
    images = len(request.image_urls)
    videos = len(request.video_urls)
    if images:
        content = f"{content} [shared {images} image(s)]" if content else f"User sent {images} image(s)."
    if videos:
        content = f"{content} [shared {videos} video(s)]" if content else f"User sent {videos} video(s)."
    if not content and request.reply_context_text:
        content = "User replied to a message."
    return content


class ContextAssembler:
    """Merges memory, the turn window, media and the prompt into one completion call."""

    def __init__(
        self,
        memory: Any,
        completion: CompletionClient,
        rate_limiter: RateLimiter,
        turn_cache: TurnCache,
        media: MediaFetcher,
        content_policy: ContentPolicy | None = None,
        *,
        bot_name: str = "Buddy",
        max_images: int = 4,
        recent_user_limit: int = 3,
        recent_channel_limit: int = 3,
        known_users_limit: int = 12,
    ) -> None:
        self.memory = memory
        self.completion = completion
        self.rate_limiter = rate_limiter
        self.turn_cache = turn_cache
        self.media = media
        self.content_policy = content_policy or ContentPolicy()
        self.bot_name = bot_name
        self.max_images = max(0, int(max_images))
        self.recent_user_limit = max(0, int(recent_user_limit))
        self.recent_channel_limit = max(0, int(recent_channel_limit))
        self.known_users_limit = max(0, int(known_users_limit))

    async def handle(self, request: PromptRequest) -> str:
        decision = self.rate_limiter.check(request.user_id, request.rate_key())
        if not decision.allow:
            return decision.message or ""
        if self.content_policy.any_banned(request.prompt, request.reply_context_text):
            return REFUSAL_MESSAGE

        if request.allow_memory and not request.already_recorded:
            memory_line = build_memory_line(request)
            if memory_line:
                await self.memory.record_message(
                    request.user_id,
                    request.channel_id,
                    request.guild_id,
                    memory_line,
                    display_name=request.display_name,
                )

        context = await self._gather_memory(request) if request.allow_memory else _MemoryContext()
        image_inputs = await self._resolve_images(request.image_urls)
        user_content = self._effective_prompt(request, has_images=bool(image_inputs))

        prior_turns: list[dict[str, str]] = []
        if request.allow_memory:
            window = self.turn_cache.add_turn(request.user_id, "user", user_content)
            prior_turns = [turn.as_message() for turn in window[:-1]]

        reply = await self.completion.complete(
            CompletionRequest(
                bot_name=self.bot_name,
                user_content=user_content,
                profile_summary=context.profile_summary,
                recent_turns=prior_turns,
                reply_context=request.reply_context_text,
                image_inputs=image_inputs,
                recent_user_messages=context.recent_user_messages,
                recent_channel_messages=context.recent_channel_messages,
                channel_summary=context.channel_summary,
                guild_summary=context.guild_summary,
                known_users=context.known_users,
                server_context=context.server_context,
                user_context=context.user_context,
            )
        )
        if request.allow_memory:
            self.turn_cache.add_turn(request.user_id, "assistant", reply)
        return reply

    async def _read(self, label: str, default: T, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except Exception:
            logger.warning("Memory read failed (%s); continuing without it", label, exc_info=True)
            return default

    async def _gather_memory(self, request: PromptRequest) -> _MemoryContext:
        memory = self.memory
        user_id = request.user_id
        channel_id = request.channel_id
        guild_id = request.guild_id
        ctx = _MemoryContext()

        ctx.profile_summary = await self._read("profile summary", "", lambda: memory.get_profile_summary(user_id))
        if self.recent_user_limit:
            ctx.recent_user_messages = await self._read(
                "recent user messages", [], lambda: memory.get_recent_messages(user_id, self.recent_user_limit)
            )
        if channel_id and self.recent_channel_limit:
            ctx.recent_channel_messages = await self._read(
                "recent channel messages",
                [],
                lambda: memory.get_recent_channel_messages(channel_id, user_id, self.recent_channel_limit),
            )
        if channel_id:
            ctx.channel_summary = await self._read(
                "channel summary", "", lambda: memory.get_channel_summary(channel_id)
            )
        if guild_id:
            ctx.guild_summary = await self._read("guild summary", "", lambda: memory.get_guild_summary(guild_id))
            if self.known_users_limit:
                ctx.known_users = await self._read(
                    "known users", [], lambda: memory.get_guild_user_names(guild_id, self.known_users_limit)
                )
            ctx.server_context = await self._read(
                "server context", "", lambda: memory.get_server_context(guild_id)
            )
            ctx.user_context = await self._read(
                "user context", "", lambda: memory.get_user_context(guild_id, user_id)
            )
        return ctx

    async def _resolve_images(self, urls: list[str]) -> list[str]:
        inputs: list[str] = []
        for url in urls[: self.max_images]:
            data_url: Optional[str] = await self.media.fetch_image_as_data_url(url)
            if data_url:
                inputs.append(data_url)
            else:
                logger.warning("Image input dropped (failed to resolve): %s", url)
        return inputs

    @staticmethod
    def _effective_prompt(request: PromptRequest, *, has_images: bool) -> str:
        prompt = request.prompt.strip()
        if not prompt:
            if has_images:
                prompt = placeholder_prompt("images")
            elif request.video_urls:
                prompt = placeholder_prompt("videos")
            elif request.reply_context_text:
                prompt = placeholder_prompt("reply")
        if request.video_urls:
            note = build_video_note(request.video_urls[:MAX_VIDEO_NOTES])
            prompt = f"{prompt}\n{note}" if prompt else note
        return prompt or placeholder_prompt("empty")
