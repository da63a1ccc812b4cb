from __future__ import annotations

import asyncio
import contextlib
import logging

from .config import Settings
from .dialogue.assembler import ContextAssembler
from .discord.client import BuddyDiscordBot
from .memory.store import MemoryStore
from .memory.summaries import SummaryPolicy
from .prompts.context import load_system_prompt
from .runtime import EditTracker, RateLimiter, TurnCache
from .services.completion_client import CompletionClient
from .services.content_policy import ContentPolicy
from .services.intent_router import IntentRouter
from .services.media import MediaFetcher

logger = logging.getLogger("buddy_bot")


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("discord.http").setLevel(logging.WARNING)
    logging.getLogger("discord.gateway").setLevel(logging.WARNING)


def build_bot(settings: Settings) -> BuddyDiscordBot:
    policy = SummaryPolicy(
        user_every=settings.summary_user_every,
        channel_every=settings.summary_channel_every,
        guild_every=settings.summary_guild_every,
        stale_after_ms=settings.summary_stale_after_seconds * 1000,
    )
    memory = MemoryStore(
        settings.sqlite_path,
        policy=policy,
        known_users_window_days=settings.known_users_window_days,
    )
    completion = CompletionClient(
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
        model=settings.llm_model,
        vision_model=settings.llm_vision_model,
        timeout_seconds=settings.llm_timeout_seconds,
        system_prompt=load_system_prompt(settings.system_prompt, settings.system_prompt_file),
        temperature=settings.llm_temperature,
        top_p=settings.llm_top_p,
        presence_penalty=settings.llm_presence_penalty,
        frequency_penalty=settings.llm_frequency_penalty,
        max_tokens=settings.llm_max_tokens,
        retry_delay_seconds=settings.llm_retry_delay_seconds,
    )
    media = MediaFetcher(
        max_image_bytes=settings.max_image_bytes,
        timeout_seconds=settings.media_timeout_seconds,
    )
    rate_limiter = RateLimiter(
        cooldown_seconds=settings.rate_limit_cooldown_seconds,
        idle_ttl_seconds=settings.rate_limit_idle_ttl_seconds,
    )
    turn_cache = TurnCache(
        max_turns=settings.turn_window,
        ttl_seconds=settings.turn_ttl_seconds,
        max_identities=settings.turn_max_identities,
    )
    content_policy = ContentPolicy()
    assembler = ContextAssembler(
        memory,
        completion,
        rate_limiter,
        turn_cache,
        media,
        content_policy,
        bot_name=settings.bot_name,
        max_images=settings.max_images,
        recent_user_limit=settings.recent_user_messages,
        recent_channel_limit=settings.recent_channel_messages,
        known_users_limit=settings.known_users_limit,
    )
    return BuddyDiscordBot(
        settings=settings,
        memory=memory,
        completion=completion,
        media=media,
        assembler=assembler,
        turn_cache=turn_cache,
        edit_tracker=EditTracker(
            window_seconds=settings.edit_window_seconds,
            throttle_seconds=settings.edit_throttle_seconds,
        ),
        content_policy=content_policy,
        intent_router=IntentRouter(memory) if settings.intent_router_enabled else None,
    )


async def _run_bot(settings: Settings) -> None:
    bot = build_bot(settings)
    try:
        async with bot:
            await bot.start(settings.discord_token)
    finally:
        if not bot.is_closed():
            with contextlib.suppress(Exception):
                await asyncio.wait_for(bot.close(), timeout=10.0)


def main() -> None:
    configure_logging()
    settings = Settings.from_env()
    settings.validate()
    try:
        asyncio.run(_run_bot(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
