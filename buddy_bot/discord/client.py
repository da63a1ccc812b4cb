from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable

import discord
from discord import app_commands

from ..config import Settings
from ..dialogue.assembler import ContextAssembler
from ..memory.store import MemoryStore
from ..runtime import EditTracker, TurnCache
from ..services.completion_client import CompletionClient
from ..services.content_policy import ContentPolicy
from ..services.intent_router import IntentRouter
from ..services.media import MediaFetcher
from .mixins.commands_mixin import CommandsMixin
from .mixins.guild_sync_mixin import GuildSyncMixin
from .mixins.identity_mixin import IdentityMixin
from .mixins.message_mixin import MessageMixin

logger = logging.getLogger("buddy_bot")

GENERIC_FAILURE_NOTICE = "something broke on my end, try again in a sec."


class BuddyDiscordBot(
    MessageMixin,
    CommandsMixin,
    GuildSyncMixin,
    IdentityMixin,
    discord.Client,
):
    def __init__(
        self,
        settings: Settings,
        memory: MemoryStore,
        completion: CompletionClient,
        media: MediaFetcher,
        assembler: ContextAssembler,
        turn_cache: TurnCache,
        edit_tracker: EditTracker,
        content_policy: ContentPolicy,
        intent_router: IntentRouter | None = None,
    ) -> None:
        intents = discord.Intents.default()
        intents.message_content = settings.discord_message_content_intent
        intents.members = settings.discord_members_intent

        super().__init__(intents=intents)

        self.settings = settings
        self.memory = memory
        self.completion = completion
        self.media = media
        self.assembler = assembler
        self.turn_cache = turn_cache
        self.edit_tracker = edit_tracker
        self.content_policy = content_policy
        self.intent_router = intent_router
        self.tree = app_commands.CommandTree(self)
        self._register_commands()

    async def setup_hook(self) -> None:
        await self.memory.init()
        await self.completion.start()
        await self.media.start()
        try:
            synced = await self.tree.sync()
        except discord.HTTPException as exc:
            logger.warning("Slash command sync failed: %s", exc)
        else:
            logger.info("Synced %s slash commands", len(synced))

    async def close(self) -> None:
        await self._run_shutdown_step("media.close", self.media.close(), timeout=6.0)
        await self._run_shutdown_step("completion.close", self.completion.close(), timeout=6.0)
        await self._run_shutdown_step("discord.Client.close", super().close(), timeout=6.0)

    async def _run_shutdown_step(self, label: str, coro: Awaitable[Any], *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    async def _safe_execute(self, label: str, coro: Awaitable[Any], *, notify: Any = None) -> None:
        """Run one event or command handler; failures are logged and never reach the gateway loop."""
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except discord.NotFound as exc:
            # Expired interactions and deleted messages.
            logger.warning("Handler %s lost its Discord target: %s", label, exc)
        except Exception:
            logger.exception("Handler error (%s)", label)
            if notify is not None:
                await self._notify_failure(label, notify)

    async def _notify_failure(self, label: str, target: Any) -> None:
        try:
            if isinstance(target, discord.Interaction):
                if target.response.is_done():
                    await target.followup.send(GENERIC_FAILURE_NOTICE, ephemeral=True)
                else:
                    await target.response.send_message(GENERIC_FAILURE_NOTICE, ephemeral=True)
            else:
                await target.send(GENERIC_FAILURE_NOTICE)
        except discord.HTTPException as exc:
            logger.warning("Failed to send error notice for %s: %s", label, exc)

    async def on_ready(self) -> None:
        if self.user:
            logger.info("Connected as %s (%s)", self.user, self.user.id)
        await self._sync_all_guilds()
