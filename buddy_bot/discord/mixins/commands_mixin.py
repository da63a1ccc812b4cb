from __future__ import annotations

import logging
import time
from typing import Optional

import discord
from discord import app_commands

from ...dialogue.assembler import PromptRequest
from ...services.content_policy import REFUSAL_MESSAGE
from ..common import chunk_text, truncate

logger = logging.getLogger("buddy_bot")

HOUR_MS = 60 * 60 * 1000
PURGE_WINDOWS_MS: dict[str, int | None] = {
    "1h": HOUR_MS,
    "6h": 6 * HOUR_MS,
    "12h": 12 * HOUR_MS,
    "24h": 24 * HOUR_MS,
    "7d": 7 * 24 * HOUR_MS,
    "30d": 30 * 24 * HOUR_MS,
    "all": None,
}
PURGE_LABELS = {
    "1h": "1 hour",
    "6h": "6 hours",
    "12h": "12 hours",
    "24h": "24 hours",
    "7d": "7 days",
    "30d": "30 days",
    "all": "all time",
}
BULK_DELETE_MAX_AGE_MS = 14 * 24 * HOUR_MS
BULK_DELETE_LIMIT = 100

_ON_OFF = [app_commands.Choice(name="on", value="on"), app_commands.Choice(name="off", value="off")]
_LOBOTOMY_SCOPES = [
    app_commands.Choice(name="me", value="me"),
    app_commands.Choice(name="all", value="all"),
]
_PURGE_CHOICES = [app_commands.Choice(name=label, value=key) for key, label in PURGE_LABELS.items()]


class CommandsMixin:
    """Slash command handlers. Each callback is wrapped by `_safe_execute`."""

    def _register_commands(self) -> None:
        tree: app_commands.CommandTree = self.tree
        bot = self

        @tree.command(name="ask", description="Ask the bot a question")
        @app_commands.describe(
            question="What do you want to ask?",
            ghost="Make the response visible only to you",
        )
        async def ask(interaction: discord.Interaction, question: str, ghost: Optional[bool] = None) -> None:
            await bot._safe_execute("ask", bot._cmd_ask(interaction, question, ghost), notify=interaction)

        memory_group = app_commands.Group(name="memory", description="Manage your memory preferences")

        @memory_group.command(name="on", description="Enable memory")
        async def memory_on(interaction: discord.Interaction) -> None:
            await bot._safe_execute("memory on", bot._cmd_memory_toggle(interaction, True), notify=interaction)

        @memory_group.command(name="off", description="Disable memory")
        async def memory_off(interaction: discord.Interaction) -> None:
            await bot._safe_execute("memory off", bot._cmd_memory_toggle(interaction, False), notify=interaction)

        @memory_group.command(name="view", description="View your stored summary")
        async def memory_view(interaction: discord.Interaction) -> None:
            await bot._safe_execute("memory view", bot._cmd_memory_view(interaction), notify=interaction)

        @memory_group.command(name="forget", description="Forget your history")
        async def memory_forget(interaction: discord.Interaction) -> None:
            await bot._safe_execute("memory forget", bot._cmd_lobotomize(interaction, "me"), notify=interaction)

        tree.add_command(memory_group)

        @tree.command(name="autoreply", description="Reply to all your messages in servers without a mention")
        @app_commands.choices(mode=_ON_OFF)
        async def autoreply(interaction: discord.Interaction, mode: app_commands.Choice[str]) -> None:
            await bot._safe_execute("autoreply", bot._cmd_autoreply(interaction, mode.value == "on"), notify=interaction)

        @tree.command(name="lobotomize", description="Wipe your memory (or everything, admins only)")
        @app_commands.choices(scope=_LOBOTOMY_SCOPES)
        async def lobotomize(
            interaction: discord.Interaction,
            scope: Optional[app_commands.Choice[str]] = None,
        ) -> None:
            value = scope.value if scope is not None else "me"
            await bot._safe_execute("lobotomize", bot._cmd_lobotomize(interaction, value), notify=interaction)

        @tree.command(name="memory-allow", description="Allow memory writes in a channel")
        @app_commands.describe(channel="Channel to allow")
        @app_commands.default_permissions(manage_guild=True)
        @app_commands.guild_only()
        async def memory_allow(interaction: discord.Interaction, channel: discord.abc.GuildChannel) -> None:
            await bot._safe_execute(
                "memory-allow", bot._cmd_channel_toggle(interaction, channel, True), notify=interaction
            )

        @tree.command(name="memory-deny", description="Deny memory writes in a channel")
        @app_commands.describe(channel="Channel to deny")
        @app_commands.default_permissions(manage_guild=True)
        @app_commands.guild_only()
        async def memory_deny(interaction: discord.Interaction, channel: discord.abc.GuildChannel) -> None:
            await bot._safe_execute(
                "memory-deny", bot._cmd_channel_toggle(interaction, channel, False), notify=interaction
            )

        @tree.command(name="memory-list", description="List channels with memory permissions")
        @app_commands.default_permissions(manage_guild=True)
        @app_commands.guild_only()
        async def memory_list(interaction: discord.Interaction) -> None:
            await bot._safe_execute("memory-list", bot._cmd_memory_list(interaction), notify=interaction)

        @tree.command(name="memory-reset-guild", description="Reset memory for this server")
        @app_commands.default_permissions(manage_guild=True)
        @app_commands.guild_only()
        async def memory_reset_guild(interaction: discord.Interaction) -> None:
            await bot._safe_execute("memory-reset-guild", bot._cmd_reset_guild(interaction), notify=interaction)

        @tree.command(name="memory-reset-channel", description="Reset memory for a specific channel")
        @app_commands.describe(channel="Channel to reset")
        @app_commands.default_permissions(manage_guild=True)
        @app_commands.guild_only()
        async def memory_reset_channel(interaction: discord.Interaction, channel: discord.abc.GuildChannel) -> None:
            await bot._safe_execute(
                "memory-reset-channel", bot._cmd_reset_channel(interaction, channel), notify=interaction
            )

        @tree.command(name="memory-reset-user", description="Reset memory for a user")
        @app_commands.describe(user="User to reset")
        @app_commands.default_permissions(manage_guild=True)
        @app_commands.guild_only()
        async def memory_reset_user(interaction: discord.Interaction, user: discord.User) -> None:
            await bot._safe_execute("memory-reset-user", bot._cmd_reset_user(interaction, user), notify=interaction)

        @tree.command(name="purge", description="Delete bot messages in a channel within a time period")
        @app_commands.describe(timeframe="Time period to purge messages from", channel="Channel to purge")
        @app_commands.choices(timeframe=_PURGE_CHOICES)
        @app_commands.default_permissions(manage_guild=True)
        @app_commands.guild_only()
        async def purge(
            interaction: discord.Interaction,
            timeframe: app_commands.Choice[str],
            channel: discord.TextChannel,
        ) -> None:
            await bot._safe_execute("purge", bot._cmd_purge(interaction, timeframe.value, channel), notify=interaction)

        @tree.command(name="serverinfo", description="Show cached information about this server")
        @app_commands.guild_only()
        async def serverinfo(interaction: discord.Interaction) -> None:
            await bot._safe_execute("serverinfo", bot._cmd_serverinfo(interaction), notify=interaction)

        @tree.command(name="mydata", description="Show what the bot remembers about you")
        async def mydata(interaction: discord.Interaction) -> None:
            await bot._safe_execute("mydata", bot._cmd_mydata(interaction), notify=interaction)

    async def _cmd_ask(self, interaction: discord.Interaction, question: str, ghost: bool | None) -> None:
        ephemeral = self.settings.ask_ghost_default if ghost is None else bool(ghost)
        if self.content_policy.is_banned(question):
            await interaction.response.send_message(REFUSAL_MESSAGE, ephemeral=True)
            return

        gate = await self._memory_gate_for(
            interaction.user.id,
            interaction.channel_id,
            is_direct=interaction.guild is None,
        )
        await interaction.response.defer(ephemeral=ephemeral, thinking=True)

        guild_id = str(interaction.guild_id) if interaction.guild_id else None
        channel_id = str(interaction.channel_id) if interaction.channel_id else None
        display_name = self._display_name(interaction.user)
        recorded = False
        if gate.allow_memory and question.strip() and channel_id:
            await self.memory.record_message(
                str(interaction.user.id),
                channel_id,
                guild_id,
                question,
                display_name=display_name,
            )
            recorded = True

        reply = await self.assembler.handle(
            PromptRequest(
                user_id=str(interaction.user.id),
                channel_id=channel_id,
                guild_id=guild_id,
                prompt=question.strip(),
                allow_memory=gate.allow_memory,
                already_recorded=recorded,
                display_name=display_name,
            )
        )
        for chunk in chunk_text(reply or "...", 1900):
            sent = await interaction.followup.send(chunk, ephemeral=ephemeral, wait=True)
            if not ephemeral and channel_id:
                await self.memory.track_bot_message(str(sent.id), channel_id, guild_id)

    async def _cmd_memory_toggle(self, interaction: discord.Interaction, enabled: bool) -> None:
        await self.memory.set_user_memory(str(interaction.user.id), enabled)
        await interaction.response.send_message("Memory is on." if enabled else "Memory is off.", ephemeral=True)

    async def _cmd_memory_view(self, interaction: discord.Interaction) -> None:
        summary = await self.memory.view_memory(str(interaction.user.id))
        await interaction.response.send_message(truncate(summary, 1900), ephemeral=True)

    async def _cmd_autoreply(self, interaction: discord.Interaction, enabled: bool) -> None:
        await self.memory.set_user_autoreply(str(interaction.user.id), enabled)
        if enabled:
            status = "Auto-reply **enabled**. I'll respond to all your messages in servers."
        else:
            status = "Auto-reply **disabled**. You'll need to mention me."
        await interaction.response.send_message(status, ephemeral=True)

    def _can_manage_guild(self, interaction: discord.Interaction) -> bool:
        if self._is_super_admin(interaction.user.id):
            return True
        permissions = interaction.permissions
        return bool(interaction.guild is not None and permissions.manage_guild)

    async def _cmd_lobotomize(self, interaction: discord.Interaction, scope: str) -> None:
        user_id = str(interaction.user.id)
        if scope == "all":
            if not self._can_manage_guild(interaction):
                await interaction.response.send_message("Admin only.", ephemeral=True)
                return
            await self.memory.wipe_all_memory()
            self.turn_cache.clear_all()
            logger.warning("Full memory wipe requested by %s", user_id)
            await interaction.response.send_message(
                "**TOTAL LOBOTOMY COMPLETE** - all memory wiped across users, channels and servers."
            )
            return
        await self.memory.forget_user(user_id)
        self.turn_cache.clear(user_id)
        await interaction.response.send_message("Your memory has been wiped.", ephemeral=True)

    async def _cmd_channel_toggle(
        self,
        interaction: discord.Interaction,
        channel: discord.abc.GuildChannel,
        enabled: bool,
    ) -> None:
        if enabled:
            await self.memory.allow_channel(str(channel.id))
            text = f"Allowed memory in <#{channel.id}>."
        else:
            await self.memory.deny_channel(str(channel.id))
            text = f"Denied memory in <#{channel.id}>."
        await interaction.response.send_message(text, ephemeral=True)

    async def _cmd_memory_list(self, interaction: discord.Interaction) -> None:
        assert interaction.guild is not None
        guild_channel_ids = {str(channel.id) for channel in interaction.guild.channels}
        rows = [row for row in await self.memory.list_channels() if row["channel_id"] in guild_channel_ids]
        if not rows:
            await interaction.response.send_message("No channels configured in this server.", ephemeral=True)
            return
        lines = [f"- <#{row['channel_id']}>: {'allowed' if row['enabled'] else 'denied'}" for row in rows]
        await interaction.response.send_message(truncate("\n".join(lines), 1900), ephemeral=True)

    async def _cmd_reset_guild(self, interaction: discord.Interaction) -> None:
        await self.memory.reset_guild_memory(str(interaction.guild_id))
        await interaction.response.send_message("Server memory reset.", ephemeral=True)

    async def _cmd_reset_channel(self, interaction: discord.Interaction, channel: discord.abc.GuildChannel) -> None:
        await self.memory.reset_channel_memory(str(channel.id))
        await interaction.response.send_message(f"Memory reset for <#{channel.id}>.", ephemeral=True)

    async def _cmd_reset_user(self, interaction: discord.Interaction, user: discord.User) -> None:
        await self.memory.forget_user(str(user.id))
        self.turn_cache.clear(str(user.id))
        logger.info("Memory for user %s reset by %s in guild %s", user.id, interaction.user.id, interaction.guild_id)
        await interaction.response.send_message(
            f"Memory reset for {user.name}. This action has been logged.",
            ephemeral=True,
        )
        guild_name = interaction.guild.name if interaction.guild else "a server"
        try:
            await user.send(
                f"Your conversation memory and profile have been reset by an administrator in {guild_name}."
            )
        except discord.HTTPException as exc:
            logger.info("Could not DM user %s about memory reset: %s", user.id, exc)

    async def _cmd_purge(self, interaction: discord.Interaction, timeframe: str, channel: discord.TextChannel) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        now_ms = int(time.time() * 1000)
        window = PURGE_WINDOWS_MS.get(timeframe)
        since_ms = 0 if window is None else now_ms - window
        guild_id = str(interaction.guild_id) if interaction.guild_id else None

        message_ids = await self.memory.get_bot_messages_in_channel(str(channel.id), guild_id, since_ms)
        if not message_ids:
            await interaction.followup.send(
                f"No bot messages found in <#{channel.id}> within the specified timeframe.",
                ephemeral=True,
            )
            return

        deleted, failed = await self._purge_messages(channel, message_ids, since_ms=since_ms, now_ms=now_ms)
        text = f"Purged {deleted} bot message(s) from <#{channel.id}> ({PURGE_LABELS.get(timeframe, timeframe)})."
        if failed:
            text += f"\n{failed} message(s) could not be deleted (already removed or no permission)."
        await interaction.followup.send(text, ephemeral=True)

    async def _purge_messages(
        self,
        channel: discord.TextChannel,
        message_ids: list[str],
        *,
        since_ms: int,
        now_ms: int,
    ) -> tuple[int, int]:
        can_bulk = since_ms >= now_ms - BULK_DELETE_MAX_AGE_MS and 2 <= len(message_ids) <= BULK_DELETE_LIMIT
        if can_bulk:
            try:
                await channel.delete_messages([discord.Object(id=int(message_id)) for message_id in message_ids])
            except discord.HTTPException as exc:
                logger.info("Bulk delete failed in %s, falling back to single deletes: %s", channel.id, exc)
            else:
                for message_id in message_ids:
                    await self.memory.delete_bot_message_record(message_id)
                return len(message_ids), 0

        deleted = 0
        failed = 0
        for message_id in message_ids:
            try:
                message = await channel.fetch_message(int(message_id))
                await message.delete()
            except discord.NotFound:
                failed += 1
                await self.memory.delete_bot_message_record(message_id)
            except discord.HTTPException as exc:
                failed += 1
                logger.info("Failed to delete message %s: %s", message_id, exc)
            else:
                deleted += 1
                await self.memory.delete_bot_message_record(message_id)
        return deleted, failed

    async def _cmd_serverinfo(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        assert guild is not None
        roles = await self.memory.get_guild_roles(str(guild.id))
        lines = [
            f"**{guild.name}**",
            "",
            f"Members: {guild.member_count or 0}",
            f"Owner: <@{guild.owner_id}>",
            f"Created: <t:{int(guild.created_at.timestamp())}:D>",
        ]
        if roles:
            top = ", ".join(str(role["role_name"]) for role in roles[:10])
            more = f" (+{len(roles) - 10} more)" if len(roles) > 10 else ""
            lines.append(f"Top roles: {top}{more}")
        await interaction.response.send_message(truncate("\n".join(lines), 1900), ephemeral=True)

    async def _cmd_mydata(self, interaction: discord.Interaction) -> None:
        user_id = str(interaction.user.id)
        settings = await self.memory.get_user_settings(user_id)
        summary = await self.memory.get_profile_summary(user_id)
        recent = await self.memory.get_recent_messages(user_id, 5)

        parts = [
            "**Your Data**",
            "",
            f"Memory enabled: {'Yes' if settings['memory_enabled'] else 'No'}",
            f"Auto-reply: {'On' if settings['autoreply_enabled'] else 'Off'}",
            f"Total messages recorded: {settings['message_count']}",
        ]
        if summary:
            parts += ["", "**Profile:**", summary]
        if interaction.guild_id:
            user_context = await self.memory.get_user_context(str(interaction.guild_id), user_id)
            if user_context:
                parts += ["", "**Server Info:**", user_context]
        if recent:
            parts += ["", f"**Recent messages ({len(recent)}):**"]
            parts += [f"- {truncate(line, 60)}" for line in recent]
        parts += ["", "Use `/lobotomize` to clear all your data."]
        await interaction.response.send_message(truncate("\n".join(parts), 1900), ephemeral=True)
