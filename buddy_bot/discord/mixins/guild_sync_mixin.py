from __future__ import annotations

import logging
from datetime import datetime

import discord

logger = logging.getLogger("buddy_bot")


def _to_ms(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


class GuildSyncMixin:
    """Mirrors guild metadata, roles and member roles into the memory store."""

    async def _sync_guild_metadata(self, guild: discord.Guild) -> None:
        await self.memory.upsert_guild_metadata(
            str(guild.id),
            guild.name,
            str(guild.owner_id) if guild.owner_id else None,
            int(guild.member_count or 0),
            created_at=_to_ms(guild.created_at),
        )

    async def _sync_role(self, role: discord.Role) -> None:
        if role.is_default():
            return
        await self.memory.upsert_guild_role(
            str(role.guild.id),
            str(role.id),
            role.name,
            color=str(role.colour) if role.colour.value else None,
            position=int(role.position),
            permissions=str(role.permissions.value),
        )

    async def _sync_member(self, member: discord.Member) -> None:
        guild_id = str(member.guild.id)
        user_id = str(member.id)
        await self.memory.upsert_guild_user(
            guild_id,
            user_id,
            member.display_name,
            joined_at=_to_ms(member.joined_at),
            seen_at=0,
        )
        await self.memory.replace_member_roles(
            guild_id,
            user_id,
            [str(role.id) for role in member.roles if not role.is_default()],
        )

    async def _sync_guild(self, guild: discord.Guild) -> None:
        await self._sync_guild_metadata(guild)
        await self.memory.delete_all_guild_roles(str(guild.id))
        for role in guild.roles:
            await self._sync_role(role)
        for member in guild.members:
            if not member.bot:
                await self._sync_member(member)
        logger.info(
            "Synced guild %s (%s): %s roles, %s cached members",
            guild.name,
            guild.id,
            len(guild.roles),
            len(guild.members),
        )

    async def _sync_all_guilds(self) -> None:
        for guild in list(self.guilds):
            await self._safe_execute(f"sync_guild:{guild.id}", self._sync_guild(guild))

    async def on_guild_join(self, guild: discord.Guild) -> None:
        await self._safe_execute("on_guild_join", self._sync_guild(guild))

    async def on_guild_update(self, before: discord.Guild, after: discord.Guild) -> None:
        await self._safe_execute("on_guild_update", self._sync_guild_metadata(after))

    async def on_guild_role_create(self, role: discord.Role) -> None:
        await self._safe_execute("on_guild_role_create", self._sync_role(role))

    async def on_guild_role_update(self, before: discord.Role, after: discord.Role) -> None:
        await self._safe_execute("on_guild_role_update", self._sync_role(after))

    async def on_guild_role_delete(self, role: discord.Role) -> None:
        await self._safe_execute(
            "on_guild_role_delete",
            self.memory.delete_guild_role(str(role.guild.id), str(role.id)),
        )

    async def on_member_join(self, member: discord.Member) -> None:
        if member.bot:
            return
        await self._safe_execute("on_member_join", self._sync_member(member))

    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        if after.bot:
            return
        if before.display_name == after.display_name and before.roles == after.roles:
            return
        await self._safe_execute("on_member_update", self._sync_member(after))

    async def on_member_remove(self, member: discord.Member) -> None:
        await self._safe_execute(
            "on_member_remove",
            self.memory.delete_all_member_roles(str(member.guild.id), str(member.id)),
        )
