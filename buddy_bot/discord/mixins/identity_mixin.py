from __future__ import annotations

import re
from dataclasses import dataclass

import discord

from ..common import collapse_spaces


@dataclass(slots=True)
class MemoryGate:
    is_direct: bool
    allow_memory: bool
    autoreply_enabled: bool


class IdentityMixin:
    def _strip_bot_mention(self, text: str) -> str:
        if not self.user:
            return collapse_spaces(text)
        pattern = re.compile(rf"<@!?{self.user.id}>")
        return collapse_spaces(pattern.sub("", text))

    @staticmethod
    def _display_name(author: discord.abc.User) -> str:
        name = getattr(author, "display_name", None) or getattr(author, "global_name", None) or author.name
        return str(name or "").strip() or str(author.name)

    def _is_mentioned(self, message: discord.Message) -> bool:
        if not self.user:
            return False
        return any(user.id == self.user.id for user in message.mentions)

    def _is_super_admin(self, user_id: int) -> bool:
        return bool(self.settings.super_admin_id) and str(user_id) == self.settings.super_admin_id

    async def _memory_gate(self, message: discord.Message) -> MemoryGate:
        return await self._memory_gate_for(message.author.id, message.channel.id, is_direct=message.guild is None)

    async def _memory_gate_for(self, user_id: int, channel_id: int | None, *, is_direct: bool) -> MemoryGate:
        """DMs always count as a memory channel; guild channels need the allowlist."""
        channel_allowed = is_direct or (
            channel_id is not None and await self.memory.is_channel_allowed(str(channel_id))
        )
        settings = await self.memory.get_user_settings(str(user_id))
        return MemoryGate(
            is_direct=is_direct,
            allow_memory=bool(channel_allowed and settings["memory_enabled"]),
            autoreply_enabled=bool(settings["autoreply_enabled"]) and not is_direct,
        )
