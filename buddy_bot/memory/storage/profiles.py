from __future__ import annotations

from .utils import _sqlite_memory_connection


class MemoryProfilesMixin:
    async def _read_summary(self, sql: str, key: str) -> str:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(sql, (key,)) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return ""
        return str(row[0] or "")

    async def get_profile_summary(self, user_id: str) -> str:
        return await self._read_summary("SELECT profile_summary FROM user_settings WHERE user_id = ?", user_id)

    async def get_channel_summary(self, channel_id: str) -> str:
        return await self._read_summary("SELECT summary FROM channel_profiles WHERE channel_id = ?", channel_id)

    async def get_guild_summary(self, guild_id: str) -> str:
        return await self._read_summary("SELECT summary FROM guild_profiles WHERE guild_id = ?", guild_id)
