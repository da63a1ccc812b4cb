from __future__ import annotations

from typing import List

from .utils import _sqlite_memory_connection


class MemoryBotMessagesMixin:
    async def track_bot_message(self, message_id: str, channel_id: str, guild_id: str | None) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO bot_messages (message_id, channel_id, guild_id, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(message_id) DO NOTHING
                """,
                (message_id, channel_id, guild_id, self._now_ms()),
            )
            await db.commit()

    async def get_bot_messages_in_channel(
        self,
        channel_id: str,
        guild_id: str | None,
        since_ms: int,
    ) -> List[str]:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                """
                SELECT message_id
                FROM bot_messages
                WHERE channel_id = ? AND guild_id IS ? AND created_at >= ?
                ORDER BY created_at ASC
                """,
                (channel_id, guild_id, int(since_ms)),
            ) as cursor:
                rows = await cursor.fetchall()
        return [str(row[0]) for row in rows]

    async def delete_bot_message_record(self, message_id: str) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute("DELETE FROM bot_messages WHERE message_id = ?", (message_id,))
            await db.commit()
