from __future__ import annotations

from typing import Dict, List

import aiosqlite

from .utils import _sqlite_memory_connection


class MemoryAllowlistMixin:
    async def _set_channel_enabled(self, channel_id: str, enabled: bool) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO channel_allowlist (channel_id, enabled)
                VALUES (?, ?)
                ON CONFLICT(channel_id) DO UPDATE SET enabled = excluded.enabled
                """,
                (channel_id, 1 if enabled else 0),
            )
            await db.commit()

    async def allow_channel(self, channel_id: str) -> None:
        await self._set_channel_enabled(channel_id, True)

    async def deny_channel(self, channel_id: str) -> None:
        await self._set_channel_enabled(channel_id, False)

    async def is_channel_allowed(self, channel_id: str) -> bool:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                "SELECT enabled FROM channel_allowlist WHERE channel_id = ?",
                (channel_id,),
            ) as cursor:
                row = await cursor.fetchone()
        return bool(row) and int(row[0]) == 1

    async def list_channels(self) -> List[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT channel_id, enabled FROM channel_allowlist ORDER BY channel_id"
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            {"channel_id": str(row["channel_id"]), "enabled": bool(row["enabled"])}
            for row in rows
        ]
