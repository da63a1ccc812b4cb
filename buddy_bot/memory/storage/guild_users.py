from __future__ import annotations

from typing import Dict, List, Optional

import aiosqlite

from .utils import _sqlite_memory_connection


class MemoryGuildUsersMixin:
    async def _touch_guild_user(
        self,
        db: aiosqlite.Connection,
        guild_id: str,
        user_id: str,
        display_name: str,
        *,
        seen_at: int,
        joined_at: int,
    ) -> None:
        # joined_at is written once; 0 means unknown and may be filled in later.
        await db.execute(
            """
            INSERT INTO guild_users (guild_id, user_id, display_name, last_seen_at, joined_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(guild_id, user_id) DO UPDATE SET
                display_name = excluded.display_name,
                last_seen_at = MAX(guild_users.last_seen_at, excluded.last_seen_at),
                joined_at = CASE
                    WHEN guild_users.joined_at = 0 THEN excluded.joined_at
                    ELSE guild_users.joined_at
                END
            """,
            (guild_id, user_id, display_name, seen_at, joined_at),
        )

    async def upsert_guild_user(
        self,
        guild_id: str,
        user_id: str,
        display_name: str,
        joined_at: int | None = None,
        seen_at: int | None = None,
    ) -> None:
        """Upsert from a guild sync. Pass `seen_at=0` to register a member without marking them active."""
        now = self._now_ms()
        async with _sqlite_memory_connection(self.db_path) as db:
            await self._touch_guild_user(
                db,
                guild_id,
                user_id,
                display_name,
                seen_at=now if seen_at is None else int(seen_at),
                joined_at=int(joined_at) if joined_at else now,
            )
            await db.commit()

    async def get_guild_user(self, guild_id: str, user_id: str) -> Optional[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT guild_id, user_id, display_name, last_seen_at, joined_at
                FROM guild_users
                WHERE guild_id = ? AND user_id = ?
                """,
                (guild_id, user_id),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "guild_id": str(row["guild_id"]),
            "user_id": str(row["user_id"]),
            "display_name": str(row["display_name"]),
            "last_seen_at": int(row["last_seen_at"] or 0),
            "joined_at": int(row["joined_at"] or 0),
        }

    async def get_recent_guild_users(self, guild_id: str, limit: int = 10) -> List[Dict[str, str]]:
        cutoff = self._now_ms() - self.known_users_window_ms
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT user_id, display_name
                FROM guild_users
                WHERE guild_id = ? AND last_seen_at > ?
                ORDER BY last_seen_at DESC
                LIMIT ?
                """,
                (guild_id, cutoff, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            {"user_id": str(row["user_id"]), "display_name": str(row["display_name"])}
            for row in rows
            if row["display_name"]
        ]

    async def get_guild_user_names(self, guild_id: str, limit: int = 10) -> List[str]:
        users = await self.get_recent_guild_users(guild_id, limit)
        return [user["display_name"] for user in users]
