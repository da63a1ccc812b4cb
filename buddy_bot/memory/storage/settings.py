from __future__ import annotations

from typing import Dict

import aiosqlite

from .utils import _sqlite_memory_connection, _sqlite_memory_transaction


def _default_user_settings(user_id: str) -> Dict[str, object]:
    return {
        "user_id": user_id,
        "memory_enabled": True,
        "autoreply_enabled": False,
        "profile_summary": "",
        "message_count": 0,
        "last_summary_at": 0,
    }


class MemorySettingsMixin:
    async def get_user_settings(self, user_id: str) -> Dict[str, object]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT user_id, memory_enabled, autoreply_enabled, profile_summary, message_count, last_summary_at
                FROM user_settings
                WHERE user_id = ?
                """,
                (user_id,),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return _default_user_settings(user_id)
        return {
            "user_id": str(row["user_id"]),
            "memory_enabled": bool(row["memory_enabled"]),
            "autoreply_enabled": bool(row["autoreply_enabled"]),
            "profile_summary": str(row["profile_summary"] or ""),
            "message_count": int(row["message_count"] or 0),
            "last_summary_at": int(row["last_summary_at"] or 0),
        }

    async def set_user_memory(self, user_id: str, enabled: bool) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO user_settings (user_id, memory_enabled)
                VALUES (?, ?)
                ON CONFLICT(user_id) DO UPDATE SET memory_enabled = excluded.memory_enabled
                """,
                (user_id, 1 if enabled else 0),
            )
            await db.commit()

    async def set_user_autoreply(self, user_id: str, enabled: bool) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO user_settings (user_id, autoreply_enabled)
                VALUES (?, ?)
                ON CONFLICT(user_id) DO UPDATE SET autoreply_enabled = excluded.autoreply_enabled
                """,
                (user_id, 1 if enabled else 0),
            )
            await db.commit()

    async def view_memory(self, user_id: str) -> str:
        settings = await self.get_user_settings(user_id)
        return str(settings["profile_summary"]) or "No profile summary yet."

    async def forget_user(self, user_id: str) -> None:
        """Drop a user's messages and learned summary; the on/off flags survive."""
        async with _sqlite_memory_transaction(self.db_path) as db:
            await db.execute("DELETE FROM user_messages WHERE user_id = ?", (user_id,))
            await db.execute(
                """
                UPDATE user_settings
                SET profile_summary = '', message_count = 0, last_summary_at = 0
                WHERE user_id = ?
                """,
                (user_id,),
            )

    async def wipe_all_memory(self) -> None:
        async with _sqlite_memory_transaction(self.db_path) as db:
            for table in ("user_messages", "user_settings", "channel_profiles", "guild_profiles"):
                await db.execute(f"DELETE FROM {table}")
