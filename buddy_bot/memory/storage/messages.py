from __future__ import annotations

from typing import List

import aiosqlite

from ..summaries import ProfileCounters, apply_summary_cadence, extract_summary_notes
from .utils import (
    _fallback_user_label,
    _format_message_timestamp,
    _sqlite_memory_connection,
    _sqlite_memory_transaction,
)


async def _fetch_counters(db: aiosqlite.Connection, sql: str, key: str) -> ProfileCounters:
    async with db.execute(sql, (key,)) as cursor:
        row = await cursor.fetchone()
    if row is None:
        return ProfileCounters()
    return ProfileCounters(str(row[0] or ""), int(row[1] or 0), int(row[2] or 0))


class MemoryMessagesMixin:
    async def record_message(
        self,
        user_id: str,
        channel_id: str,
        guild_id: str | None,
        content: str,
        display_name: str | None = None,
    ) -> list[str]:
        """Append a message and roll user, channel and guild profiles forward in one transaction.

        Returns the summary notes extracted from `content`.
        """
        now = self._now_ms()
        notes = extract_summary_notes(content)
        async with _sqlite_memory_transaction(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO user_messages (user_id, channel_id, guild_id, content, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, channel_id, guild_id, content, now),
            )
            await self._apply_user_profile(db, user_id, notes, now)
            if channel_id:
                await self._apply_channel_profile(db, channel_id, guild_id, notes, now)
            if guild_id:
                await self._apply_guild_profile(db, guild_id, notes, now)
            if guild_id and display_name:
                await self._touch_guild_user(db, guild_id, user_id, display_name, seen_at=now, joined_at=0)
        return notes

    async def _apply_user_profile(
        self,
        db: aiosqlite.Connection,
        user_id: str,
        notes: list[str],
        now: int,
    ) -> None:
        current = await _fetch_counters(
            db,
            "SELECT profile_summary, message_count, last_summary_at FROM user_settings WHERE user_id = ?",
            user_id,
        )
        updated = apply_summary_cadence(
            current,
            notes,
            every=self.policy.user_every,
            stale_after_ms=self.policy.stale_after_ms,
            now_ms=now,
        )
        await db.execute(
            """
            INSERT INTO user_settings (user_id, profile_summary, message_count, last_summary_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                profile_summary = excluded.profile_summary,
                message_count = excluded.message_count,
                last_summary_at = excluded.last_summary_at
            """,
            (user_id, updated.summary, updated.message_count, updated.last_summary_at),
        )

    async def _apply_channel_profile(
        self,
        db: aiosqlite.Connection,
        channel_id: str,
        guild_id: str | None,
        notes: list[str],
        now: int,
    ) -> None:
        current = await _fetch_counters(
            db,
            "SELECT summary, message_count, last_summary_at FROM channel_profiles WHERE channel_id = ?",
            channel_id,
        )
        updated = apply_summary_cadence(
            current,
            notes,
            every=self.policy.channel_every,
            stale_after_ms=self.policy.stale_after_ms,
            now_ms=now,
        )
        await db.execute(
            """
            INSERT INTO channel_profiles (channel_id, guild_id, summary, message_count, last_summary_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(channel_id) DO UPDATE SET
                guild_id = COALESCE(excluded.guild_id, channel_profiles.guild_id),
                summary = excluded.summary,
                message_count = excluded.message_count,
                last_summary_at = excluded.last_summary_at
            """,
            (channel_id, guild_id, updated.summary, updated.message_count, updated.last_summary_at),
        )

    async def _apply_guild_profile(
        self,
        db: aiosqlite.Connection,
        guild_id: str,
        notes: list[str],
        now: int,
    ) -> None:
        current = await _fetch_counters(
            db,
            "SELECT summary, message_count, last_summary_at FROM guild_profiles WHERE guild_id = ?",
            guild_id,
        )
        updated = apply_summary_cadence(
            current,
            notes,
            every=self.policy.guild_every,
            stale_after_ms=self.policy.stale_after_ms,
            now_ms=now,
        )
        await db.execute(
            """
            INSERT INTO guild_profiles (guild_id, summary, message_count, last_summary_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(guild_id) DO UPDATE SET
                summary = excluded.summary,
                message_count = excluded.message_count,
                last_summary_at = excluded.last_summary_at
            """,
            (guild_id, updated.summary, updated.message_count, updated.last_summary_at),
        )

    async def get_recent_messages(self, user_id: str, limit: int = 4) -> List[str]:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                """
                SELECT content, created_at
                FROM user_messages
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [f"[{_format_message_timestamp(row[1])}] {row[0]}" for row in rows if row[0]]

    async def get_recent_channel_messages(
        self,
        channel_id: str,
        exclude_user_id: str,
        limit: int = 4,
    ) -> List[str]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT um.content, um.user_id, um.created_at, gu.display_name
                FROM user_messages um
                LEFT JOIN guild_users gu
                    ON um.guild_id = gu.guild_id AND um.user_id = gu.user_id
                WHERE um.channel_id = ? AND um.user_id != ?
                ORDER BY um.created_at DESC, um.id DESC
                LIMIT ?
                """,
                (channel_id, exclude_user_id, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()

        lines: List[str] = []
        for row in rows:
            if not row["content"]:
                continue
            name = str(row["display_name"] or "") or _fallback_user_label(str(row["user_id"]))
            lines.append(f"[{_format_message_timestamp(row['created_at'])}] @{name}: {row['content']}")
        return lines

    async def reset_channel_memory(self, channel_id: str) -> None:
        async with _sqlite_memory_transaction(self.db_path) as db:
            await db.execute("DELETE FROM user_messages WHERE channel_id = ?", (channel_id,))
            await db.execute("DELETE FROM channel_profiles WHERE channel_id = ?", (channel_id,))

    async def reset_guild_memory(self, guild_id: str) -> None:
        async with _sqlite_memory_transaction(self.db_path) as db:
            await db.execute("DELETE FROM user_messages WHERE guild_id = ?", (guild_id,))
            await db.execute("DELETE FROM guild_profiles WHERE guild_id = ?", (guild_id,))
            await db.execute("DELETE FROM channel_profiles WHERE guild_id = ?", (guild_id,))
            await db.execute("DELETE FROM guild_users WHERE guild_id = ?", (guild_id,))
