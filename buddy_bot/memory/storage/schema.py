from __future__ import annotations

import os
from pathlib import Path

import aiosqlite

from ..summaries import SummaryPolicy
from .utils import DAY_MS, _now_ms, _sqlite_memory_connection


class MemorySchemaMixin:
    SCHEMA_VERSION = 3

    def __init__(
        self,
        db_path: Path,
        *,
        policy: SummaryPolicy | None = None,
        known_users_window_days: int = 30,
    ) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.policy = policy or SummaryPolicy()
        self.known_users_window_ms = max(1, int(known_users_window_days)) * DAY_MS

    def _now_ms(self) -> int:
        return _now_ms()

    @staticmethod
    def _allow_destructive_reset_on_mismatch() -> bool:
        raw = os.getenv("MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH", "")
        return raw.strip().lower() in {"1", "true", "yes", "y", "on"}

    async def _has_user_tables(self, db: aiosqlite.Connection) -> bool:
        async with db.execute(
            """
            SELECT 1
            FROM sqlite_master
            WHERE type = 'table'
              AND name NOT LIKE 'sqlite_%'
            LIMIT 1
            """
        ) as cursor:
            row = await cursor.fetchone()
        return bool(row)

    async def init(self) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            async with db.execute("PRAGMA user_version") as cursor:
                row = await cursor.fetchone()
            version = int(row[0]) if row else 0
            has_tables = await self._has_user_tables(db)

            if version > self.SCHEMA_VERSION:
                if has_tables and self._allow_destructive_reset_on_mismatch():
                    await self._reset_schema(db)
                    await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
                    await db.commit()
                    return
                raise RuntimeError(
                    "SQLite schema version mismatch detected (database is newer than this bot build). "
                    f"Found user_version={version}, supported={self.SCHEMA_VERSION}. "
                    "Set MEMORY_SQLITE_RESET_ON_SCHEMA_MISMATCH=1 to allow destructive reset."
                )

            if not has_tables:
                await self._create_schema(db)
                await self._create_indexes(db)
                await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
            else:
                await self._create_schema(db)
                await self._migrate_schema(db, version)
                await self._create_indexes(db)
                if version != self.SCHEMA_VERSION:
                    await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")

            await db.commit()

    async def _reset_schema(self, db: aiosqlite.Connection) -> None:
        tables = (
            "bot_messages",
            "guild_metadata",
            "member_roles",
            "guild_roles",
            "guild_users",
            "guild_profiles",
            "channel_profiles",
            "user_messages",
            "channel_allowlist",
            "user_settings",
        )
        for table in tables:
            await db.execute(f"DROP TABLE IF EXISTS {table}")
        await self._create_schema(db)
        await self._create_indexes(db)

    async def _table_columns(self, db: aiosqlite.Connection, table_name: str) -> set[str]:
        async with db.execute(f"PRAGMA table_info({table_name})") as cursor:
            rows = await cursor.fetchall()
        return {str(row[1]) for row in rows}

    async def _add_column_if_missing(self, db: aiosqlite.Connection, table_name: str, column_sql: str) -> bool:
        column_name = str(column_sql.split()[0]).strip()
        if not column_name:
            return False
        cols = await self._table_columns(db, table_name)
        if column_name in cols:
            return False
        await db.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_sql}")
        return True

    async def _migrate_schema(self, db: aiosqlite.Connection, from_version: int) -> None:
        if from_version < 2:
            await self._migrate_v2_profile_counters(db)
        if from_version < 3:
            await self._migrate_v3_user_autoreply(db)
        # Re-run idempotent migrations to self-heal partial deployments.
        await self._migrate_v2_profile_counters(db)
        await self._migrate_v3_user_autoreply(db)

    async def _migrate_v2_profile_counters(self, db: aiosqlite.Connection) -> None:
        await self._add_column_if_missing(db, "user_messages", "guild_id TEXT")
        await self._add_column_if_missing(db, "user_settings", "message_count INTEGER NOT NULL DEFAULT 0")
        await self._add_column_if_missing(db, "user_settings", "last_summary_at INTEGER NOT NULL DEFAULT 0")
        await self._add_column_if_missing(db, "channel_profiles", "guild_id TEXT")
        await self._add_column_if_missing(db, "channel_profiles", "message_count INTEGER NOT NULL DEFAULT 0")
        await self._add_column_if_missing(db, "channel_profiles", "last_summary_at INTEGER NOT NULL DEFAULT 0")
        await self._add_column_if_missing(db, "guild_profiles", "message_count INTEGER NOT NULL DEFAULT 0")
        await self._add_column_if_missing(db, "guild_profiles", "last_summary_at INTEGER NOT NULL DEFAULT 0")
        await self._add_column_if_missing(db, "guild_users", "joined_at INTEGER NOT NULL DEFAULT 0")

    async def _migrate_v3_user_autoreply(self, db: aiosqlite.Connection) -> None:
        await self._add_column_if_missing(db, "user_settings", "autoreply_enabled INTEGER NOT NULL DEFAULT 0")

    async def _create_schema(self, db: aiosqlite.Connection) -> None:
        await db.executescript(
            """
            CREATE TABLE IF NOT EXISTS user_settings (
                user_id TEXT PRIMARY KEY,
                memory_enabled INTEGER NOT NULL DEFAULT 1,
                autoreply_enabled INTEGER NOT NULL DEFAULT 0,
                profile_summary TEXT NOT NULL DEFAULT '',
                message_count INTEGER NOT NULL DEFAULT 0,
                last_summary_at INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS channel_allowlist (
                channel_id TEXT PRIMARY KEY,
                enabled INTEGER NOT NULL DEFAULT 1
            );

            CREATE TABLE IF NOT EXISTS user_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                channel_id TEXT NOT NULL,
                guild_id TEXT,
                content TEXT NOT NULL,
                created_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS channel_profiles (
                channel_id TEXT PRIMARY KEY,
                guild_id TEXT,
                summary TEXT NOT NULL DEFAULT '',
                message_count INTEGER NOT NULL DEFAULT 0,
                last_summary_at INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS guild_profiles (
                guild_id TEXT PRIMARY KEY,
                summary TEXT NOT NULL DEFAULT '',
                message_count INTEGER NOT NULL DEFAULT 0,
                last_summary_at INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS guild_users (
                guild_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                display_name TEXT NOT NULL,
                last_seen_at INTEGER NOT NULL,
                joined_at INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (guild_id, user_id)
            );

            CREATE TABLE IF NOT EXISTS guild_roles (
                guild_id TEXT NOT NULL,
                role_id TEXT NOT NULL,
                role_name TEXT NOT NULL,
                color TEXT,
                position INTEGER NOT NULL DEFAULT 0,
                permissions TEXT,
                PRIMARY KEY (guild_id, role_id)
            );

            CREATE TABLE IF NOT EXISTS member_roles (
                guild_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                role_id TEXT NOT NULL,
                PRIMARY KEY (guild_id, user_id, role_id)
            );

            CREATE TABLE IF NOT EXISTS guild_metadata (
                guild_id TEXT PRIMARY KEY,
                name TEXT,
                owner_id TEXT,
                member_count INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER,
                updated_at INTEGER
            );

            CREATE TABLE IF NOT EXISTS bot_messages (
                message_id TEXT PRIMARY KEY,
                channel_id TEXT NOT NULL,
                guild_id TEXT,
                created_at INTEGER NOT NULL
            );
            """
        )

    async def _create_indexes(self, db: aiosqlite.Connection) -> None:
        await db.executescript(
            """
            CREATE INDEX IF NOT EXISTS idx_user_messages_user_created
            ON user_messages(user_id, created_at DESC);

            CREATE INDEX IF NOT EXISTS idx_user_messages_channel_created
            ON user_messages(channel_id, created_at DESC);

            CREATE INDEX IF NOT EXISTS idx_user_messages_guild
            ON user_messages(guild_id);

            CREATE INDEX IF NOT EXISTS idx_channel_profiles_guild
            ON channel_profiles(guild_id);

            CREATE INDEX IF NOT EXISTS idx_guild_users_seen
            ON guild_users(guild_id, last_seen_at DESC);

            CREATE INDEX IF NOT EXISTS idx_member_roles_role
            ON member_roles(guild_id, role_id);

            CREATE INDEX IF NOT EXISTS idx_bot_messages_channel_created
            ON bot_messages(channel_id, created_at);
            """
        )
