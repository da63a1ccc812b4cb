from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import aiosqlite

from .utils import _fallback_user_label, _sqlite_memory_connection, _sqlite_memory_transaction


class MemoryRolesMixin:
    async def upsert_guild_metadata(
        self,
        guild_id: str,
        name: str,
        owner_id: str | None,
        member_count: int,
        created_at: int | None = None,
    ) -> None:
        now = self._now_ms()
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO guild_metadata (guild_id, name, owner_id, member_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(guild_id) DO UPDATE SET
                    name = excluded.name,
                    owner_id = excluded.owner_id,
                    member_count = excluded.member_count,
                    updated_at = excluded.updated_at
                """,
                (guild_id, name, owner_id, int(member_count or 0), int(created_at or now), now),
            )
            await db.commit()

    async def get_guild_metadata(self, guild_id: str) -> Optional[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT guild_id, name, owner_id, member_count, created_at, updated_at
                FROM guild_metadata
                WHERE guild_id = ?
                """,
                (guild_id,),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "guild_id": str(row["guild_id"]),
            "name": str(row["name"] or ""),
            "owner_id": str(row["owner_id"]) if row["owner_id"] else None,
            "member_count": int(row["member_count"] or 0),
            "created_at": int(row["created_at"] or 0),
            "updated_at": int(row["updated_at"] or 0),
        }

    async def upsert_guild_role(
        self,
        guild_id: str,
        role_id: str,
        role_name: str,
        color: str | None = None,
        position: int = 0,
        permissions: str | None = None,
    ) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO guild_roles (guild_id, role_id, role_name, color, position, permissions)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(guild_id, role_id) DO UPDATE SET
                    role_name = excluded.role_name,
                    color = excluded.color,
                    position = excluded.position,
                    permissions = excluded.permissions
                """,
                (guild_id, role_id, role_name, color, int(position or 0), permissions),
            )
            await db.commit()

    async def delete_guild_role(self, guild_id: str, role_id: str) -> None:
        async with _sqlite_memory_transaction(self.db_path) as db:
            await db.execute("DELETE FROM guild_roles WHERE guild_id = ? AND role_id = ?", (guild_id, role_id))
            await db.execute("DELETE FROM member_roles WHERE guild_id = ? AND role_id = ?", (guild_id, role_id))

    async def delete_all_guild_roles(self, guild_id: str) -> None:
        async with _sqlite_memory_transaction(self.db_path) as db:
            await db.execute("DELETE FROM guild_roles WHERE guild_id = ?", (guild_id,))
            await db.execute("DELETE FROM member_roles WHERE guild_id = ?", (guild_id,))

    async def get_guild_roles(self, guild_id: str) -> List[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT role_id, role_name, color, position, permissions
                FROM guild_roles
                WHERE guild_id = ?
                ORDER BY position DESC, role_id ASC
                """,
                (guild_id,),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            {
                "role_id": str(row["role_id"]),
                "role_name": str(row["role_name"]),
                "color": row["color"],
                "position": int(row["position"] or 0),
                "permissions": row["permissions"],
            }
            for row in rows
        ]

    async def upsert_member_role(self, guild_id: str, user_id: str, role_id: str) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO member_roles (guild_id, user_id, role_id)
                VALUES (?, ?, ?)
                ON CONFLICT(guild_id, user_id, role_id) DO NOTHING
                """,
                (guild_id, user_id, role_id),
            )
            await db.commit()

    async def delete_member_role(self, guild_id: str, user_id: str, role_id: str) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                "DELETE FROM member_roles WHERE guild_id = ? AND user_id = ? AND role_id = ?",
                (guild_id, user_id, role_id),
            )
            await db.commit()

    async def delete_all_member_roles(self, guild_id: str, user_id: str) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute("DELETE FROM member_roles WHERE guild_id = ? AND user_id = ?", (guild_id, user_id))
            await db.commit()

    async def replace_member_roles(self, guild_id: str, user_id: str, role_ids: Iterable[str]) -> None:
        async with _sqlite_memory_transaction(self.db_path) as db:
            await db.execute("DELETE FROM member_roles WHERE guild_id = ? AND user_id = ?", (guild_id, user_id))
            await db.executemany(
                "INSERT OR IGNORE INTO member_roles (guild_id, user_id, role_id) VALUES (?, ?, ?)",
                [(guild_id, user_id, role_id) for role_id in role_ids],
            )

    async def get_member_roles(self, guild_id: str, user_id: str) -> List[str]:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                "SELECT role_id FROM member_roles WHERE guild_id = ? AND user_id = ?",
                (guild_id, user_id),
            ) as cursor:
                rows = await cursor.fetchall()
        return [str(row[0]) for row in rows]

    async def get_role_member_names(self, guild_id: str, role_id: str, limit: int = 8) -> List[str]:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                """
                SELECT gu.display_name, mr.user_id
                FROM member_roles mr
                LEFT JOIN guild_users gu
                    ON mr.guild_id = gu.guild_id AND mr.user_id = gu.user_id
                WHERE mr.guild_id = ? AND mr.role_id = ?
                ORDER BY gu.display_name ASC
                LIMIT ?
                """,
                (guild_id, role_id, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [str(row[0] or "") or _fallback_user_label(str(row[1])) for row in rows]

    async def get_role_member_count(self, guild_id: str, role_id: str) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                "SELECT COUNT(*) FROM member_roles WHERE guild_id = ? AND role_id = ?",
                (guild_id, role_id),
            ) as cursor:
                row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def get_server_context(self, guild_id: str) -> str:
        metadata = await self.get_guild_metadata(guild_id)
        roles = await self.get_guild_roles(guild_id)
        recent_users = await self.get_guild_user_names(guild_id, 15)
        if metadata is None and not roles and not recent_users:
            return ""

        lines: List[str] = []
        if metadata is not None:
            lines.append(f"Server: {metadata['name'] or 'Unknown'}")
            lines.append(f"Members: {metadata['member_count']}")
            owner_id = metadata["owner_id"]
            if owner_id:
                owner = await self.get_guild_user(guild_id, str(owner_id))
                if owner is not None:
                    lines.append(f"Owner: {owner['display_name']} ({owner_id})")

        if roles:
            lines.append("Roles: " + ", ".join(str(role["role_name"]) for role in roles[:8]))
            for role in roles[:3]:
                role_id = str(role["role_id"])
                count = await self.get_role_member_count(guild_id, role_id)
                names = await self.get_role_member_names(guild_id, role_id, 6)
                sample = f" (e.g., {', '.join(names)})" if names else ""
                lines.append(f"Role {role['role_name']}: {count} members{sample}")

        if recent_users:
            lines.append("Active members: " + ", ".join(recent_users))
        return "\n".join(lines).strip()

    async def get_user_context(self, guild_id: str, user_id: str) -> str:
        user = await self.get_guild_user(guild_id, user_id)
        if user is None:
            return ""

        lines = [f"User: {user['display_name']}"]
        joined_at = int(user["joined_at"] or 0)
        if joined_at > 0:
            joined = datetime.fromtimestamp(joined_at / 1000, tz=timezone.utc)
            lines.append(f"Joined: {joined:%Y-%m-%d}")

        role_ids = set(await self.get_member_roles(guild_id, user_id))
        if role_ids:
            roles = [role for role in await self.get_guild_roles(guild_id) if role["role_id"] in role_ids]
            if roles:
                lines.append("Roles: " + ", ".join(str(role["role_name"]) for role in roles))
        return "\n".join(lines).strip()
