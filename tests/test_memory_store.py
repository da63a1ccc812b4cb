from __future__ import annotations

import asyncio
import sqlite3
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from buddy_bot.memory import MemoryStore, SummaryPolicy  # noqa: E402
from buddy_bot.memory.storage.utils import DAY_MS  # noqa: E402


class _ClockedStore(MemoryStore):
    def __init__(self, *args, start_ms: int = 1_700_000_000_000, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.now_ms = start_ms

    def _now_ms(self) -> int:
        return self.now_ms


def _count_rows(db_path: Path, table: str) -> int:
    conn = sqlite3.connect(db_path)
    try:
        return int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
    finally:
        conn.close()


def test_allowlist_is_idempotent_and_defaults_to_denied(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()

        assert await store.is_channel_allowed("c1") is False
        await store.allow_channel("c1")
        await store.allow_channel("c1")
        assert await store.is_channel_allowed("c1") is True

        await store.deny_channel("c1")
        assert await store.is_channel_allowed("c1") is False
        assert await store.list_channels() == [{"channel_id": "c1", "enabled": False}]

    asyncio.run(scenario())


def test_record_message_rolls_all_profiles_forward(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = _ClockedStore(tmp_path / "memory.db")
        await store.init()

        notes = await store.record_message("u1", "c1", "g1", "hi, my name is Sam", display_name="Sam")
        assert notes == ["Name: Sam"]

        settings = await store.get_user_settings("u1")
        assert settings["message_count"] == 1
        assert settings["profile_summary"] == "Name: Sam"
        assert await store.get_channel_summary("c1") == "Name: Sam"
        assert await store.get_guild_summary("g1") == "Name: Sam"
        assert await store.get_guild_user_names("g1") == ["Sam"]
        assert await store.get_profile_summary("u1") == ""

        recent = await store.get_recent_messages("u1", 3)
        assert len(recent) == 1
        assert recent[0].endswith("] hi, my name is Sam")

    asyncio.run(scenario())


@pytest.mark.parametrize(
    "step",
    ["_apply_user_profile", "_apply_channel_profile", "_apply_guild_profile", "_touch_guild_user"],
)
def test_record_message_is_atomic_when_any_step_fails(tmp_path: Path, step: str) -> None:
    async def scenario() -> None:
        db_path = tmp_path / "memory.db"
        store = MemoryStore(db_path)
        await store.init()
        await store.record_message("u1", "c1", "g1", "first message", display_name="Sam")

        async def _boom(*args, **kwargs) -> None:
            raise RuntimeError(f"{step} failed")

        setattr(store, step, _boom)
        with pytest.raises(RuntimeError, match=f"{step} failed"):
            await store.record_message("u1", "c1", "g1", "my name is Alex", display_name="Alex")

        assert _count_rows(db_path, "user_messages") == 1
        assert _count_rows(db_path, "guild_users") == 1
        assert await store.get_guild_user_names("g1") == ["Sam"]
        settings = await store.get_user_settings("u1")
        assert settings["message_count"] == 1

    asyncio.run(scenario())


def test_summary_label_is_replaced_when_summary_goes_stale(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = _ClockedStore(tmp_path / "memory.db")
        await store.init()

        await store.record_message("u1", "c1", None, "my name is Sam")
        await store.record_message("u1", "c1", None, "I like tea")
        assert await store.get_profile_summary("u1") == "Name: Sam"

        store.now_ms += DAY_MS + 1
        await store.record_message("u1", "c1", None, "actually my name is Alex")
        assert await store.get_profile_summary("u1") == "Name: Alex"

    asyncio.run(scenario())


def test_summary_cadence_merges_on_boundary(tmp_path: Path) -> None:
    async def scenario() -> None:
        policy = SummaryPolicy(user_every=2, channel_every=2, guild_every=2)
        store = _ClockedStore(tmp_path / "memory.db", policy=policy)
        await store.init()

        await store.record_message("u1", "c1", None, "hello there")
        await store.record_message("u1", "c1", None, "I like tea")

        assert await store.get_profile_summary("u1") == "Likes: tea"
        assert await store.get_channel_summary("c1") == "Likes: tea"

    asyncio.run(scenario())


def test_forget_user_keeps_flags_and_drops_history(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        await store.set_user_autoreply("u1", True)
        await store.record_message("u1", "c1", None, "my name is Sam")
        await store.set_user_memory("u1", False)

        await store.forget_user("u1")

        settings = await store.get_user_settings("u1")
        assert settings["memory_enabled"] is False
        assert settings["autoreply_enabled"] is True
        assert settings["profile_summary"] == ""
        assert settings["message_count"] == 0
        assert await store.get_recent_messages("u1") == []
        assert await store.view_memory("u1") == "No profile summary yet."

    asyncio.run(scenario())


def test_channel_and_guild_resets_are_scoped(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = MemoryStore(tmp_path / "memory.db")
        await store.init()
        await store.record_message("u1", "c1", "g1", "my name is Sam", display_name="Sam")
        await store.record_message("u2", "c2", "g1", "I like tea", display_name="Bo")
        await store.record_message("u3", "c3", "g2", "I like coffee", display_name="Cy")

        await store.reset_channel_memory("c1")
        assert await store.get_channel_summary("c1") == ""
        assert await store.get_channel_summary("c2") == "Likes: tea"
        assert await store.get_recent_channel_messages("c1", "nobody") == []

        await store.reset_guild_memory("g1")
        assert await store.get_guild_summary("g1") == ""
        assert await store.get_channel_summary("c2") == ""
        assert await store.get_guild_user_names("g1") == []
        assert await store.get_guild_summary("g2") == "Likes: coffee"

        await store.wipe_all_memory()
        assert await store.get_guild_summary("g2") == ""
        assert await store.get_recent_messages("u3") == []

    asyncio.run(scenario())


def test_recent_channel_messages_exclude_requester_and_label_authors(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = _ClockedStore(tmp_path / "memory.db")
        await store.init()
        await store.record_message("u1", "c1", "g1", "from me", display_name="Me")
        store.now_ms += 1000
        await store.record_message("u2", "c1", "g1", "named author", display_name="Bo")
        store.now_ms += 1000
        await store.record_message("99991234", "c1", "g1", "nameless author")

        lines = await store.get_recent_channel_messages("c1", "u1", 5)

        assert len(lines) == 2
        assert lines[0].endswith("@User1234: nameless author")
        assert lines[1].endswith("@Bo: named author")

    asyncio.run(scenario())


def test_known_users_window_and_guild_sync_registration(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = _ClockedStore(tmp_path / "memory.db", known_users_window_days=1)
        await store.init()

        await store.upsert_guild_user("g1", "u-old", "Oldie")
        store.now_ms += 2 * DAY_MS
        await store.upsert_guild_user("g1", "u-sync", "Lurker", joined_at=123, seen_at=0)
        await store.upsert_guild_user("g1", "u-new", "Fresh")

        assert await store.get_recent_guild_users("g1") == [{"user_id": "u-new", "display_name": "Fresh"}]
        lurker = await store.get_guild_user("g1", "u-sync")
        assert lurker is not None
        assert lurker["joined_at"] == 123
        assert lurker["last_seen_at"] == 0

        await store.record_message("u-sync", "c1", "g1", "finally talking", display_name="Lurker")
        lurker = await store.get_guild_user("g1", "u-sync")
        assert lurker is not None
        assert lurker["joined_at"] == 123
        assert lurker["last_seen_at"] == store.now_ms

    asyncio.run(scenario())


def test_roles_and_context_cards(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = _ClockedStore(tmp_path / "memory.db")
        await store.init()
        await store.upsert_guild_metadata("g1", "Test Server", "owner-1", 42)
        await store.upsert_guild_user("g1", "owner-1", "Boss", joined_at=1_600_000_000_000)
        await store.upsert_guild_user("g1", "u2", "Helper")
        await store.upsert_guild_role("g1", "r-admin", "Admin", position=10)
        await store.upsert_guild_role("g1", "r-mod", "Moderator", position=5)
        await store.replace_member_roles("g1", "owner-1", ["r-admin", "r-mod"])
        await store.replace_member_roles("g1", "u2", ["r-mod"])

        assert [role["role_name"] for role in await store.get_guild_roles("g1")] == ["Admin", "Moderator"]
        assert await store.get_role_member_count("g1", "r-mod") == 2
        assert await store.get_role_member_names("g1", "r-mod") == ["Boss", "Helper"]

        server = await store.get_server_context("g1")
        assert "Server: Test Server" in server
        assert "Members: 42" in server
        assert "Owner: Boss (owner-1)" in server
        assert "Roles: Admin, Moderator" in server

        user = await store.get_user_context("g1", "owner-1")
        assert user.startswith("User: Boss")
        assert "Joined: 2020-09-13" in user
        assert "Roles: Admin, Moderator" in user

        await store.delete_guild_role("g1", "r-admin")
        assert await store.get_member_roles("g1", "owner-1") == ["r-mod"]
        await store.delete_all_member_roles("g1", "u2")
        assert await store.get_role_member_count("g1", "r-mod") == 1
        await store.upsert_member_role("g1", "u2", "r-mod")
        await store.upsert_member_role("g1", "u2", "r-mod")
        assert await store.get_role_member_count("g1", "r-mod") == 2
        await store.delete_member_role("g1", "u2", "r-mod")
        assert await store.get_member_roles("g1", "u2") == []
        assert await store.get_server_context("g-unknown") == ""
        assert await store.get_user_context("g1", "ghost") == ""

    asyncio.run(scenario())


def test_bot_message_tracking_filters_by_channel_and_age(tmp_path: Path) -> None:
    async def scenario() -> None:
        store = _ClockedStore(tmp_path / "memory.db")
        await store.init()
        await store.track_bot_message("m1", "c1", "g1")
        store.now_ms += 10_000
        await store.track_bot_message("m2", "c1", "g1")
        await store.track_bot_message("m2", "c1", "g1")
        await store.track_bot_message("m3", "c2", "g1")
        await store.track_bot_message("m4", "dm", None)

        since = store.now_ms - 5_000
        assert await store.get_bot_messages_in_channel("c1", "g1", since) == ["m2"]
        assert await store.get_bot_messages_in_channel("c1", "g1", 0) == ["m1", "m2"]
        assert await store.get_bot_messages_in_channel("dm", None, 0) == ["m4"]

        await store.delete_bot_message_record("m1")
        assert await store.get_bot_messages_in_channel("c1", "g1", 0) == ["m2"]

    asyncio.run(scenario())
