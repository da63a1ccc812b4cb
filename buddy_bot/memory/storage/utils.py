from __future__ import annotations

import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

DAY_MS = 24 * 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


def _sqlite_busy_timeout_ms() -> int:
    raw = os.getenv("MEMORY_SQLITE_BUSY_TIMEOUT_MS", "5000").strip()
    try:
        timeout = int(raw)
    except ValueError:
        timeout = 5000
    return max(0, min(timeout, 60000))


@asynccontextmanager
async def _sqlite_memory_connection(db_path: str | Path) -> AsyncIterator[aiosqlite.Connection]:
    async with aiosqlite.connect(db_path) as db:
        await db.execute("PRAGMA foreign_keys=ON")
        timeout_ms = _sqlite_busy_timeout_ms()
        if timeout_ms > 0:
            await db.execute(f"PRAGMA busy_timeout={timeout_ms}")
        yield db


@asynccontextmanager
async def _sqlite_memory_transaction(db_path: str | Path) -> AsyncIterator[aiosqlite.Connection]:
    """Open a connection holding one write transaction; commit on exit, roll back on any error."""
    async with _sqlite_memory_connection(db_path) as db:
        await db.execute("BEGIN IMMEDIATE")
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        await db.commit()


def _format_message_timestamp(created_at_ms: int) -> str:
    moment = datetime.fromtimestamp(int(created_at_ms) / 1000, tz=timezone.utc)
    return f"{moment:%b} {moment.day}, {moment:%H:%M}"


def _fallback_user_label(user_id: str) -> str:
    return f"User{str(user_id)[-4:]}"
