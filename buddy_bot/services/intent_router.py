from __future__ import annotations

import logging
import random
import re
import unicodedata
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

logger = logging.getLogger("buddy_bot.intents")

T = TypeVar("T")

SUBSTRING_SCORE = 100
MIN_FUZZY_SCORE = 2

_OWNER_RE = re.compile(r"^(?:who(?:'s| is) the (?:server )?owner|who owns (?:this|the) server|server owner)\??$")
_FIND_USER_RE = re.compile(r"^(?:find|locate|search for|where is) (?:user )?([\w\s'.-]+?)\??$")
_ROLE_MEMBERS_RE = re.compile(
    r"^(?:who has|list|show|users with|members with|members in) (?:the )?(?:role )?([^?]+?)(?: role)?\??$"
)
_RANDOM_RE = re.compile(
    r"\b(?:random (?:member|user|person)|pick someone|choose someone|who should i (?:ping|pick))\b"
)


def normalize(text: str | None) -> str:
    decomposed = unicodedata.normalize("NFD", str(text or "").strip())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def fuzzy_score(query: str, target: str) -> int:
    """Score `query` against `target`: substring beats ordered subsequence, -1 when not all chars match."""
    q = normalize(query)
    t = normalize(target)
    if not q:
        return -1
    if q in t:
        return SUBSTRING_SCORE
    matched = 0
    for ch in t:
        if matched < len(q) and ch == q[matched]:
            matched += 1
    return matched if matched == len(q) else -1


def find_best_match(candidates: Iterable[T], query: str, key: Callable[[T], str]) -> Optional[T]:
    items = list(candidates)
    wanted = normalize(query)
    if not wanted:
        return None
    for item in items:
        if normalize(key(item)) == wanted:
            return item

    best: Optional[T] = None
    best_score = 0
    for item in items:
        score = fuzzy_score(wanted, key(item))
        if score > best_score:
            best, best_score = item, score
    return best if best_score >= MIN_FUZZY_SCORE else None


class IntentRouter:
    """Answers a few server questions straight from the guild cache without calling the model."""

    def __init__(self, memory: Any, rng: random.Random | None = None, *, lookup_limit: int = 100) -> None:
        self.memory = memory
        self.rng = rng or random.Random()
        self.lookup_limit = max(1, int(lookup_limit))

    async def route(self, text: str, *, guild_id: str | None, user_id: str | None = None) -> str | None:
        if not text or not guild_id:
            return None
        lowered = " ".join(text.lower().split())

        if _OWNER_RE.search(lowered):
            return await self._owner(guild_id)

        match = _FIND_USER_RE.match(lowered)
        if match:
            return await self._find_user(guild_id, match.group(1).strip())

        match = _ROLE_MEMBERS_RE.match(lowered)
        if match:
            return await self._role_members(guild_id, match.group(1).strip())

        if _RANDOM_RE.search(lowered):
            return await self._random_member(guild_id, exclude_user_id=user_id)
        return None

    async def _owner(self, guild_id: str) -> str | None:
        metadata = await self.memory.get_guild_metadata(guild_id)
        owner_id = metadata.get("owner_id") if metadata else None
        if not owner_id:
            return None
        owner = await self.memory.get_guild_user(guild_id, owner_id)
        owner_name = (owner or {}).get("display_name") or f"User{str(owner_id)[-4:]}"
        return f"Server owner: **{owner_name}** ({owner_id})"

    async def _find_user(self, guild_id: str, query: str) -> str | None:
        if len(query) < 2:
            return None
        users = await self.memory.get_recent_guild_users(guild_id, self.lookup_limit)
        user = find_best_match(users, query, key=lambda item: item["display_name"])
        if user is None:
            return None
        return f"Found: **{user['display_name']}** (<@{user['user_id']}>)"

    async def _role_members(self, guild_id: str, query: str) -> str | None:
        if len(query) < 2:
            return None
        roles = await self.memory.get_guild_roles(guild_id)
        role = find_best_match(roles, query, key=lambda item: str(item["role_name"]))
        if role is None:
            return None
        role_id = str(role["role_id"])
        count = await self.memory.get_role_member_count(guild_id, role_id)
        names: Sequence[str] = await self.memory.get_role_member_names(guild_id, role_id, 8)
        suffix = f" (e.g., {', '.join(names)})" if names else ""
        plural = "" if count == 1 else "s"
        return f"**{role['role_name']}**: {count} member{plural}{suffix}"

    async def _random_member(self, guild_id: str, *, exclude_user_id: str | None) -> str | None:
        users = await self.memory.get_recent_guild_users(guild_id, 50)
        pool = [user for user in users if user["user_id"] != exclude_user_id] or users
        if not pool:
            return None
        chosen = self.rng.choice(pool)
        return f"\N{GAME DIE} Picked: <@{chosen['user_id']}> (**{chosen['display_name']}**)"
