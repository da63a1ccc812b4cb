from __future__ import annotations

from .storage.allowlist import MemoryAllowlistMixin
from .storage.bot_messages import MemoryBotMessagesMixin
from .storage.guild_users import MemoryGuildUsersMixin
from .storage.messages import MemoryMessagesMixin
from .storage.profiles import MemoryProfilesMixin
from .storage.roles import MemoryRolesMixin
from .storage.schema import MemorySchemaMixin
from .storage.settings import MemorySettingsMixin


class MemoryStore(
    MemorySchemaMixin,
    MemorySettingsMixin,
    MemoryAllowlistMixin,
    MemoryMessagesMixin,
    MemoryProfilesMixin,
    MemoryGuildUsersMixin,
    MemoryRolesMixin,
    MemoryBotMessagesMixin,
):
    """Persistent conversational memory: user/channel/guild summaries, message log and guild caches."""
