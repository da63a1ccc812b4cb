from .allowlist import MemoryAllowlistMixin
from .bot_messages import MemoryBotMessagesMixin
from .guild_users import MemoryGuildUsersMixin
from .messages import MemoryMessagesMixin
from .profiles import MemoryProfilesMixin
from .roles import MemoryRolesMixin
from .schema import MemorySchemaMixin
from .settings import MemorySettingsMixin

__all__ = [
    "MemorySchemaMixin",
    "MemorySettingsMixin",
    "MemoryAllowlistMixin",
    "MemoryMessagesMixin",
    "MemoryProfilesMixin",
    "MemoryGuildUsersMixin",
    "MemoryRolesMixin",
    "MemoryBotMessagesMixin",
]
