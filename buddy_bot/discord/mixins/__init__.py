from .commands_mixin import CommandsMixin
from .guild_sync_mixin import GuildSyncMixin
from .identity_mixin import IdentityMixin, MemoryGate
from .message_mixin import MessageMixin

__all__ = [
    "CommandsMixin",
    "GuildSyncMixin",
    "IdentityMixin",
    "MemoryGate",
    "MessageMixin",
]
