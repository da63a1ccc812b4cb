from .edit_tracker import EditTracker
from .rate_limiter import RateLimitDecision, RateLimiter
from .turn_cache import Turn, TurnCache

__all__ = ["EditTracker", "RateLimitDecision", "RateLimiter", "Turn", "TurnCache"]
