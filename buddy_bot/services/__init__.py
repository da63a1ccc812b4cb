from .completion_client import CompletionClient, CompletionRequest
from .content_policy import ContentPolicy
from .intent_router import IntentRouter
from .media import MediaFetcher

__all__ = ["CompletionClient", "CompletionRequest", "ContentPolicy", "IntentRouter", "MediaFetcher"]
