"""LLM provider layer."""

from .types import (
    ChatMessage,
    LLMResult,
    ProviderStatus,
    ToolDefinition,
    ToolCall,
    TextReply,
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderDisabledError,
    ProviderResponseError,
)
from .provider import LLMProvider
from .provider_factory import get_provider, create_provider, reset_provider
from .decision import DecisionMaker

__all__ = [
    "ChatMessage",
    "LLMResult",
    "ProviderStatus",
    "ToolDefinition",
    "ToolCall",
    "TextReply",
    "ProviderError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "ProviderDisabledError",
    "ProviderResponseError",
    "LLMProvider",
    "get_provider",
    "create_provider",
    "reset_provider",
    "DecisionMaker",
]
