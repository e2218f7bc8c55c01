"""
LLM provider types, dataclasses, and exceptions.

WHAT: Standard type definitions for LLM interactions
WHY: Ensure consistent contracts across all providers and the decision maker
HOW: TypedDict for messages, dataclasses for tools/results/status, custom exceptions for errors
"""

from typing import TypedDict, Literal, Any
from dataclasses import dataclass, field


# Message format compatible with OpenAI-style APIs
ChatMessage = TypedDict(
    "ChatMessage",
    {"role": Literal["system", "user", "assistant"], "content": str}
)


@dataclass(frozen=True)
class ToolDefinition:
    """A function the model may be asked to call, described by a JSON schema."""
    name: str
    description: str
    parameters: dict

    def to_openai(self) -> dict:
        """Tool entry for the chat-completions `tools` array."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ToolCall:
    """A structured answer: the named tool with parsed JSON arguments."""
    name: str
    arguments: dict[str, Any]


@dataclass
class TextReply:
    """A free-text answer where a structured one was requested."""
    text: str


@dataclass
class LLMResult:
    """Complete LLM generation result."""
    text: str | None
    usage: dict
    model: str
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass
class ProviderStatus:
    """Health status of an LLM provider."""
    available: bool
    base_url: str
    models: list[str] | None = None
    error: str | None = None


# Provider exceptions
class ProviderError(Exception):
    """Base class for decision capability failures."""
    pass


class ProviderTimeoutError(ProviderError):
    """Request to provider timed out."""
    pass


class ProviderUnavailableError(ProviderError):
    """Provider is not reachable or down."""
    pass


class ProviderDisabledError(ProviderError):
    """Provider is disabled in configuration."""
    pass


class ProviderResponseError(ProviderError):
    """Provider returned an invalid or error response."""
    pass
