"""
LLM provider protocol definition.

WHAT: Abstract interface for LLM providers
WHY: Decouple the decision maker from specific provider implementations
HOW: Use Protocol to define async methods for ping, generate and close
"""

from typing import Protocol
from .types import ChatMessage, LLMResult, ProviderStatus, ToolDefinition


class LLMProvider(Protocol):
    """Protocol defining the interface all LLM providers must implement."""

    async def ping(self) -> ProviderStatus:
        """Check provider health and availability."""
        ...

    async def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
        stop: list[str] | None = None,
        model: str | None = None,
        tools: list[ToolDefinition] | None = None,
        tool_choice: str | None = None,
    ) -> LLMResult:
        """
        Generate a complete response.

        With `tools`, the model may answer with tool calls instead of text;
        `tool_choice` names a tool the model is forced to call.
        """
        ...

    async def close(self) -> None:
        """Release the underlying HTTP client."""
        ...
