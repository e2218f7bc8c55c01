"""
Decision capability on top of an LLM provider.

WHAT: Free-text and single-tool structured decisions for the negotiation agent
WHY: The agent only needs two calls; provider quirks (native tool calling or not)
     stay behind this seam
HOW: Native forced tool calls when enabled, else the tool schema is appended to the
     prompt and JSON is pulled out of the reply
"""

import json

from .provider import LLMProvider
from .types import ChatMessage, TextReply, ToolCall, ToolDefinition
from ..core.config import settings
from ..utils.logger import get_logger
from ..utils.text import extract_json

logger = get_logger(__name__)


def schema_hint(tool: ToolDefinition) -> str:
    """Prompt suffix asking for JSON that matches the tool's schema."""
    return (
        "\n\nRespond with ONLY valid JSON matching this schema (no markdown, no code fences):\n"
        f"{json.dumps(tool.parameters, indent=2)}"
    )


class DecisionMaker:
    """Wraps an LLMProvider with the agent's decide/decide_structured contract."""

    def __init__(
        self,
        provider: LLMProvider,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        native_tools: bool | None = None,
    ):
        self.provider = provider
        self.model = model
        self.temperature = temperature if temperature is not None else settings.LLM_DEFAULT_TEMPERATURE
        self.max_tokens = max_tokens if max_tokens is not None else settings.LLM_DEFAULT_MAX_TOKENS
        self.native_tools = native_tools if native_tools is not None else settings.LLM_NATIVE_TOOLS

    async def decide(self, system_prompt: str, messages: list[ChatMessage]) -> str:
        """
        Free-text completion.

        Raises:
            ProviderError: The provider call failed
        """
        result = await self.provider.generate(
            [{"role": "system", "content": system_prompt}, *messages],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            model=self.model,
        )
        return (result.text or "").strip()

    async def decide_structured(
        self,
        system_prompt: str,
        messages: list[ChatMessage],
        tool: ToolDefinition,
    ) -> ToolCall | TextReply:
        """
        Ask for exactly one call of `tool`.

        Returns:
            ToolCall with parsed arguments, or TextReply when the model answered
            with anything that is not a JSON object

        Raises:
            ProviderError: The provider call failed
        """
        if self.native_tools:
            result = await self.provider.generate(
                [{"role": "system", "content": system_prompt}, *messages],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                model=self.model,
                tools=[tool],
                tool_choice=tool.name,
            )
            for call in result.tool_calls:
                if call.name == tool.name:
                    return call
            if result.tool_calls:
                logger.warning(f"Model called unexpected tool(s) {[c.name for c in result.tool_calls]}, wanted {tool.name}")
            return self._parse_text(result.text or "", tool)

        result = await self.provider.generate(
            [{"role": "system", "content": system_prompt + schema_hint(tool)}, *messages],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            model=self.model,
        )
        return self._parse_text(result.text or "", tool)

    def _parse_text(self, raw: str, tool: ToolDefinition) -> ToolCall | TextReply:
        try:
            args = extract_json(raw)
        except ValueError:
            logger.debug(f"No JSON in reply for {tool.name}; treating as text")
            return TextReply(text=raw)
        if not isinstance(args, dict):
            return TextReply(text=raw)
        return ToolCall(name=tool.name, arguments=args)
