"""
OpenAI-compatible chat-completions client.

WHAT: Shared request/retry/parse logic for LM Studio and OpenRouter
WHY: Both providers speak the same wire format; only endpoints, auth and a few
     payload tweaks differ
HOW: HTTPX async client, exponential backoff on timeouts, connection errors and 5xx
"""

import asyncio
import json

import httpx

from .types import (
    ChatMessage,
    LLMResult,
    ProviderStatus,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderResponseError,
    ToolCall,
    ToolDefinition,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ChatCompletionsProvider:
    """Base for providers exposing `/models` and `/chat/completions`."""

    label = "LLM"

    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        max_retries: int,
        retry_delay: float,
        client: httpx.AsyncClient,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.client = client

    # Hooks for subclasses

    def _check_enabled(self) -> None:
        pass

    def _prepare_payload(self, payload: dict) -> dict:
        return payload

    def _clean_text(self, text: str) -> str:
        return text

    async def ping(self) -> ProviderStatus:
        """
        Check provider availability by listing models.

        Returns:
            ProviderStatus with availability and model list
        """
        self._check_enabled()

        try:
            response = await self.client.get(f"{self.base_url}/models", timeout=10.0)
            response.raise_for_status()
            data = response.json()

            models = [m.get("id") for m in data.get("data", [])]

            return ProviderStatus(
                available=True,
                base_url=self.base_url,
                models=models[:20] if models else None
            )
        except httpx.TimeoutException:
            logger.warning(f"{self.label} ping timed out")
            return ProviderStatus(available=False, base_url=self.base_url, error="Connection timeout")
        except httpx.ConnectError:
            logger.warning(f"{self.label} not reachable")
            return ProviderStatus(available=False, base_url=self.base_url, error="Connection refused")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"{self.label} ping failed: {e}")
            return ProviderStatus(available=False, base_url=self.base_url, error=str(e))

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

        Args:
            messages: Conversation history
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            stop: Optional stop sequences
            model: Optional model name (uses default_model if not provided)
            tools: Optional tool definitions offered to the model
            tool_choice: Name of a tool the model must call

        Returns:
            LLMResult with text and/or tool calls

        Raises:
            ProviderTimeoutError: Request timed out
            ProviderUnavailableError: Provider not reachable
            ProviderResponseError: Invalid response from provider
        """
        self._check_enabled()

        model_to_use = model or self.default_model
        logger.debug(f"Using model: {model_to_use} (requested: {model}, default: {self.default_model})")

        payload = {
            "model": model_to_use,
            "messages": [dict(m) for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
        }
        if stop:
            payload["stop"] = stop
        if tools:
            payload["tools"] = [t.to_openai() for t in tools]
            if tool_choice:
                payload["tool_choice"] = {"type": "function", "function": {"name": tool_choice}}

        payload = self._prepare_payload(payload)

        for attempt in range(self.max_retries):
            try:
                response = await self.client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload
                )
                response.raise_for_status()
                data = response.json()
                result = self._parse_result(data, model_to_use)

                logger.info(
                    f"{self.label} generate success (model: {result.model}, "
                    f"tokens: {result.usage.get('total_tokens', 'unknown')}, tool_calls: {len(result.tool_calls)})"
                )
                return result

            except httpx.TimeoutException as e:
                logger.warning(f"{self.label} timeout (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise ProviderTimeoutError(f"Request timed out after {self.max_retries} attempts") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.ConnectError as e:
                logger.error(f"{self.label} connection refused (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise ProviderUnavailableError(f"{self.label} is not reachable") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.HTTPStatusError as e:
                if e.response.status_code >= 500:
                    logger.error(f"{self.label} server error {e.response.status_code} (attempt {attempt + 1}/{self.max_retries})")
                    if attempt == self.max_retries - 1:
                        raise ProviderResponseError(f"Server error: {e.response.status_code}") from e
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                else:
                    # Client errors don't retry
                    raise ProviderResponseError(f"HTTP {e.response.status_code}: {e.response.text}") from e

            except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
                logger.error(f"Invalid response from {self.label}: {e}")
                raise ProviderResponseError(f"Invalid response format: {e}") from e

        raise ProviderResponseError("No response after retries")

    def _parse_result(self, data: dict, requested_model: str) -> LLMResult:
        message = data["choices"][0]["message"]
        content = message.get("content")
        text = self._clean_text(content) if isinstance(content, str) else None

        tool_calls: list[ToolCall] = []
        for raw_call in message.get("tool_calls") or []:
            function = raw_call.get("function") or {}
            arguments = function.get("arguments")
            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments) if arguments.strip() else {}
                except json.JSONDecodeError:
                    logger.warning(f"{self.label} returned unparseable arguments for tool {function.get('name')}")
                    continue
            if not isinstance(arguments, dict):
                logger.warning(f"{self.label} returned non-object arguments for tool {function.get('name')}")
                continue
            tool_calls.append(ToolCall(name=function.get("name", ""), arguments=arguments))

        return LLMResult(
            text=text,
            usage=data.get("usage") or {},
            model=data.get("model", requested_model),
            tool_calls=tool_calls,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
