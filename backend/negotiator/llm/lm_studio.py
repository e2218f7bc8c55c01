"""
LM Studio provider implementation.

WHAT: Local LLM inference via LM Studio
WHY: Enable local-first inference without external API dependencies
HOW: OpenAI-compatible chat completions; thinking mode disabled for Qwen3 models
"""

import httpx

from .chat_completions import ChatCompletionsProvider
from ..core.config import settings
from ..utils.text import strip_thinking


class LMStudioProvider(ChatCompletionsProvider):
    """LM Studio LLM provider with retry logic."""

    label = "LM Studio"

    def __init__(
        self,
        *,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ):
        read_timeout = timeout if timeout is not None else settings.LM_STUDIO_TIMEOUT
        super().__init__(
            base_url=base_url or settings.LM_STUDIO_BASE_URL,
            default_model=model or settings.LM_STUDIO_DEFAULT_MODEL,
            max_retries=max_retries if max_retries is not None else settings.LLM_MAX_RETRIES,
            retry_delay=retry_delay if retry_delay is not None else settings.LLM_RETRY_DELAY,
            client=httpx.AsyncClient(
                timeout=httpx.Timeout(5.0, read=read_timeout),
                limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            ),
        )

    def _prepare_payload(self, payload: dict) -> dict:
        """
        Add the /no_think soft switch for Qwen3 models.

        The directive goes on the system message, or on the first user
        message when there is none. `enable_thinking` is the matching API flag.
        """
        messages = payload["messages"]
        target = next((m for m in messages if m.get("role") == "system"), None)
        separator = "\n\n"
        if target is None:
            target = next((m for m in messages if m.get("role") == "user"), None)
            separator = " "
        if target is not None and "/no_think" not in target.get("content", ""):
            target["content"] = f"{target.get('content', '')}{separator}/no_think"

        payload["enable_thinking"] = False
        return payload

    def _clean_text(self, text: str) -> str:
        return strip_thinking(text)
