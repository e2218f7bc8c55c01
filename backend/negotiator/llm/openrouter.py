"""
OpenRouter provider implementation.

WHAT: External LLM provider via OpenRouter API
WHY: Cloud-based models when local inference is insufficient
HOW: OpenAI-compatible API with authorization headers and retry logic
"""

import httpx

from .chat_completions import ChatCompletionsProvider
from .types import ProviderDisabledError
from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


class OpenRouterProvider(ChatCompletionsProvider):
    """OpenRouter LLM provider (disabled unless enabled in settings or given a key)."""

    label = "OpenRouter"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ):
        # An explicit per-session key enables the provider regardless of settings
        self.enabled = settings.LLM_ENABLE_OPENROUTER or bool(api_key)
        self.api_key = api_key if api_key is not None else settings.OPENROUTER_API_KEY

        if self.enabled and (not self.api_key or not self.api_key.strip()):
            logger.error("OpenRouter enabled but OPENROUTER_API_KEY is not set or empty!")
            raise ProviderDisabledError(
                "OpenRouter is enabled but OPENROUTER_API_KEY is not set or empty. "
                "Set OPENROUTER_API_KEY with a key from https://openrouter.ai/keys"
            )

        super().__init__(
            base_url=base_url or settings.OPENROUTER_BASE_URL,
            default_model=model or settings.OPENROUTER_DEFAULT_MODEL,
            max_retries=max_retries if max_retries is not None else settings.LLM_MAX_RETRIES,
            retry_delay=retry_delay if retry_delay is not None else settings.LLM_RETRY_DELAY,
            client=httpx.AsyncClient(
                timeout=httpx.Timeout(5.0, read=60.0),  # Longer timeout for cloud API
                limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "HTTP-Referer": settings.APP_NAME,
                    "X-Title": settings.APP_NAME,
                },
            ),
        )

        if self.enabled:
            masked = '*' * 10 + self.api_key[-4:] if len(self.api_key) > 4 else '***'
            logger.info(f"OpenRouter provider initialized (enabled, model: {self.default_model}, API key: {masked})")
        else:
            logger.info("OpenRouter provider initialized (disabled)")

    def _check_enabled(self) -> None:
        """Raise exception if provider is disabled."""
        if not self.enabled:
            raise ProviderDisabledError("OpenRouter provider is disabled. Set LLM_ENABLE_OPENROUTER=true to enable.")
