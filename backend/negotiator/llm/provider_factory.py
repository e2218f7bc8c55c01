"""
LLM provider factory.

WHAT: Build the configured LLM provider, as an app singleton or per session
WHY: Centralize provider selection and avoid multiple shared clients
HOW: Read LLM_PROVIDER from config (or a session's LLM config), cache the singleton, log selection
"""

from typing import TYPE_CHECKING

from ..core.config import settings
from ..utils.logger import get_logger

if TYPE_CHECKING:
    from .provider import LLMProvider
    from ..models.api_schemas import LLMConfig

logger = get_logger(__name__)

# Singleton instance
_provider_instance: "LLMProvider | None" = None


def _build(
    provider_name: str,
    *,
    model: str | None = None,
    base_url: str | None = None,
    api_key: str | None = None,
) -> "LLMProvider":
    if provider_name == "lm_studio":
        from .lm_studio import LMStudioProvider
        return LMStudioProvider(base_url=base_url, model=model)
    if provider_name == "openrouter":
        from .openrouter import OpenRouterProvider
        return OpenRouterProvider(api_key=api_key, base_url=base_url, model=model)
    raise ValueError(f"Unknown LLM provider: {provider_name}")


def get_provider() -> "LLMProvider":
    """
    Get the configured LLM provider singleton.

    Returns:
        LLMProvider instance based on settings.LLM_PROVIDER

    Raises:
        ValueError: If provider name is unknown
    """
    global _provider_instance

    if _provider_instance is None:
        _provider_instance = _build(settings.LLM_PROVIDER)
        logger.info(f"LLM provider initialized: {settings.LLM_PROVIDER}")

    return _provider_instance


def create_provider(llm_config: "LLMConfig | None" = None) -> "LLMProvider":
    """
    Build a dedicated provider for one negotiation session.

    Fields left unset in `llm_config` fall back to settings.
    """
    if llm_config is None:
        return _build(settings.LLM_PROVIDER)

    provider_name = llm_config.provider or settings.LLM_PROVIDER
    logger.info(f"Session LLM provider: {provider_name} (model: {llm_config.model or 'default'})")
    return _build(
        provider_name,
        model=llm_config.model,
        base_url=llm_config.base_url,
        api_key=llm_config.api_key,
    )


def reset_provider() -> None:
    """Reset the provider singleton (useful for testing)."""
    global _provider_instance
    _provider_instance = None
