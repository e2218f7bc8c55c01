"""
UI settings and message refinement endpoints.

WHAT: Key/value UI settings; rewrite a human draft in the negotiation's voice
WHY: The UI remembers its preferences server-side and offers a "polish my message" button
HOW: SessionStore for settings; a one-off decision call for refinement
"""

from fastapi import APIRouter, Depends

from ....agents.prompts import refine_message_prompt
from ....models.api_schemas import (
    LLMConfig,
    RefineRequest,
    RefineResponse,
    SettingValueRequest,
    SettingsResponse,
)
from ....core.session_manager import SessionManager, get_session_manager
from ....utils.text import clean_chat_message
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/settings", response_model=SettingsResponse)
async def get_settings(manager: SessionManager = Depends(get_session_manager)):
    return SettingsResponse(settings=manager.store.get_settings())


@router.put("/settings/{key}", response_model=SettingsResponse)
async def put_setting(
    key: str,
    request: SettingValueRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    manager.store.set_setting(key, request.value)
    return SettingsResponse(settings=manager.store.get_settings())


@router.post("/refine", response_model=RefineResponse)
async def refine_message(
    request: RefineRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Rewrite a draft chat message.

    Stateless: no session is needed and nothing is recorded.

    Raises:
        ProviderError: The LLM call failed (mapped to 502/503)
    """
    decider = manager.decider_factory(request.llm_config or LLMConfig())
    try:
        refined = await decider.decide(
            refine_message_prompt(request.config),
            [{"role": "user", "content": request.text}],
        )
    finally:
        provider = getattr(decider, "provider", None)
        if provider is not None:
            await provider.close()

    logger.info(f"Refined draft ({len(request.text)} -> {len(refined)} chars)")
    return RefineResponse(text=clean_chat_message(refined))
