"""
Status and health check endpoints.

WHAT: Health monitoring for the LLM provider, database and live sessions
WHY: The UI checks the model server before starting a negotiation
HOW: FastAPI endpoints calling provider ping and DB ping
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from ....llm.provider_factory import get_provider
from ....llm.types import ProviderError
from ....core.database import ping_database
from ....core.config import settings
from ....core.session_manager import SessionManager, get_session_manager
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def _llm_status() -> dict:
    try:
        status = await get_provider().ping()
        return asdict(status)
    except ProviderError as e:
        logger.error(f"Failed to get LLM status: {e}")
        return {"available": False, "base_url": "unknown", "models": None, "error": str(e)}


@router.get("/llm/status")
async def llm_status():
    """
    Check LLM provider status.

    Returns:
        JSON with provider status and database status
    """
    return {
        "llm": await _llm_status(),
        "database": ping_database()
    }


@router.get("/health")
async def health_check(manager: SessionManager = Depends(get_session_manager)):
    """
    Overall application health check.

    Healthy only when both the LLM provider and the database answer.
    """
    llm = await _llm_status()
    db_status = ping_database()
    healthy = llm["available"] and db_status["available"]

    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.APP_VERSION,
        "app_name": settings.APP_NAME,
        "components": {
            "llm": {
                "available": llm["available"],
                "provider": settings.LLM_PROVIDER
            },
            "database": {
                "available": db_status["available"]
            },
            "sessions": {
                "active": manager.active_count,
                "max_active": manager.max_active
            }
        }
    }
