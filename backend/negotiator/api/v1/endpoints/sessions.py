"""
Saved-session endpoints.

WHAT: List, inspect, rename, delete and continue saved negotiations
WHY: The human reviews past negotiations and can pick one back up
HOW: FastAPI router over the SessionManager's SessionStore
"""

from typing import List

from fastapi import APIRouter, Depends, status

from ....models.api_schemas import (
    ContinueSessionRequest,
    DeleteSessionResponse,
    RenameRequest,
    SavedSession,
    SavedSessionSummary,
    StartNegotiationResponse,
)
from ....core.session_manager import SessionManager, get_session_manager
from ....utils.exceptions import SavedSessionNotFoundException
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/sessions", response_model=List[SavedSessionSummary])
async def list_sessions(manager: SessionManager = Depends(get_session_manager)):
    """Saved negotiations, newest first."""
    return manager.store.list_sessions()


@router.get("/sessions/{saved_id}", response_model=SavedSession)
async def get_session(saved_id: str, manager: SessionManager = Depends(get_session_manager)):
    return manager.store.load(saved_id)


@router.patch("/sessions/{saved_id}", response_model=SavedSession)
async def rename_session(
    saved_id: str,
    request: RenameRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    """Rename a saved negotiation; a live session with the same id is renamed too."""
    saved = manager.store.rename(saved_id, request.name)
    if manager.is_active(saved_id):
        manager.rename(saved_id, request.name)
    return saved


@router.delete("/sessions/{saved_id}", response_model=DeleteSessionResponse)
async def delete_session(saved_id: str, manager: SessionManager = Depends(get_session_manager)):
    if not manager.store.remove(saved_id):
        raise SavedSessionNotFoundException(saved_id)
    return DeleteSessionResponse(saved_id=saved_id, deleted=True)


@router.post(
    "/sessions/{saved_id}/continue",
    response_model=StartNegotiationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def continue_session(
    saved_id: str,
    request: ContinueSessionRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Continue a saved negotiation.

    The session reopens under its saved id with the prior conversation and
    enters paused, remembering negotiating, once the page has loaded.
    """
    handle = await manager.continue_session(saved_id, request)
    return StartNegotiationResponse(
        session_id=handle.session_id,
        phase=handle.agent.phase,
        stream_url=f"/api/v1/negotiations/{handle.session_id}/events",
    )
