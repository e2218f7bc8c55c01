"""
Negotiation endpoints.

WHAT: Start a negotiation and send it human commands
WHY: The UI drives pause/resume, approvals, directives and overrides over HTTP
HOW: FastAPI router delegating to the SessionManager; phase and approval
     violations surface as business exceptions
"""

from fastapi import APIRouter, Depends, status

from ....models.api_schemas import (
    ApproveRequest,
    CommandResponse,
    NegotiationStateResponse,
    RejectRequest,
    RenameRequest,
    StartNegotiationRequest,
    StartNegotiationResponse,
    StopNegotiationResponse,
    TextCommandRequest,
)
from ....models.negotiation import Phase
from ....core.session_manager import SessionManager, get_session_manager
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _stream_url(session_id: str) -> str:
    return f"/api/v1/negotiations/{session_id}/events"


@router.post("/negotiations", response_model=StartNegotiationResponse, status_code=status.HTTP_201_CREATED)
async def start_negotiation(
    request: StartNegotiationRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Start a negotiation.

    WHAT: Connect the browser and start the agent in the background
    WHY: Entry point for a new negotiation
    HOW: SessionManager.start, then hand back the event stream URL
    """
    logger.info(f"Starting negotiation with {request.config.service_provider} at {request.url}")
    handle = await manager.start(request)
    return StartNegotiationResponse(
        session_id=handle.session_id,
        phase=handle.agent.phase,
        stream_url=_stream_url(handle.session_id),
    )


@router.get("/negotiations/{session_id}", response_model=NegotiationStateResponse)
async def get_negotiation(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    return manager.state(session_id)


@router.patch("/negotiations/{session_id}", response_model=NegotiationStateResponse)
async def rename_negotiation(
    session_id: str,
    request: RenameRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    return manager.rename(session_id, request.name)


@router.post("/negotiations/{session_id}/stop", response_model=StopNegotiationResponse)
async def stop_negotiation(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    """Stop the agent, generate the closing summary and save the final record."""
    summary, saved = await manager.stop(session_id)
    return StopNegotiationResponse(session_id=session_id, phase=Phase.DONE, summary=summary, saved=saved)


@router.post("/negotiations/{session_id}/pause", response_model=CommandResponse)
async def pause_negotiation(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    phase = manager.pause(session_id)
    return CommandResponse(session_id=session_id, phase=phase)


@router.post("/negotiations/{session_id}/resume", response_model=CommandResponse)
async def resume_negotiation(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    phase = manager.resume(session_id)
    return CommandResponse(session_id=session_id, phase=phase)


@router.post("/negotiations/{session_id}/typing", response_model=CommandResponse)
async def user_typing(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    """Typing keep-alive from the UI; ignored (accepted=false) while paused or finished."""
    accepted = manager.typing(session_id)
    return CommandResponse(session_id=session_id, phase=manager.get(session_id).agent.phase, accepted=accepted)


@router.post("/negotiations/{session_id}/approve", response_model=CommandResponse)
async def approve_offer(
    session_id: str,
    request: ApproveRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    phase = manager.approve(session_id, request.request_id)
    return CommandResponse(session_id=session_id, phase=phase)


@router.post("/negotiations/{session_id}/reject", response_model=CommandResponse)
async def reject_offer(
    session_id: str,
    request: RejectRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    phase = manager.reject(session_id, request.request_id, request.directive)
    return CommandResponse(session_id=session_id, phase=phase)


@router.post("/negotiations/{session_id}/directive", response_model=CommandResponse)
async def send_directive(
    session_id: str,
    request: TextCommandRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    phase = manager.directive(session_id, request.text)
    return CommandResponse(session_id=session_id, phase=phase)


@router.post("/negotiations/{session_id}/override", response_model=CommandResponse)
async def send_override(
    session_id: str,
    request: TextCommandRequest,
    manager: SessionManager = Depends(get_session_manager),
):
    """Type the human's own message into the chat; accepted=false when no chat input was found."""
    sent = await manager.override(session_id, request.text)
    return CommandResponse(session_id=session_id, phase=manager.get(session_id).agent.phase, accepted=sent)
