"""
SSE streaming endpoint.

WHAT: Server-Sent Events stream of a live negotiation's UI events
WHY: The UI renders the conversation, phase, approvals and agent status live
HOW: EventSourceResponse over a broadcaster queue, heartbeats while idle
"""

import asyncio
import json
from datetime import datetime
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from ....core.config import settings
from ....core.session_manager import SessionHandle, SessionManager, get_session_manager
from ....models import events
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _format(event_type: str, data: dict) -> dict:
    return {
        "event": event_type,
        "data": json.dumps({
            "type": event_type,
            "data": data,
            "timestamp": datetime.now().isoformat()
        })
    }


async def session_event_generator(
    handle: SessionHandle,
    request: Optional[Request] = None,
    heartbeat_interval: Optional[float] = None,
) -> AsyncIterator[dict]:
    """
    Generate SSE events for one session.

    The stream opens with the current conversation and phase, so a client that
    connects late starts from the same state as the others. It ends when the
    session is torn down or the client disconnects.
    """
    interval = heartbeat_interval if heartbeat_interval is not None else settings.SSE_HEARTBEAT_INTERVAL
    broadcaster = handle.broadcaster
    queue = broadcaster.subscribe()
    logger.info(f"SSE stream opened for session {handle.session_id}")

    try:
        agent = handle.agent
        yield _format("connected", {"session_id": handle.session_id, "phase": agent.phase.value})
        initial = events.conversation_updated(agent.get_conversation())
        yield _format(initial["type"], initial["data"])
        if agent.pending_approval is not None:
            pending = events.approval_required(agent.pending_approval)
            yield _format(pending["type"], pending["data"])

        while not broadcaster.closed or not queue.empty():
            if request is not None and await request.is_disconnected():
                logger.info(f"SSE client disconnected from session {handle.session_id}")
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=interval)
            except asyncio.TimeoutError:
                yield _format("heartbeat", {})
                continue
            if event is None:
                break
            yield _format(event["type"], event["data"])
    finally:
        broadcaster.unsubscribe(queue)
        logger.info(f"SSE stream ended for session {handle.session_id}")


@router.get("/negotiations/{session_id}/events")
async def stream_negotiation(
    session_id: str,
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Stream negotiation events via SSE.

    Raises:
        SessionNotFoundException: If the session is not active
    """
    handle = manager.get(session_id)
    return EventSourceResponse(
        session_event_generator(handle, request),
        media_type="text/event-stream"
    )
