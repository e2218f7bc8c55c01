"""
API v1 router.

WHAT: Mounts the negotiation, streaming, saved-session, settings and status routes
WHY: The UI talks to one versioned prefix
HOW: One prefixed APIRouter; each endpoint module contributes its router under its own tag
"""

from fastapi import APIRouter

from .endpoints import negotiation, sessions, settings, status, streaming

api_router = APIRouter(prefix="/api/v1")

for module, tag in (
    (status, "status"),
    (negotiation, "negotiation"),
    (streaming, "streaming"),
    (sessions, "sessions"),
    (settings, "settings"),
):
    api_router.include_router(module.router, tags=[tag])
