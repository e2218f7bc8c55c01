"""
Chat negotiator service entry point.

WHAT: The FastAPI app serving negotiation commands, saved sessions and event streams
WHY: Live sessions hold browsers and LLM clients that must be released on exit
HOW: Lifespan opens the saved-session database, then stops every live session on
     shutdown before disposing the shared provider and the engine
"""

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .core.config import settings
from .core.database import init_db, close_db
from .core.session_manager import SessionManager, get_session_manager
from .llm.provider_factory import reset_provider
from .utils.logger import setup_logging, get_logger
from .middleware.error_handler import register_exception_handlers
from .api.v1.router import api_router

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} (LLM provider: {settings.LLM_PROVIDER}, "
                f"browser mode: {settings.BROWSER_MODE})")
    init_db()

    yield

    manager = get_session_manager()
    logger.info(f"Shutting down, stopping {manager.active_count} live session(s)")
    await manager.shutdown()
    reset_provider()
    close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

# The UI runs on its own dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)
app.include_router(api_router)


@app.get("/")
async def root(manager: SessionManager = Depends(get_session_manager)):
    """Service banner with the number of live negotiations."""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "active_sessions": manager.active_count,
        "max_sessions": manager.max_active,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "negotiator.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
