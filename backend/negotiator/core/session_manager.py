"""
Session manager for live negotiations.

WHAT: Registry of active negotiation sessions, command routing and persistence hooks
WHY: The HTTP layer needs one owner for session lifecycle (create, continue, stop)
     and for mirroring live sessions into the saved-session store
HOW: Explicit dict registry of per-session handles; the agent starts as a background task;
     conversation updates schedule a debounced auto-save through a TimerTable
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .session_store import SessionStore
from ..agents.negotiation_agent import AgentTimings, Decider, NegotiationAgent
from ..agents.observer import SnapshotObserver
from ..agents.researcher import WebResearcher
from ..browser.action_surface import ActionSurface, BrowserActionError
from ..browser.playwright_surface import PlaywrightActionSurface
from ..events import EventBroadcaster
from ..llm.decision import DecisionMaker
from ..llm.provider_factory import create_provider
from ..llm.types import ProviderError
from ..models import events
from ..models.api_schemas import (
    BrowserConfig,
    ContinueSessionRequest,
    LLMConfig,
    NegotiationStateResponse,
    SavedSession,
    StartNegotiationRequest,
)
from ..models.events import AgentEvent
from ..models.negotiation import ConversationMessage, Phase, SessionContext, utc_now
from ..utils.exceptions import (
    ApprovalNotPendingException,
    InvalidPhaseException,
    NegotiationAlreadyActiveException,
    SessionNotFoundException,
)
from ..utils.history import strip_summaries
from ..utils.logger import get_logger
from ..utils.timers import TimerPurpose, TimerTable

logger = get_logger(__name__)

SurfaceFactory = Callable[[], ActionSurface]
DeciderFactory = Callable[[LLMConfig], Decider]
ResearcherFactory = Callable[[], Optional[WebResearcher]]


def default_decider_factory(llm_config: LLMConfig) -> DecisionMaker:
    return DecisionMaker(
        create_provider(llm_config),
        model=llm_config.model,
        temperature=llm_config.temperature,
        max_tokens=llm_config.max_tokens,
    )


@dataclass
class SessionHandle:
    """Everything one live session owns."""
    context: SessionContext
    agent: NegotiationAgent
    surface: ActionSurface
    broadcaster: EventBroadcaster
    llm_config: LLMConfig
    browser_config: BrowserConfig
    timers: TimerTable
    task: Optional[asyncio.Task] = None
    saves: int = field(default=0)

    @property
    def session_id(self) -> str:
        return self.context.session_id


class SessionManager:
    """
    Manage live negotiation sessions.

    WHAT: Create, look up, command and tear down sessions
    WHY: Enforce the active-session limit and keep saved records current
    HOW: Factories for the browser, decision maker and researcher are injectable
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        *,
        surface_factory: Optional[SurfaceFactory] = None,
        decider_factory: Optional[DeciderFactory] = None,
        researcher_factory: Optional[ResearcherFactory] = None,
        timings: Optional[AgentTimings] = None,
        max_active: Optional[int] = None,
        auto_save_delay: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ):
        self.store = store or SessionStore()
        self.surface_factory = surface_factory or PlaywrightActionSurface
        self.decider_factory = decider_factory or default_decider_factory
        self.researcher_factory = researcher_factory or WebResearcher
        self.timings = timings
        self.max_active = max_active if max_active is not None else settings.MAX_ACTIVE_SESSIONS
        self.auto_save_delay = auto_save_delay if auto_save_delay is not None else settings.AUTO_SAVE_DEBOUNCE_SECONDS
        self.poll_interval = poll_interval if poll_interval is not None else settings.OBSERVER_POLL_INTERVAL
        self._sessions: Dict[str, SessionHandle] = {}

    # ---------- Registry ----------

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def is_active(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> SessionHandle:
        handle = self._sessions.get(session_id)
        if handle is None:
            raise SessionNotFoundException(session_id)
        return handle

    def _ensure_capacity(self, session_id: Optional[str] = None) -> None:
        if session_id is not None and session_id in self._sessions:
            raise NegotiationAlreadyActiveException(self.active_count, self.max_active)
        if self.active_count >= self.max_active:
            raise NegotiationAlreadyActiveException(self.active_count, self.max_active)

    # ---------- Lifecycle ----------

    async def start(self, request: StartNegotiationRequest) -> SessionHandle:
        """
        Start a new negotiation in the background.

        Raises:
            NegotiationAlreadyActiveException: Active session limit reached
            BrowserActionError: The browser could not be reached
            ProviderError: The per-session LLM provider could not be built
        """
        self._ensure_capacity()
        context = SessionContext(start_url=request.url, config=request.config)
        return await self._launch(
            context,
            llm_config=request.llm_config or LLMConfig(),
            browser_config=request.browser_config or BrowserConfig(),
        )

    async def continue_session(self, saved_id: str, request: ContinueSessionRequest) -> SessionHandle:
        """
        Reopen a saved negotiation under its saved id, paused so the human reviews first.

        Raises:
            SavedSessionNotFoundException: No saved record with this id
            NegotiationAlreadyActiveException: Active session limit reached
        """
        saved = self.store.load(saved_id)
        self._ensure_capacity(saved.id)

        context = SessionContext(
            session_id=saved.id,
            start_url=saved.url,
            config=request.config or saved.config,
            started_at=saved.started_at,
        )
        logger.info(f"Continuing saved session {saved.id} ({len(saved.messages)} messages)")
        return await self._launch(
            context,
            llm_config=request.llm_config or saved.llm_config,
            browser_config=request.browser_config or saved.browser_config,
            prior_conversation=strip_summaries(saved.messages),
            paused_restore=Phase.NEGOTIATING,
        )

    async def _launch(
        self,
        context: SessionContext,
        *,
        llm_config: LLMConfig,
        browser_config: BrowserConfig,
        prior_conversation: Optional[list[ConversationMessage]] = None,
        paused_restore: Optional[Phase] = None,
    ) -> SessionHandle:
        session_id = context.session_id
        decider = self.decider_factory(llm_config)
        surface = self.surface_factory()
        try:
            await surface.connect(browser_config, session_id)
        except BrowserActionError:
            provider = getattr(decider, "provider", None)
            if provider is not None:
                await provider.close()
            raise

        broadcaster = EventBroadcaster(session_id)
        agent = NegotiationAgent(
            surface,
            SnapshotObserver(surface, poll_interval=self.poll_interval),
            decider,
            context.config,
            broadcaster.publish,
            researcher=self.researcher_factory(),
            timings=self.timings,
            prior_conversation=prior_conversation,
        )
        handle = SessionHandle(
            context=context,
            agent=agent,
            surface=surface,
            broadcaster=broadcaster,
            llm_config=llm_config.without_secrets(),
            browser_config=browser_config,
            timers=TimerTable(f"session:{session_id[:8]}"),
        )
        broadcaster.add_listener(lambda event: self._on_event(handle, event))
        self._sessions[session_id] = handle

        handle.task = asyncio.create_task(self._run_agent(handle, paused_restore))
        logger.info(f"Session {session_id} started for {context.start_url} ({self.active_count} active)")
        return handle

    async def _run_agent(self, handle: SessionHandle, paused_restore: Optional[Phase]) -> None:
        try:
            await handle.agent.start(handle.context.start_url, paused_restore=paused_restore)
        except (BrowserActionError, ProviderError) as e:
            logger.error(f"Session {handle.session_id} failed to start: {e}")
            handle.broadcaster.publish(events.error(f"Failed to start: {e}"))
            if handle.session_id in self._sessions:
                await self.stop(handle.session_id)

    async def stop(self, session_id: str) -> Tuple[Optional[str], bool]:
        """
        Stop a session, save its final record and release the browser.

        Returns:
            (summary, saved)
        """
        handle = self._sessions.pop(session_id, None)
        if handle is None:
            raise SessionNotFoundException(session_id)

        logger.info(f"Stopping session {session_id}")
        handle.timers.cancel_all()
        summary = await handle.agent.stop()
        saved = self._save(handle, summary=summary)

        if handle.task is not None and not handle.task.done() and handle.task is not asyncio.current_task():
            handle.task.cancel()

        await self._teardown(handle)
        return summary, saved

    async def _teardown(self, handle: SessionHandle) -> None:
        try:
            await handle.surface.disconnect()
        except Exception as e:
            logger.warning(f"Browser disconnect failed for {handle.session_id}: {e}")

        provider = getattr(handle.agent.decider, "provider", None)
        if provider is not None:
            try:
                await provider.close()
            except Exception as e:
                logger.warning(f"Provider close failed for {handle.session_id}: {e}")

        handle.broadcaster.close()
        logger.info(f"Session {handle.session_id} torn down ({self.active_count} active)")

    async def shutdown(self) -> None:
        """Stop every live session (application shutdown)."""
        for session_id in list(self._sessions):
            await self.stop(session_id)

    # ---------- Commands ----------

    def state(self, session_id: str) -> NegotiationStateResponse:
        handle = self.get(session_id)
        agent = handle.agent
        return NegotiationStateResponse(
            session_id=session_id,
            name=agent.config.session_name,
            start_url=handle.context.start_url,
            started_at=handle.context.started_at,
            phase=agent.phase,
            paused_from=agent.paused_from,
            user_typing=agent.user_typing,
            conversation=agent.get_conversation(),
            pending_approval=agent.pending_approval,
            config=agent.get_config(),
        )

    def pause(self, session_id: str) -> Phase:
        agent = self.get(session_id).agent
        if not agent.pause():
            raise InvalidPhaseException(session_id, "pause", agent.phase.value)
        return agent.phase

    def resume(self, session_id: str) -> Phase:
        agent = self.get(session_id).agent
        if not agent.resume():
            raise InvalidPhaseException(session_id, "resume", agent.phase.value)
        return agent.phase

    def typing(self, session_id: str) -> bool:
        return self.get(session_id).agent.user_typing_signal()

    def approve(self, session_id: str, request_id: str) -> Phase:
        agent = self.get(session_id).agent
        if not agent.approve(request_id):
            raise ApprovalNotPendingException(session_id, request_id)
        return agent.phase

    def reject(self, session_id: str, request_id: str, directive: Optional[str] = None) -> Phase:
        agent = self.get(session_id).agent
        if not agent.reject(request_id, directive):
            raise ApprovalNotPendingException(session_id, request_id)
        return agent.phase

    def directive(self, session_id: str, text: str) -> Phase:
        agent = self.get(session_id).agent
        if agent.phase == Phase.DONE:
            raise InvalidPhaseException(session_id, "send a directive to", agent.phase.value)
        agent.user_directive(text)
        return agent.phase

    async def override(self, session_id: str, text: str) -> bool:
        agent = self.get(session_id).agent
        if agent.phase in (Phase.IDLE, Phase.DONE):
            raise InvalidPhaseException(session_id, "override", agent.phase.value)
        return await agent.user_override(text)

    def rename(self, session_id: str, name: str) -> NegotiationStateResponse:
        handle = self.get(session_id)
        handle.context = handle.context.renamed(name)
        handle.agent.rename(name)
        try:
            self.store.rename_if_exists(session_id, name)
        except SQLAlchemyError as e:
            logger.error(f"Failed to mirror rename of {session_id}: {e}")
        logger.info(f"Session {session_id} renamed to {name!r}")
        return self.state(session_id)

    # ---------- Persistence ----------

    def _on_event(self, handle: SessionHandle, event: AgentEvent) -> None:
        if event["type"] != "conversation_updated" or handle.session_id not in self._sessions:
            return
        handle.timers.arm(TimerPurpose.AUTO_SAVE, self.auto_save_delay, lambda: self._auto_save(handle))

    def _auto_save(self, handle: SessionHandle) -> None:
        if handle.session_id not in self._sessions:
            return
        self._save(handle, summary=None)

    def _build_record(self, handle: SessionHandle, summary: Optional[str]) -> SavedSession:
        agent = handle.agent
        return SavedSession(
            id=handle.session_id,
            name=agent.config.session_name,
            url=handle.context.start_url,
            config=agent.get_config(),
            llm_config=handle.llm_config,
            browser_config=handle.browser_config,
            messages=agent.get_conversation(),
            summary=summary,
            final_phase=agent.phase,
            started_at=handle.context.started_at,
            ended_at=utc_now(),
        )

    def _save(self, handle: SessionHandle, summary: Optional[str]) -> bool:
        if not handle.agent.conversation:
            logger.debug(f"Nothing to save for {handle.session_id}")
            return False
        try:
            self.store.save(self._build_record(handle, summary))
        except SQLAlchemyError as e:
            logger.error(f"Failed to save session {handle.session_id}: {e}")
            return False
        handle.saves += 1
        return True


_session_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """FastAPI dependency; tests override it with a manager built on fakes."""
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager()
    return _session_manager
