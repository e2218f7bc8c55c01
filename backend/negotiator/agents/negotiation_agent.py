"""
Negotiation agent.

WHAT: The per-session state machine that turns page changes and human commands into chat actions
WHY: Polling, model latency, human intervention, timers and an unbounded approval wait
     all race; one owner keeps the conversation log, the phase and the outbound actions consistent
HOW: Phase transitions clear a purpose-keyed timer table; an asyncio.Lock makes decision
     calls single-flight; commitments suspend on a one-shot rendezvous outside the lock
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Iterable, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, ValidationError

from . import prompts
from .observer import SnapshotObserver, Subscription
from .rendezvous import ApprovalRendezvous, ApprovalResolution
from .researcher import WebResearcher
from .stall_scheduler import StallScheduler
from .tools import NEGOTIATION_TURN_TOOL, PAGE_ACTION_TOOL, REACH_HUMAN_TURN_TOOL
from ..browser.action_surface import ActionSurface, BrowserActionError
from ..core.config import settings
from ..llm.types import ChatMessage, ProviderError, TextReply, ToolCall, ToolDefinition
from ..models import events
from ..models.events import EventSink
from ..models.negotiation import (
    PAUSABLE_PHASES,
    SUMMARY_PREFIX,
    ApprovalRequest,
    ConversationMessage,
    ExtractedMessage,
    NegotiationConfig,
    NegotiationTurn,
    PageAction,
    Phase,
    ReachHumanTurn,
    Sender,
    TurnAction,
    utc_now,
)
from ..utils.history import (
    conversation_tail,
    count_remote_messages,
    format_conversation,
    strip_summaries,
)
from ..utils.logger import get_logger
from ..utils.text import clean_chat_message, detect_typing_indicator, find_chat_input, should_research
from ..utils.timers import TimerPurpose, TimerTable

logger = get_logger(__name__)

TurnModel = TypeVar("TurnModel", bound=BaseModel)

# Failures that abort a turn without touching the phase
CAPABILITY_ERRORS = (ProviderError, BrowserActionError)

_RECOMMENDATIONS = {"accept", "reject", "counter"}


class Decider(Protocol):
    async def decide(self, system_prompt: str, messages: list[ChatMessage]) -> str:
        ...

    async def decide_structured(
        self, system_prompt: str, messages: list[ChatMessage], tool: ToolDefinition
    ) -> ToolCall | TextReply:
        ...


@dataclass(frozen=True)
class AgentTimings:
    """Every wait the agent uses, in seconds."""
    page_load_wait: float = 3.0
    debounce: float = 2.0
    inactivity: float = 15.0
    typing_indicator_inactivity: float = 300.0
    user_typing_window: float = 20.0
    override_followup_delay: float = 3.0
    stall_first_delay: float = 20.0
    stall_min_interval: float = 45.0
    stall_max_jitter: float = 30.0

    @classmethod
    def from_settings(cls) -> "AgentTimings":
        return cls(
            page_load_wait=settings.PAGE_LOAD_WAIT_SECONDS,
            debounce=settings.TURN_DEBOUNCE_SECONDS,
            inactivity=settings.INACTIVITY_SECONDS,
            typing_indicator_inactivity=settings.TYPING_INDICATOR_INACTIVITY_SECONDS,
            user_typing_window=settings.USER_TYPING_WINDOW_SECONDS,
            override_followup_delay=settings.OVERRIDE_FOLLOWUP_DELAY_SECONDS,
            stall_first_delay=settings.STALL_FIRST_DELAY_SECONDS,
            stall_min_interval=settings.STALL_MIN_INTERVAL_SECONDS,
            stall_max_jitter=settings.STALL_MAX_JITTER_SECONDS,
        )


class NegotiationAgent:
    """
    Drives one negotiation from page load to stop().

    Commands (pause, resume, approve, reject, directive, override, typing signal,
    stop) may arrive at any time; each re-checks the phase before acting.
    Decision results that arrive after the phase changed, or while the human is
    typing, are discarded.
    """

    def __init__(
        self,
        browser: ActionSurface,
        observer: SnapshotObserver,
        decider: Decider,
        config: NegotiationConfig,
        publish: EventSink,
        *,
        researcher: Optional[WebResearcher] = None,
        timings: Optional[AgentTimings] = None,
        prior_conversation: Optional[Iterable[ConversationMessage]] = None,
        stall_scheduler: Optional[StallScheduler] = None,
    ):
        self.browser = browser
        self.observer = observer
        self.decider = decider
        self.config = config
        self.publish = publish
        self.researcher = researcher
        self.timings = timings or AgentTimings.from_settings()

        self.tail_messages = settings.CONVERSATION_TAIL_MESSAGES
        self.snapshot_chars = settings.SNAPSHOT_PROMPT_CHARS
        self.resumed_threshold = settings.RESUMED_REMOTE_MESSAGE_THRESHOLD

        self.phase = Phase.IDLE
        self.paused_from: Phase | None = None
        self.pending_approval: ApprovalRequest | None = None
        self.user_typing = False
        self.conversation: list[ConversationMessage] = []

        self._rendezvous: ApprovalRendezvous | None = None
        self._turn_lock = asyncio.Lock()
        self._timers = TimerTable("agent")
        self._subscription: Subscription | None = None
        self._latest_snapshot: str | None = None
        self._tasks: set[asyncio.Task] = set()
        self._summary: str | None = None
        self._pending_opening: str | None = None
        self._prior_remote = 0
        self._input_lock = asyncio.Lock()

        self._stall = stall_scheduler or StallScheduler(
            self._send_stall_message,
            first_delay=self.timings.stall_first_delay,
            min_interval=self.timings.stall_min_interval,
            max_jitter=self.timings.stall_max_jitter,
        )

        if prior_conversation:
            self.conversation = strip_summaries(prior_conversation)
            self._prior_remote = count_remote_messages(self.conversation)
            self.publish(events.conversation_updated(self.conversation))

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def get_conversation(self) -> list[ConversationMessage]:
        return list(self.conversation)

    def get_config(self) -> NegotiationConfig:
        return self.config.model_copy()

    @property
    def effective_phase(self) -> Phase:
        """The phase the agent is in, or will return to when resumed."""
        if self.phase == Phase.PAUSED and self.paused_from is not None:
            return self.paused_from
        return self.phase

    @property
    def stall_active(self) -> bool:
        return self._stall.active

    @property
    def decision_in_flight(self) -> bool:
        return self._turn_lock.locked()

    def armed_timers(self) -> list[TimerPurpose]:
        return self._timers.armed()

    def rename(self, name: str) -> None:
        self.config = self.config.model_copy(update={"session_name": name})

    async def settle(self) -> None:
        """Wait for turns spawned by commands (resume) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, url: str, *, paused_restore: Phase | None = None) -> None:
        """
        Navigate, wait for the page, then start observing and kick off.

        With `paused_restore`, the agent enters paused right after the page loads
        and remembers that phase for resume(); no kickoff runs.

        Raises:
            BrowserActionError: Navigation failed
        """
        if self.phase != Phase.IDLE:
            raise RuntimeError(f"Agent already started (phase={self.phase.value})")

        self._transition(Phase.CONNECTING)
        logger.info(f"Navigating to {url}")
        await self.browser.navigate(url)
        await asyncio.sleep(self.timings.page_load_wait)

        if self.phase == Phase.DONE:
            return

        self._subscription = self.observer.subscribe(self._on_snapshot_changed, self._on_observer_error)

        if paused_restore is not None:
            self.observer.start()
            self.start_paused(paused_restore)
            return

        if self.phase == Phase.PAUSED:
            # Paused while the page loaded; resume picks up from reaching_human
            self.paused_from = Phase.REACHING_HUMAN
        else:
            self._transition(Phase.REACHING_HUMAN)

        self.observer.start()
        if self.phase == Phase.REACHING_HUMAN:
            await self._kickoff()

    def start_paused(self, restore: Phase = Phase.NEGOTIATING) -> None:
        """Enter paused with `restore` remembered, so the human reviews before the agent acts."""
        if self.phase == Phase.DONE:
            return
        logger.info(f"Entering paused (will resume to {restore.value})")
        self._transition(Phase.PAUSED)
        self.paused_from = restore

    async def stop(self) -> str | None:
        """
        Stop everything and finish in done.

        Any pending approval is force-resolved as rejected. A closing summary is
        generated best-effort and returned.
        """
        if self.phase == Phase.DONE:
            return self._summary

        logger.info("Stopping agent")
        self._stall.stop()
        self.observer.stop()
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._timers.cancel_all()
        self.user_typing = False

        if self._rendezvous is not None:
            self._rendezvous.cancel()
            self._rendezvous = None
        self.pending_approval = None
        self.paused_from = None
        self._transition(Phase.DONE)

        if any(not m.is_summary() for m in self.conversation):
            try:
                self._summary = await self._summarize()
            except ProviderError as e:
                logger.warning(f"Summary generation failed: {e}")
            else:
                self._append(Sender.SYSTEM, f"{SUMMARY_PREFIX}{self._summary}")
                self.publish(events.session_summary(self._summary))

        return self._summary

    # ------------------------------------------------------------------
    # Human commands
    # ------------------------------------------------------------------

    def pause(self) -> bool:
        if self.phase not in PAUSABLE_PHASES:
            logger.info(f"Cannot pause in phase {self.phase.value}")
            return False
        restore = self.phase
        self._transition(Phase.PAUSED)
        self.paused_from = restore
        return True

    def resume(self) -> bool:
        """Restore the paused phase and run one turn on a fresh snapshot."""
        if self.phase != Phase.PAUSED or self.paused_from is None:
            logger.info(f"Cannot resume in phase {self.phase.value}")
            return False

        restore = self.paused_from
        self.paused_from = None
        self._transition(restore)

        if restore == Phase.AWAITING_APPROVAL and self._rendezvous is not None and not self._rendezvous.done:
            self._stall.start()
        self._arm_inactivity()
        self._spawn(self._run_turn(None, wait=True))
        return True

    def approve(self, request_id: str) -> bool:
        return self._resolve_approval(request_id, approved=True, directive=None)

    def reject(self, request_id: str, directive: str | None = None) -> bool:
        return self._resolve_approval(request_id, approved=False, directive=directive)

    def user_directive(self, text: str) -> None:
        self._clear_user_typing()
        logger.info(f"User directive: {text}")
        self._append(Sender.SYSTEM, f"User directive: {text}")

    async def user_override(self, text: str) -> bool:
        """Send the human's own text, then let the agent catch up shortly after."""
        if self.phase in (Phase.IDLE, Phase.DONE):
            return False

        self._clear_user_typing()
        logger.info(f"User override: {text[:80]}")
        try:
            sent = await self._send_and_record(text, clean=False)
        except BrowserActionError as e:
            self._report_error("Failed to send your message", e)
            sent = False

        self._arm_inactivity()
        if self.phase in (Phase.REACHING_HUMAN, Phase.NEGOTIATING):
            self._timers.arm(
                TimerPurpose.OVERRIDE_FOLLOWUP,
                self.timings.override_followup_delay,
                lambda: self._run_turn(None, wait=True),
            )
        return sent

    def user_typing_signal(self) -> bool:
        """Hold off automated turns while the human types; refreshed on every signal."""
        if self.phase in (Phase.IDLE, Phase.DONE, Phase.PAUSED):
            return False
        self.user_typing = True
        self._timers.cancel(TimerPurpose.DEBOUNCE)
        self._timers.cancel(TimerPurpose.INACTIVITY)
        self._timers.cancel(TimerPurpose.OVERRIDE_FOLLOWUP)
        self._timers.arm(TimerPurpose.USER_TYPING, self.timings.user_typing_window, self._on_user_typing_lapsed)
        logger.debug(f"User typing, automated turns held for {self.timings.user_typing_window}s")
        return True

    # ------------------------------------------------------------------
    # Phase and timers
    # ------------------------------------------------------------------

    def _transition(self, new_phase: Phase) -> None:
        previous = self.phase
        if previous == new_phase:
            return
        self._timers.cancel_all()
        self.user_typing = False
        if new_phase != Phase.AWAITING_APPROVAL:
            self._stall.stop()
        self.phase = new_phase
        logger.info(f"Phase {previous.value} -> {new_phase.value}")
        self.publish(events.phase_changed(new_phase, previous))

    def _arm_inactivity(self, delay: float | None = None) -> None:
        if self.phase not in (Phase.REACHING_HUMAN, Phase.NEGOTIATING):
            return
        self._timers.arm(
            TimerPurpose.INACTIVITY,
            delay if delay is not None else self.timings.inactivity,
            self._on_inactivity,
        )

    def _clear_user_typing(self) -> None:
        if self.user_typing:
            self._timers.cancel(TimerPurpose.USER_TYPING)
            self.user_typing = False
            self._arm_inactivity()

    def _blocked(self) -> bool:
        return self.phase in (Phase.IDLE, Phase.CONNECTING, Phase.PAUSED, Phase.DONE) or self.user_typing

    def _on_snapshot_changed(self, snapshot: str) -> None:
        if self.phase in (Phase.IDLE, Phase.CONNECTING, Phase.PAUSED, Phase.DONE):
            logger.debug(f"Snapshot change ignored in phase {self.phase.value}")
            return
        if self.user_typing:
            logger.debug("Snapshot change ignored, user is typing")
            return

        self._latest_snapshot = snapshot
        self._timers.arm(TimerPurpose.DEBOUNCE, self.timings.debounce, self._on_debounce)

        if detect_typing_indicator(snapshot):
            logger.debug("Remote party is typing, extending inactivity window")
            self._arm_inactivity(self.timings.typing_indicator_inactivity)
        else:
            self._arm_inactivity()

    def _on_observer_error(self, error: Exception) -> None:
        logger.debug(f"Observer poll error: {error}")

    async def _on_debounce(self) -> None:
        snapshot = self._latest_snapshot
        if snapshot is None:
            return
        await self._run_turn(snapshot)

    async def _on_inactivity(self) -> None:
        if self.phase in (Phase.IDLE, Phase.PAUSED, Phase.DONE) or self.user_typing:
            return
        if self._turn_lock.locked():
            logger.debug("Inactivity skipped, decision in flight")
            return

        if self.phase == Phase.REACHING_HUMAN:
            logger.info("No page change, retrying reach-human turn on a fresh snapshot")
            await self._run_turn(None)
        elif self.phase == Phase.NEGOTIATING:
            await self._send_follow_up()

    async def _on_user_typing_lapsed(self) -> None:
        self.user_typing = False
        logger.debug("User typing window lapsed")
        self._arm_inactivity()
        await self._run_turn(None, wait=True)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def _run_turn(self, snapshot: str | None, *, wait: bool = False) -> None:
        """
        Dispatch one phase-appropriate turn.

        Event-driven turns (wait=False) are dropped while a decision is in flight.
        Forced turns wait for the lock and fetch the snapshot inside it.
        """
        if self._blocked():
            return
        if self._turn_lock.locked() and not wait:
            logger.debug("Turn dropped, decision in flight")
            return

        commitment: NegotiationTurn | None = None
        async with self._turn_lock:
            if self._blocked():
                return
            phase = self.phase
            try:
                if snapshot is None:
                    snapshot = await self.browser.snapshot()
                if phase == Phase.REACHING_HUMAN:
                    await self._reach_human_turn(snapshot)
                elif phase == Phase.NEGOTIATING:
                    commitment = await self._negotiation_turn(snapshot)
                elif phase == Phase.AWAITING_APPROVAL:
                    await self._extraction_turn(snapshot)
            except CAPABILITY_ERRORS as e:
                self._report_error(f"Error in {phase.value} turn", e)
            finally:
                self._arm_inactivity()

        if commitment is not None:
            await self._handle_commitment(commitment)

    async def _kickoff(self) -> None:
        async with self._turn_lock:
            if self.phase != Phase.REACHING_HUMAN:
                return
            self.publish(events.thinking("Analyzing chat page, looking for a way to reach a human..."))
            try:
                snapshot = await self.browser.snapshot()
                result = await self.decider.decide_structured(
                    prompts.kickoff_prompt(self.config),
                    prompts.render_kickoff_messages(snapshot),
                    PAGE_ACTION_TOOL,
                )
                if self._stale(Phase.REACHING_HUMAN):
                    return
                if isinstance(result, TextReply):
                    question = "I couldn't determine how to start the chat. What should I do?"
                    self._append(Sender.SYSTEM, f"Agent needs help: {question}")
                    self.publish(events.agent_unsure(question, "Initial page analysis failed"))
                    return
                action = self._parse_turn(result, PageAction)
                if action is not None:
                    await self._execute_action(action)
            except CAPABILITY_ERRORS as e:
                self._report_error("Failed to analyze page", e)
            finally:
                self._arm_inactivity()

    async def _reach_human_turn(self, snapshot: str) -> None:
        self.publish(events.thinking("Reading page and checking for a human..."))
        result = await self.decider.decide_structured(
            prompts.reach_human_prompt(self.config),
            self._turn_messages(snapshot),
            REACH_HUMAN_TURN_TOOL,
        )
        if self._stale(Phase.REACHING_HUMAN):
            logger.info("Phase changed or user typing during decision, discarding reach-human result")
            return

        turn = self._parse_turn(result, ReachHumanTurn)
        if turn is None:
            return

        added = self._append_extracted(turn.new_messages)
        logger.info(
            f"Reach-human turn: human={turn.human_detected} ({turn.human_evidence}), "
            f"new={len(added)}/{len(turn.new_messages)}, action={turn.action}"
        )

        if not turn.human_detected:
            await self._execute_action(turn)
            return

        self.publish(events.thinking("Human representative confirmed! Starting negotiation..."))
        self._transition(Phase.NEGOTIATING)

        # Bot and menu lines extracted earlier in this session do not make it a resumed chat
        resumed = self._prior_remote + count_remote_messages(added) > self.resumed_threshold
        self._pending_opening = prompts.RESUMED_OPENING_INSTRUCTION if resumed else prompts.OPENING_INSTRUCTION
        await self._send_opening(snapshot)

    async def _send_opening(self, snapshot: str) -> None:
        """Send the owed opening; if discarded or not sent, the next negotiating turn retries it."""
        opening = await self._generate_message(snapshot, self._pending_opening)
        if self._stale(Phase.NEGOTIATING):
            logger.info("Phase changed or user typing while writing the opening, holding it for the next turn")
            return
        await self._send_and_record(opening)

    async def _negotiation_turn(self, snapshot: str) -> NegotiationTurn | None:
        """Returns the turn when it reports a commitment; the caller runs the approval flow."""
        if self._pending_opening is not None:
            self.publish(events.thinking("Introducing myself to the representative..."))
            await self._send_opening(snapshot)
            return None

        self.publish(events.thinking("Reading page and analyzing..."))
        result = await self.decider.decide_structured(
            prompts.negotiation_prompt(self.config),
            self._turn_messages(snapshot),
            NEGOTIATION_TURN_TOOL,
        )
        if self._stale(Phase.NEGOTIATING):
            logger.info("Phase changed or user typing during decision, discarding negotiation result")
            return None

        turn = self._parse_turn(result, NegotiationTurn)
        if turn is None:
            return None

        added = self._append_extracted(turn.new_messages)
        logger.info(
            f"Negotiation turn: new={len(added)}/{len(turn.new_messages)}, "
            f"commitment={turn.is_commitment}, action={turn.action}"
        )
        if not added:
            logger.debug("No new messages, nothing to answer")
            return None

        await self._maybe_research(added)

        if turn.is_commitment:
            return turn
        await self._execute_action(turn)
        return None

    async def _extraction_turn(self, snapshot: str) -> None:
        """Keep the feed current during the approval wait; never acts on the page."""
        result = await self.decider.decide_structured(
            prompts.EXTRACT_MESSAGES_PROMPT,
            self._turn_messages(snapshot),
            NEGOTIATION_TURN_TOOL,
        )
        if self._stale(Phase.AWAITING_APPROVAL):
            return
        turn = self._parse_turn(result, NegotiationTurn)
        if turn is None:
            return
        added = self._append_extracted(turn.new_messages)
        if added:
            logger.info(f"Extracted {len(added)} new message(s) during approval wait")

    async def _send_follow_up(self) -> None:
        async with self._turn_lock:
            if self._stale(Phase.NEGOTIATING):
                return
            logger.info("No reply from the rep, sending follow-up")
            self.publish(events.thinking("No response yet, sending follow-up..."))
            try:
                snapshot = await self.browser.snapshot()
                instruction = self._pending_opening or prompts.FOLLOW_UP_INSTRUCTION
                message = await self._generate_message(snapshot, instruction)
                if self._stale(Phase.NEGOTIATING):
                    return
                await self._send_and_record(message)
            except CAPABILITY_ERRORS as e:
                self._report_error("Error sending follow-up", e)
            finally:
                self._arm_inactivity()

    # ------------------------------------------------------------------
    # Commitment / approval
    # ------------------------------------------------------------------

    async def _handle_commitment(self, turn: NegotiationTurn) -> None:
        if self.phase != Phase.NEGOTIATING:
            return

        last_remote = next(
            (m for m in reversed(self.conversation) if m.sender == Sender.REMOTE_PARTY), None
        )
        recommendation = turn.recommendation if turn.recommendation in _RECOMMENDATIONS else "reject"
        request = ApprovalRequest(
            description=turn.offer_description or "Service rep made an offer",
            remote_offer_text=last_remote.text if last_remote else "",
            recommendation=recommendation,
            reasoning=turn.reasoning or "Unable to evaluate, asking user to decide.",
            counter_suggestion=turn.counter_suggestion,
        )

        rendezvous = ApprovalRendezvous(request.id)
        self.pending_approval = request
        self._rendezvous = rendezvous
        self._transition(Phase.AWAITING_APPROVAL)
        self.publish(events.approval_required(request))
        logger.info(f"Commitment detected, awaiting approval {request.id} ({recommendation})")
        self._stall.start()

        resolution = await rendezvous.wait()

        self._stall.stop()
        if self._rendezvous is rendezvous:
            self._rendezvous = None
            self.pending_approval = None

        if resolution.cancelled or self.phase == Phase.DONE:
            logger.info("Approval wait ended by stop")
            return

        if self.phase == Phase.PAUSED:
            self.paused_from = Phase.NEGOTIATING
        else:
            self._transition(Phase.NEGOTIATING)

        await self._send_closing_message(resolution)

    def _resolve_approval(self, request_id: str, *, approved: bool, directive: str | None) -> bool:
        if self.pending_approval is None or self._rendezvous is None or self.pending_approval.id != request_id:
            logger.info(f"No pending approval {request_id}")
            return False
        self._clear_user_typing()
        logger.info(f"Approval {request_id} {'approved' if approved else 'rejected'}"
                    + (f', directive: "{directive}"' if directive else ""))
        return self._rendezvous.resolve(approved, directive)

    async def _send_closing_message(self, resolution: ApprovalResolution) -> None:
        instruction = (
            prompts.ACCEPT_INSTRUCTION if resolution.approved
            else prompts.reject_instruction(resolution.directive)
        )
        async with self._turn_lock:
            if self.phase == Phase.DONE:
                return
            try:
                # The page has likely moved on during the wait
                snapshot = await self.browser.snapshot()
                message = await self._generate_message(snapshot, instruction)
                if self.phase == Phase.DONE:
                    return
                await self._send_and_record(message)
            except CAPABILITY_ERRORS as e:
                self._report_error("Error sending approval response", e)
            finally:
                self._arm_inactivity()

    async def _send_stall_message(self, text: str) -> None:
        if self.phase != Phase.AWAITING_APPROVAL:
            return
        await self._send_and_record(text, clean=False)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def _execute_action(self, action: PageAction | TurnAction) -> None:
        kind = action.action
        reason = action.reason

        if kind == "respond":
            response = getattr(action, "response", None)
            if response:
                await self._send_and_record(response)
        elif kind == "type":
            text = getattr(action, "text", None)
            if action.ref and text:
                logger.info(f"Typing into {action.ref}: {text[:80]}")
                async with self._input_lock:
                    await self._submit(action.ref, text)
                self._append(Sender.AGENT, text)
        elif kind == "click":
            if action.ref:
                logger.info(f"Clicking {action.ref} ({reason})")
                await self.browser.click(action.ref)
                self._append(Sender.SYSTEM, f"Agent clicked: {reason or action.ref}")
        elif kind == "needs_user":
            question = reason or "I need your help to proceed."
            self._append(Sender.SYSTEM, f"Agent needs help: {question}")
            self.publish(events.agent_unsure(question, "The page may require sign-in or other user action."))
        elif kind == "wait":
            self.publish(events.thinking(reason or "Waiting..."))

    async def _submit(self, ref: str, text: str) -> None:
        await self.browser.click(ref)
        await self.browser.type(ref, text)
        await self.browser.press_key("Enter")

    async def _send_chat_message(self, text: str) -> bool:
        # Overrides and stall messages send outside the turn lock; one input sequence at a time
        async with self._input_lock:
            snapshot = await self.browser.snapshot()
            ref = find_chat_input(snapshot)
            if ref is None:
                logger.warning(f"No chat input found, message not sent: {text[:80]}")
                return False
            await self._submit(ref, text)
        logger.info(f"Sent via {ref}: {text[:80]}")
        return True

    async def _send_and_record(self, text: str, *, clean: bool = True) -> bool:
        if clean:
            text = clean_chat_message(text)
        if not text:
            return False
        if not await self._send_chat_message(text):
            return False
        self._pending_opening = None
        self._append(Sender.AGENT, text)
        return True

    async def _maybe_research(self, added: list[ConversationMessage]) -> None:
        if self.researcher is None:
            return
        last_remote = next((m for m in reversed(added) if m.sender == Sender.REMOTE_PARTY), None)
        if last_remote is None or not should_research(last_remote.text):
            return

        logger.info("Pricing line detected, researching competitor pricing")
        self.publish(events.thinking("Researching competitor pricing..."))
        query = f"{self.config.service_provider} competitor pricing {self.config.goal}"
        findings = await self.researcher.research(query)
        if findings:
            self.publish(events.research_result(query, findings))

    # ------------------------------------------------------------------
    # Decision helpers
    # ------------------------------------------------------------------

    def _turn_messages(self, snapshot: str) -> list[ChatMessage]:
        tail = conversation_tail(self.conversation, self.tail_messages)
        return prompts.render_turn_messages(format_conversation(tail), snapshot)

    async def _generate_message(self, snapshot: str, instruction: str) -> str:
        tail = conversation_tail(self.conversation, self.tail_messages)
        text = await self.decider.decide(
            prompts.generate_response_prompt(self.config, instruction),
            prompts.render_response_messages(format_conversation(tail), snapshot, self.snapshot_chars),
        )
        return clean_chat_message(text)

    async def _summarize(self) -> str:
        logger.info(f"Generating summary for {len(self.conversation)} messages")
        text = format_conversation(strip_summaries(self.conversation))
        summary = await self.decider.decide(prompts.SUMMARY_PROMPT, prompts.render_summary_messages(text))
        return summary.strip()

    def _parse_turn(self, result: ToolCall | TextReply, model: Type[TurnModel]) -> TurnModel | None:
        if isinstance(result, TextReply):
            logger.info(f"Model answered in text instead of a tool call, ignoring: {result.text[:120]}")
            return None
        try:
            return model.model_validate(result.arguments)
        except ValidationError as e:
            logger.warning(f"Malformed {result.name} arguments, ignoring: {e.error_count()} error(s)")
            return None

    def _stale(self, expected: Phase) -> bool:
        return self.phase != expected or self.user_typing

    # ------------------------------------------------------------------
    # Conversation log
    # ------------------------------------------------------------------

    def _next_timestamp(self):
        now = utc_now()
        if self.conversation:
            floor = self.conversation[-1].timestamp + timedelta(milliseconds=1)
            if now < floor:
                return floor
        return now

    def _append(self, sender: Sender, text: str) -> ConversationMessage:
        message = ConversationMessage(sender=sender, text=text, timestamp=self._next_timestamp())
        self.conversation.append(message)
        self.publish(events.conversation_updated(self.conversation))
        return message

    def _append_extracted(self, extracted: list[ExtractedMessage]) -> list[ConversationMessage]:
        """Append messages not already in the log by exact (sender, text); one publish per batch."""
        known = {m.key() for m in self.conversation}
        base = self._next_timestamp()
        added: list[ConversationMessage] = []
        for item in extracted:
            text = item.text.strip()
            key = (item.sender, text)
            # Only the existing log counts; a line repeated within one batch is a real repeat
            if not text or key in known:
                continue
            added.append(ConversationMessage(
                sender=Sender(item.sender),
                text=text,
                timestamp=base + timedelta(milliseconds=len(added)),
            ))

        if added:
            self.conversation.extend(added)
            self.publish(events.conversation_updated(self.conversation))
        return added

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    def _report_error(self, context: str, error: Exception) -> None:
        logger.error(f"{context}: {error}")
        self.publish(events.error(f"{context}: {error}"))

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background turn failed: {task.exception()}", exc_info=task.exception())
