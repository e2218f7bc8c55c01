"""
Negotiation domain models.

WHAT: Core data structures for the conversation log, phases, approvals and turns
WHY: Consistent typing across the agent, persistence and the HTTP layer
HOW: Pydantic v2 models; structured LLM turn payloads are validated here
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Literal, Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Sender(str, Enum):
    """Author of a conversation entry."""
    REMOTE_PARTY = "remote_party"
    AGENT = "agent"
    SYSTEM = "system"


class Phase(str, Enum):
    """Negotiation phases. Exactly one is active per session."""
    IDLE = "idle"
    CONNECTING = "connecting"
    REACHING_HUMAN = "reaching_human"
    NEGOTIATING = "negotiating"
    AWAITING_APPROVAL = "awaiting_approval"
    PAUSED = "paused"
    DONE = "done"


# Phases in which the agent is live and may be paused
PAUSABLE_PHASES = frozenset({
    Phase.CONNECTING,
    Phase.REACHING_HUMAN,
    Phase.NEGOTIATING,
    Phase.AWAITING_APPROVAL,
})

Recommendation = Literal["accept", "reject", "counter"]

SUMMARY_PREFIX = "__SUMMARY__\n"


class ConversationMessage(BaseModel):
    """One entry of the append-only conversation log."""

    sender: Sender
    text: str
    timestamp: datetime = Field(default_factory=utc_now)

    def key(self) -> tuple[str, str]:
        """Identity used for deduplication."""
        return (self.sender.value, self.text)

    def is_summary(self) -> bool:
        return self.sender == Sender.SYSTEM and self.text.startswith(SUMMARY_PREFIX)


class ApprovalRequest(BaseModel):
    """A commitment proposed by the remote party, awaiting the human's decision."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    description: str
    remote_offer_text: str = ""
    recommendation: Recommendation = "reject"
    reasoning: str = ""
    counter_suggestion: str | None = None


class NegotiationConfig(BaseModel):
    """What the human wants out of the negotiation."""

    session_name: str = Field(default="Untitled negotiation", max_length=200)
    goal: str = Field(min_length=1)
    bottom_line: str = ""
    tone: Literal["polite", "firm", "friendly", "stern"] = "polite"
    context: str = ""
    service_provider: str = Field(min_length=1)


class SessionContext(BaseModel):
    """Immutable per-session context; only the display name may change."""

    session_id: str = Field(default_factory=lambda: str(uuid4()))
    start_url: str
    config: NegotiationConfig
    started_at: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}

    @property
    def display_name(self) -> str:
        return self.config.session_name

    def renamed(self, name: str) -> "SessionContext":
        config = self.config.model_copy(update={"session_name": name})
        return self.model_copy(update={"config": config})


# ========== Structured decision payloads ==========

class ExtractedMessage(BaseModel):
    """A message the decision maker read off the page."""

    sender: Literal["remote_party", "system"] = "remote_party"
    text: str

    @field_validator("sender", mode="before")
    @classmethod
    def normalize_sender(cls, v: Any) -> Any:
        """Models sometimes answer with 'rep', 'bot' or 'agent' for the other side."""
        if isinstance(v, str) and v.lower() in {"rep", "bot", "representative", "agent", "remote"}:
            return "remote_party"
        return v


class PageAction(BaseModel):
    """Kickoff decision: how to start interacting with the chat page."""

    action: Literal["type", "click", "needs_user"]
    ref: str | None = None
    text: str | None = None
    reason: str | None = None


class TurnAction(BaseModel):
    """Common action fields of the reach-human and negotiation turns."""

    new_messages: list[ExtractedMessage] = Field(default_factory=list)
    action: Literal["respond", "click", "wait", "needs_user"] = "wait"
    response: str | None = None
    ref: str | None = None
    reason: str | None = None


class ReachHumanTurn(TurnAction):
    human_detected: bool = False
    human_evidence: str = ""


class NegotiationTurn(TurnAction):
    is_commitment: bool = False
    offer_description: str | None = None
    recommendation: str | None = None
    reasoning: str | None = None
    counter_suggestion: str | None = None
