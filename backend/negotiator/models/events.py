"""
UI event envelope.

WHAT: Events the negotiation core publishes toward the UI
WHY: One fire-and-forget channel carries conversation, phase and approval updates
HOW: TypedDict envelope {type, data} with small builder helpers
"""

from typing import TypedDict, Literal, Callable

from .negotiation import ApprovalRequest, ConversationMessage, Phase


EventType = Literal[
    "conversation_updated",
    "approval_required",
    "thinking",
    "agent_unsure",
    "phase_changed",
    "research_result",
    "session_summary",
    "error",
    "heartbeat",
]


class AgentEvent(TypedDict):
    """Event emitted by a negotiation session for streaming to clients."""
    type: EventType
    data: dict


# Fire-and-forget sink. Implementations must not raise.
EventSink = Callable[[AgentEvent], None]


def conversation_updated(messages: list[ConversationMessage]) -> AgentEvent:
    return AgentEvent(
        type="conversation_updated",
        data={"messages": [m.model_dump(mode="json") for m in messages]},
    )


def approval_required(request: ApprovalRequest) -> AgentEvent:
    return AgentEvent(type="approval_required", data={"request": request.model_dump(mode="json")})


def thinking(status: str) -> AgentEvent:
    return AgentEvent(type="thinking", data={"status": status})


def agent_unsure(question: str, context: str) -> AgentEvent:
    return AgentEvent(type="agent_unsure", data={"question": question, "context": context})


def phase_changed(phase: Phase, previous: Phase) -> AgentEvent:
    return AgentEvent(type="phase_changed", data={"phase": phase.value, "previous": previous.value})


def research_result(query: str, findings: str) -> AgentEvent:
    return AgentEvent(type="research_result", data={"query": query, "findings": findings})


def session_summary(summary: str) -> AgentEvent:
    return AgentEvent(type="session_summary", data={"summary": summary})


def error(message: str) -> AgentEvent:
    return AgentEvent(type="error", data={"message": message})
