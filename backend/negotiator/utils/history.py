"""
Conversation history helpers for prompts.

WHAT: Turn the conversation log into prompt text
WHY: Every decision call sees the same bounded tail of the log
HOW: Keep the most recent messages (summaries excluded), render "sender: text" lines
"""

from typing import Iterable, List

from ..models.negotiation import ConversationMessage, Sender
from .logger import get_logger

logger = get_logger(__name__)

_SENDER_LABELS = {
    Sender.REMOTE_PARTY: "rep",
    Sender.AGENT: "you",
    Sender.SYSTEM: "system",
}


def conversation_tail(
    conversation: List[ConversationMessage],
    max_messages: int = 20,
) -> List[ConversationMessage]:
    """
    Most recent entries of the log, without closing-summary entries.

    Args:
        conversation: Full conversation log
        max_messages: Maximum number of entries to keep

    Returns:
        The last `max_messages` non-summary entries, oldest first
    """
    entries = [m for m in conversation if not m.is_summary()]
    if max_messages <= 0:
        return []
    return entries[-max_messages:]


def format_conversation(messages: Iterable[ConversationMessage]) -> str:
    """Render messages as one "sender: text" line each."""
    return "\n".join(f"{_SENDER_LABELS[m.sender]}: {m.text}" for m in messages)


def count_remote_messages(conversation: Iterable[ConversationMessage]) -> int:
    return sum(1 for m in conversation if m.sender == Sender.REMOTE_PARTY)


def strip_summaries(conversation: Iterable[ConversationMessage]) -> List[ConversationMessage]:
    """Drop closing-summary entries, e.g. before continuing a saved session."""
    kept = [m for m in conversation if not m.is_summary()]
    return kept
