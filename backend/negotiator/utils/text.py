"""
Snapshot and model-output text heuristics.

WHAT: Helpers that read the page snapshot and raw LLM text
WHY: The negotiation loop needs a few cheap, deterministic checks that do not
     warrant a model call (where to type, is the other side typing, when to research)
HOW: Line scans and regular expressions over plain text
"""

import json
import re
from typing import Any

from .logger import get_logger

logger = get_logger(__name__)

REF_PATTERN = re.compile(r"\[ref=([\w-]+)\]")

_CHAT_INPUT_HINTS = (
    "textbox",
    "text input",
    "type a message",
    "type your message",
    "write a reply",
)
_FALLBACK_INPUT_HINTS = ("contenteditable", "textarea")

_TYPING_INDICATOR = re.compile(r"is typing|is writing|typing\.\.\.|typing…|composing")

RESEARCH_TRIGGERS = (
    "best we can do",
    "that's our current",
    "standard rate",
    "can't go lower",
    "our pricing",
)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")
_EMBEDDED_JSON_PATTERN = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")


def find_chat_input(snapshot: str) -> str | None:
    """
    Locate the ref of the chat message input in a snapshot.

    Lines that name a textbox or a message prompt win; search boxes are skipped.
    Falls back to the first contenteditable/textarea element.
    """
    lines = snapshot.splitlines()
    for line in lines:
        lower = line.lower()
        if any(hint in lower for hint in _CHAT_INPUT_HINTS) and "search" not in lower:
            match = REF_PATTERN.search(line)
            if match:
                logger.debug(f"Found chat input {match.group(1)} ({lower.strip()[:60]})")
                return match.group(1)

    for line in lines:
        lower = line.lower()
        if any(hint in lower for hint in _FALLBACK_INPUT_HINTS):
            match = REF_PATTERN.search(line)
            if match:
                logger.debug(f"Found fallback chat input {match.group(1)}")
                return match.group(1)

    return None


def detect_typing_indicator(snapshot: str) -> bool:
    """True if the page shows the remote party composing a reply."""
    return bool(_TYPING_INDICATOR.search(snapshot.lower()))


def should_research(remote_message: str) -> bool:
    """True if a remote message reads like a stock pricing line."""
    lower = remote_message.lower()
    return any(trigger in lower for trigger in RESEARCH_TRIGGERS)


def extract_json(raw: str) -> Any:
    """
    Parse JSON out of model output that may carry code fences or prose.

    Raises:
        ValueError: No parseable JSON found
    """
    fence = _FENCE_PATTERN.search(raw)
    if fence:
        candidate = fence.group(1).strip()
    else:
        embedded = _EMBEDDED_JSON_PATTERN.search(raw)
        candidate = embedded.group(1).strip() if embedded else raw.strip()

    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ValueError(f"No JSON object in model output: {e}") from e


def strip_thinking(text: str) -> str:
    """Remove <think>/<thinking> blocks some local models emit before the answer."""
    text = re.sub(r'<think>.*?</think>\s*', '', text, flags=re.DOTALL | re.IGNORECASE)
    text = re.sub(r'<thinking>.*?</thinking>\s*', '', text, flags=re.DOTALL | re.IGNORECASE)
    text = re.sub(r'</?think(?:ing)?>\s*', '', text, flags=re.IGNORECASE)
    return text.strip()


def clean_chat_message(text: str) -> str:
    """Trim whitespace and a wrapping pair of quotes from a generated chat message."""
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {'"', "'"}:
        text = text[1:-1].strip()
    return text
