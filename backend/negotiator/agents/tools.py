"""
Structured decision schemas.

WHAT: The tool definitions the agent asks the model to call, one per decision
WHY: Each turn's answer is validated into a pydantic model before the agent acts on it
HOW: JSON-schema ToolDefinitions whose fields mirror models.negotiation
"""

from ..llm.types import ToolDefinition

_NEW_MESSAGES_SCHEMA = {
    "type": "array",
    "description": (
        "New messages visible on the page that are NOT already in the conversation history. "
        "Include rep/bot messages AND system messages (e.g. 'connecting you to an agent'). "
        "Do NOT include messages we sent."
    ),
    "items": {
        "type": "object",
        "properties": {
            "sender": {
                "type": "string",
                "enum": ["remote_party", "system"],
                "description": "'remote_party' for a bot or human rep, 'system' for status/notification messages.",
            },
            "text": {"type": "string", "description": "The message text."},
        },
        "required": ["sender", "text"],
    },
}

_TURN_ACTION_PROPERTIES = {
    "action": {
        "type": "string",
        "enum": ["respond", "click", "wait", "needs_user"],
        "description": (
            "What to do next. 'respond' to type a message, 'click' to click an element, "
            "'wait' if we should just wait, 'needs_user' if user intervention is required."
        ),
    },
    "response": {
        "type": "string",
        "description": "The message to type into the chat (when action is 'respond').",
    },
    "ref": {
        "type": "string",
        "description": "Element ref to click (when action is 'click').",
    },
    "reason": {
        "type": "string",
        "description": "Why this action was chosen (for click/wait/needs_user).",
    },
}


PAGE_ACTION_TOOL = ToolDefinition(
    name="page_action",
    description=(
        "Decide the first action to take on a chat page: type a message, click an element, "
        "or flag that the user needs to intervene."
    ),
    parameters={
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": ["type", "click", "needs_user"],
                "description": "The kind of action to take.",
            },
            "ref": {"type": "string", "description": "Element ref to interact with (required for type/click)."},
            "text": {"type": "string", "description": "Text to type (required when action is 'type')."},
            "reason": {"type": "string", "description": "Why this action was chosen (required for click/needs_user)."},
        },
        "required": ["action"],
        "additionalProperties": False,
    },
)

REACH_HUMAN_TURN_TOOL = ToolDefinition(
    name="reach_human_turn",
    description=(
        "Read the chat page, extract any new messages, determine if we are talking to a real human, "
        "and decide the next action to get connected to one."
    ),
    parameters={
        "type": "object",
        "properties": {
            "new_messages": _NEW_MESSAGES_SCHEMA,
            "human_detected": {
                "type": "boolean",
                "description": (
                    "True ONLY if you are confident the latest messages are from a real human "
                    "(introduced by name, references specifics, natural language). False if still a bot, menu, or unclear."
                ),
            },
            "human_evidence": {
                "type": "string",
                "description": "Brief explanation of why you think this is or isn't a human.",
            },
            **_TURN_ACTION_PROPERTIES,
        },
        "required": ["new_messages", "human_detected", "human_evidence", "action"],
        "additionalProperties": False,
    },
)

NEGOTIATION_TURN_TOOL = ToolDefinition(
    name="negotiation_turn",
    description=(
        "Read the chat page, extract any new messages from the rep, check if they made an offer/commitment, "
        "and decide what to say next."
    ),
    parameters={
        "type": "object",
        "properties": {
            "new_messages": _NEW_MESSAGES_SCHEMA,
            "is_commitment": {
                "type": "boolean",
                "description": (
                    "True if the rep is making a concrete offer, proposing a plan/price change, "
                    "or requesting confirmation for an account modification."
                ),
            },
            "offer_description": {
                "type": "string",
                "description": "Brief description of the offer (only when is_commitment is true).",
            },
            "recommendation": {
                "type": "string",
                "enum": ["accept", "reject", "counter"],
                "description": "What the customer should do about the offer (only when is_commitment is true).",
            },
            "reasoning": {
                "type": "string",
                "description": "Why this recommendation was made (only when is_commitment is true).",
            },
            "counter_suggestion": {
                "type": "string",
                "description": "What counter-offer to propose (only when recommendation is 'counter').",
            },
            **_TURN_ACTION_PROPERTIES,
        },
        "required": ["new_messages", "is_commitment", "action"],
        "additionalProperties": False,
    },
)
