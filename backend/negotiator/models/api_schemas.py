"""
Pydantic API schemas.

WHAT: Request and response models for FastAPI, plus saved-session records
WHY: Type-safe validation and serialization matching frontend interfaces
HOW: Pydantic v2 models with validators and constraints
"""

from typing import Optional, List, Dict, Literal, Any
from pydantic import BaseModel, Field, field_validator
from datetime import datetime

from ..core.config import settings
from .negotiation import (
    ApprovalRequest,
    ConversationMessage,
    NegotiationConfig,
    Phase,
)


# ========== Capability Configuration ==========

class LLMConfig(BaseModel):
    """Per-session LLM configuration. Unset fields fall back to settings."""
    provider: Optional[Literal["lm_studio", "openrouter"]] = Field(default=None, description="Provider name")
    model: Optional[str] = Field(default=None, max_length=200, description="Model name")
    base_url: Optional[str] = Field(default=None, description="Override provider base URL")
    api_key: Optional[str] = Field(default=None, description="Provider API key (never persisted)")
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0, description="Temperature")
    max_tokens: Optional[int] = Field(default=None, gt=0, le=16384, description="Max tokens")

    def without_secrets(self) -> "LLMConfig":
        return self.model_copy(update={"api_key": None})


class BrowserConfig(BaseModel):
    """How to reach the browser that hosts the chat page."""
    mode: Literal["launch", "cdp"] = Field(default_factory=lambda: settings.BROWSER_MODE)
    cdp_endpoint: Optional[str] = Field(default=None, description="CDP endpoint for cdp mode")
    headless: bool = Field(default_factory=lambda: settings.BROWSER_HEADLESS)


# ========== Request Schemas ==========

class StartNegotiationRequest(BaseModel):
    """Request to start a new negotiation."""
    url: str = Field(..., min_length=1, max_length=2000, description="Chat page URL")
    config: NegotiationConfig
    llm_config: Optional[LLMConfig] = Field(default=None, description="Optional LLM configuration")
    browser_config: Optional[BrowserConfig] = Field(default=None, description="Optional browser configuration")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Only http(s) pages can be negotiated on."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v


class ContinueSessionRequest(BaseModel):
    """Request to continue a saved negotiation."""
    config: Optional[NegotiationConfig] = Field(default=None, description="Replaces the saved configuration")
    llm_config: Optional[LLMConfig] = None
    browser_config: Optional[BrowserConfig] = None


class ApproveRequest(BaseModel):
    request_id: str = Field(..., min_length=1)


class RejectRequest(BaseModel):
    request_id: str = Field(..., min_length=1)
    directive: Optional[str] = Field(default=None, max_length=2000, description="What to push back with")


class TextCommandRequest(BaseModel):
    """Directive or override text from the human."""
    text: str = Field(..., min_length=1, max_length=4000)


class RenameRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class SettingValueRequest(BaseModel):
    value: Any


class RefineRequest(BaseModel):
    """Request to rewrite a draft chat message in the negotiation's voice."""
    text: str = Field(..., min_length=1, max_length=4000)
    config: NegotiationConfig
    llm_config: Optional[LLMConfig] = None


# ========== Response Schemas ==========

class StartNegotiationResponse(BaseModel):
    """Response after starting (or continuing) a negotiation."""
    session_id: str
    phase: Phase
    stream_url: str


class NegotiationStateResponse(BaseModel):
    """Current state of an active negotiation."""
    session_id: str
    name: str
    start_url: str
    started_at: datetime
    phase: Phase
    paused_from: Optional[Phase] = None
    user_typing: bool = False
    conversation: List[ConversationMessage]
    pending_approval: Optional[ApprovalRequest] = None
    config: NegotiationConfig


class CommandResponse(BaseModel):
    """Result of a command sent to an active negotiation."""
    session_id: str
    phase: Phase
    accepted: bool = True


class StopNegotiationResponse(BaseModel):
    session_id: str
    phase: Phase
    summary: Optional[str] = None
    saved: bool


class RefineResponse(BaseModel):
    text: str


class SettingsResponse(BaseModel):
    settings: Dict[str, Any]


class DeleteSessionResponse(BaseModel):
    """Response after deleting a saved session."""
    saved_id: str
    deleted: bool


# ========== Saved Sessions ==========

class SavedSession(BaseModel):
    """Full saved negotiation record."""
    id: str
    name: str
    url: str
    config: NegotiationConfig
    llm_config: LLMConfig = Field(default_factory=LLMConfig)
    browser_config: BrowserConfig = Field(default_factory=BrowserConfig)
    messages: List[ConversationMessage] = Field(default_factory=list)
    summary: Optional[str] = None
    final_phase: Phase
    started_at: datetime
    ended_at: datetime


class SavedSessionSummary(BaseModel):
    """Saved negotiation listing entry."""
    id: str
    name: str
    url: str
    service_provider: str
    message_count: int
    summary: Optional[str] = None
    final_phase: Phase
    started_at: datetime
    ended_at: datetime


# ========== Error Response ==========

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: Dict[str, Any]

    class Config:
        json_schema_extra = {
            "example": {
                "error": {
                    "code": "SESSION_NOT_FOUND",
                    "message": "Negotiation session not found: 6f1c...",
                    "details": {"session_id": "6f1c..."},
                    "timestamp": "2024-01-01T00:00:00Z"
                }
            }
        }
