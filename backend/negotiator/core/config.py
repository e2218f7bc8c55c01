"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Literal
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "Chat Negotiator"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    HOST: str = "127.0.0.1"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite:///./data/negotiator.db"

    # LLM Provider Selection
    LLM_PROVIDER: Literal["lm_studio", "openrouter"] = "lm_studio"

    # LM Studio Configuration
    LM_STUDIO_BASE_URL: str = "http://localhost:1234/v1"
    LM_STUDIO_DEFAULT_MODEL: str = "qwen/qwen3-8b"
    LM_STUDIO_TIMEOUT: int = 60  # seconds

    # LLM Request Configuration
    LLM_MAX_RETRIES: int = 3
    LLM_RETRY_DELAY: float = 2  # seconds, base for exponential backoff
    LLM_DEFAULT_TEMPERATURE: float = 0.4
    LLM_DEFAULT_MAX_TOKENS: int = 2048
    LLM_NATIVE_TOOLS: bool = True  # False: schema-in-prompt JSON fallback

    # OpenRouter Configuration
    LLM_ENABLE_OPENROUTER: bool = False
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_DEFAULT_MODEL: str = "google/gemini-2.5-flash"

    # Browser automation
    BROWSER_MODE: Literal["launch", "cdp"] = "launch"
    BROWSER_CDP_ENDPOINT: str = "http://localhost:9222"
    BROWSER_HEADLESS: bool = False
    BROWSER_DATA_DIR: str = "./data/browser-data"
    BROWSER_ACTION_TIMEOUT_MS: int = 10000

    # Negotiation timing (seconds)
    OBSERVER_POLL_INTERVAL: float = 5.0
    TURN_DEBOUNCE_SECONDS: float = 2.0
    INACTIVITY_SECONDS: float = 15.0
    TYPING_INDICATOR_INACTIVITY_SECONDS: float = 300.0  # remote party is composing
    USER_TYPING_WINDOW_SECONDS: float = 20.0
    PAGE_LOAD_WAIT_SECONDS: float = 3.0
    OVERRIDE_FOLLOWUP_DELAY_SECONDS: float = 3.0

    # Stall messages while awaiting approval (seconds)
    STALL_FIRST_DELAY_SECONDS: float = 20.0
    STALL_MIN_INTERVAL_SECONDS: float = 45.0
    STALL_MAX_JITTER_SECONDS: float = 30.0

    # Prompt shaping
    CONVERSATION_TAIL_MESSAGES: int = 20
    SNAPSHOT_PROMPT_CHARS: int = 2000
    # More remote messages than this in the log at human detection means the
    # conversation is being resumed rather than opened.
    RESUMED_REMOTE_MESSAGE_THRESHOLD: int = 1

    # Research
    RESEARCH_SEARCH_URL: str = "https://html.duckduckgo.com/html/"
    RESEARCH_TIMEOUT: float = 10.0

    # Session Management
    MAX_ACTIVE_SESSIONS: int = 1
    AUTO_SAVE_DEBOUNCE_SECONDS: float = 5.0

    # CORS - accepts comma-separated string or list
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/app.log"

    # Streaming / SSE
    SSE_HEARTBEAT_INTERVAL: int = 15  # seconds between heartbeat events

    class Config:
        # Look for .env in project root first, then backend/.env
        env_file = [
            str(Path(__file__).parent.parent.parent.parent / ".env"),
            str(Path(__file__).parent.parent.parent / ".env"),
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Singleton instance
settings = Settings()
