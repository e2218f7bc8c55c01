"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Centralized test configuration with markers and test environment
WHY: Enable test organization, filtering, and shared test utilities
HOW: Point the app at a throwaway database before any negotiator import,
     register markers, share fakes and fixtures
"""

import os
import tempfile

# Must run before negotiator.core.config is imported anywhere
_TEST_DIR = tempfile.mkdtemp(prefix="negotiator-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR}/test.db"
os.environ["LOG_FILE"] = ""
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LLM_RETRY_DELAY"] = "0"

import pytest

from negotiator.agents.negotiation_agent import AgentTimings
from negotiator.llm.provider_factory import reset_provider
from negotiator.models.negotiation import NegotiationConfig


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take significant time to run"
    )


@pytest.fixture(autouse=True)
def reset_provider_singleton():
    """
    Reset provider singleton before each test.

    WHAT: Clear provider cache between tests
    WHY: Prevent test pollution and ensure clean state
    HOW: Call reset_provider() before and after each test
    """
    reset_provider()
    yield
    reset_provider()


# Shrunken windows; real ones are seconds to minutes
FAST_TIMINGS = AgentTimings(
    page_load_wait=0.0,
    debounce=0.05,
    inactivity=0.4,
    typing_indicator_inactivity=5.0,
    user_typing_window=0.2,
    override_followup_delay=0.05,
    stall_first_delay=0.1,
    stall_min_interval=0.1,
    stall_max_jitter=0.0,
)

# For tests that must not see watchdog or stall activity
QUIET_TIMINGS = AgentTimings(
    page_load_wait=0.0,
    debounce=0.05,
    inactivity=60.0,
    typing_indicator_inactivity=60.0,
    user_typing_window=0.3,
    override_followup_delay=0.05,
    stall_first_delay=60.0,
    stall_min_interval=60.0,
    stall_max_jitter=0.0,
)


@pytest.fixture
def negotiation_config() -> NegotiationConfig:
    return NegotiationConfig(
        session_name="Internet bill",
        goal="Lower my monthly internet bill to $50",
        bottom_line="Keep 300 Mbps",
        tone="firm",
        context="Customer for 6 years, competitor offers $45",
        service_provider="Comcast",
    )


@pytest.fixture
def fast_timings() -> AgentTimings:
    return FAST_TIMINGS


@pytest.fixture
def quiet_timings() -> AgentTimings:
    return QUIET_TIMINGS


@pytest.fixture
def mock_models_response() -> dict:
    return {
        "data": [
            {"id": "qwen/qwen3-8b", "object": "model"},
            {"id": "llama-3.1-8b-instruct", "object": "model"}
        ]
    }


@pytest.fixture
def fresh_db():
    """Empty saved_sessions/app_settings tables for each test."""
    from negotiator.core.database import Base, engine, init_db

    init_db()
    Base.metadata.drop_all(bind=engine)
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


class FakeSessionFactories:
    """Hands a SessionManager in-memory surfaces and one shared scripted decision maker."""

    def __init__(self):
        from tests.fixtures.mock_llm import ScriptedDecisionMaker

        self.decider = ScriptedDecisionMaker()
        self.surfaces = []
        self.fail_navigate = False
        self.llm_configs = []

    def surface(self):
        from tests.fixtures.mock_browser import MockActionSurface

        surface = MockActionSurface()
        surface.fail_navigate = self.fail_navigate
        self.surfaces.append(surface)
        return surface

    def decider_factory(self, llm_config):
        self.llm_configs.append(llm_config)
        return self.decider


@pytest.fixture
def fakes() -> FakeSessionFactories:
    return FakeSessionFactories()


@pytest.fixture
def manager(fresh_db, fakes):
    from negotiator.core.session_manager import SessionManager
    from negotiator.core.session_store import SessionStore

    return SessionManager(
        SessionStore(),
        surface_factory=fakes.surface,
        decider_factory=fakes.decider_factory,
        researcher_factory=lambda: None,
        timings=QUIET_TIMINGS,
        max_active=1,
        auto_save_delay=0.05,
        poll_interval=3600,
    )
