"""
Saved-session store integration tests.

WHAT: Save/list/load/rename/remove round trips and settings against SQLite
WHY: Saved sessions must come back exactly as written, minus secrets
HOW: Fresh tables per test on the throwaway test database
"""

from datetime import datetime, timedelta, timezone

import pytest

from negotiator.core.session_store import SessionStore
from negotiator.models.api_schemas import BrowserConfig, LLMConfig, SavedSession
from negotiator.models.negotiation import ConversationMessage, NegotiationConfig, Phase, Sender
from negotiator.utils.exceptions import SavedSessionNotFoundException

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def saved(saved_id="s-1", name="Internet bill", ended_at=None, **overrides) -> SavedSession:
    record = dict(
        id=saved_id,
        name=name,
        url="https://support.example.com/chat",
        config=NegotiationConfig(session_name=name, goal="Lower my bill", service_provider="Comcast"),
        llm_config=LLMConfig(provider="openrouter", model="meta/llama-3", api_key="sk-secret"),
        browser_config=BrowserConfig(mode="cdp", cdp_endpoint="http://localhost:9222", headless=False),
        messages=[
            ConversationMessage(sender=Sender.REMOTE_PARTY, text="Hi, I'm Sarah", timestamp=T0),
            ConversationMessage(sender=Sender.AGENT, text="Hi Sarah", timestamp=T0 + timedelta(seconds=5)),
        ],
        summary=None,
        final_phase=Phase.NEGOTIATING,
        started_at=T0,
        ended_at=ended_at or T0 + timedelta(minutes=10),
    )
    record.update(overrides)
    return SavedSession(**record)


@pytest.fixture
def store(fresh_db):
    return SessionStore()


@pytest.mark.integration
class TestSavedSessions:

    def test_save_and_load(self, store):
        store.save(saved())

        loaded = store.load("s-1")

        assert loaded.name == "Internet bill"
        assert loaded.config.service_provider == "Comcast"
        assert [m.text for m in loaded.messages] == ["Hi, I'm Sarah", "Hi Sarah"]
        assert loaded.messages[0].sender == Sender.REMOTE_PARTY
        assert loaded.messages[0].timestamp == T0
        assert loaded.browser_config.mode == "cdp"
        assert loaded.final_phase == Phase.NEGOTIATING
        assert loaded.started_at == T0

    def test_api_key_is_never_persisted(self, store):
        store.save(saved())
        loaded = store.load("s-1")
        assert loaded.llm_config.api_key is None
        assert loaded.llm_config.model == "meta/llama-3"

    def test_save_is_upsert(self, store):
        store.save(saved())
        store.save(saved(summary="- Got $55/mo", final_phase=Phase.DONE))

        assert len(store.list_sessions()) == 1
        loaded = store.load("s-1")
        assert loaded.summary == "- Got $55/mo"
        assert loaded.final_phase == Phase.DONE

    def test_list_newest_first(self, store):
        store.save(saved("old", ended_at=T0 + timedelta(hours=1)))
        store.save(saved("new", ended_at=T0 + timedelta(hours=3)))
        store.save(saved("mid", ended_at=T0 + timedelta(hours=2)))

        listing = store.list_sessions()

        assert [s.id for s in listing] == ["new", "mid", "old"]
        assert listing[0].message_count == 2
        assert listing[0].service_provider == "Comcast"

    def test_load_missing_raises(self, store):
        with pytest.raises(SavedSessionNotFoundException):
            store.load("nope")

    def test_rename_updates_config_name(self, store):
        store.save(saved())

        renamed = store.rename("s-1", "Comcast, round two")

        assert renamed.name == "Comcast, round two"
        assert renamed.config.session_name == "Comcast, round two"
        assert store.load("s-1").config.session_name == "Comcast, round two"

    def test_rename_if_exists(self, store):
        assert store.rename_if_exists("ghost", "x") is False
        store.save(saved())
        assert store.rename_if_exists("s-1", "x") is True

    def test_remove(self, store):
        store.save(saved())
        assert store.remove("s-1") is True
        assert store.remove("s-1") is False
        assert store.list_sessions() == []


@pytest.mark.integration
class TestAppSettings:

    def test_settings_round_trip(self, store):
        assert store.get_settings() == {}

        store.set_setting("theme", "dark")
        store.set_setting("default_tone", {"tone": "firm", "remember": True})
        store.set_setting("theme", "light")

        assert store.get_settings() == {
            "theme": "light",
            "default_tone": {"tone": "firm", "remember": True},
        }
