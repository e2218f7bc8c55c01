"""
Unit tests for the negotiation agent state machine.

WHAT: Phase transitions, debounce, watchdog, typing suppression, single-flight,
      deduplication, approval rendezvous, pause/resume and stop
WHY: The agent is where polling, model latency, timers and human commands race
HOW: In-memory browser and scripted decision maker, shrunken AgentTimings,
     the observer polled on demand
"""

import asyncio
from datetime import timedelta

import pytest

from negotiator.agents import prompts
from negotiator.agents.stall_scheduler import STALL_MESSAGES
from negotiator.llm.types import ProviderResponseError, TextReply
from negotiator.models.negotiation import (
    SUMMARY_PREFIX,
    ConversationMessage,
    Phase,
    Sender,
    utc_now,
)
from negotiator.utils.timers import TimerPurpose

from tests.fixtures.agent_harness import AgentHarness
from tests.fixtures.mock_browser import MockActionSurface, chat_page
from tests.fixtures.mock_llm import ScriptedDecisionMaker


def bot_turn(*texts, action="wait", **extra):
    turn = {
        "new_messages": [{"sender": "remote_party", "text": t} for t in texts],
        "human_detected": False,
        "human_evidence": "Menu options",
        "action": action,
    }
    turn.update(extra)
    return turn


def rep_turn(*texts, action="wait", **extra):
    turn = {
        "new_messages": [{"sender": "remote_party", "text": t} for t in texts],
        "is_commitment": False,
        "action": action,
    }
    turn.update(extra)
    return turn


def assert_approval_invariant(agent):
    assert (agent.pending_approval is not None) == (agent.effective_phase == Phase.AWAITING_APPROVAL)


class FakeResearcher:
    def __init__(self, findings="Research findings: Verizon $45/mo"):
        self.findings = findings
        self.queries = []

    async def research(self, query):
        self.queries.append(query)
        return self.findings


class SlowOpeningDecider(ScriptedDecisionMaker):
    """Holds opening-message calls until `opening_gate` is set."""

    def __init__(self):
        super().__init__()
        self.opening_gate = asyncio.Event()

    async def decide(self, system_prompt, messages):
        if prompts.OPENING_INSTRUCTION in system_prompt:
            await self.opening_gate.wait()
        return await super().decide(system_prompt, messages)


class SlowTypingSurface(MockActionSurface):
    """Holds every type() until `typing_gate` is set."""

    def __init__(self):
        super().__init__()
        self.typing_gate = asyncio.Event()
        self.typing_gate.set()

    async def type(self, ref, text):
        await self.typing_gate.wait()
        await super().type(ref, text)


@pytest.mark.unit
class TestStartAndReachHuman:
    """Connecting, kickoff and the reach-human loop."""

    @pytest.mark.asyncio
    async def test_start_navigates_and_enters_reaching_human(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.start()

        assert h.surface.navigated == ["https://support.example.com/chat"]
        assert h.agent.phase == Phase.REACHING_HUMAN
        assert h.phases() == ["connecting", "reaching_human"]
        assert h.events_of("phase_changed")[0]["data"]["previous"] == "idle"
        assert len(h.decider.calls_for("page_action")) == 1
        await h.close()

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.start()
        with pytest.raises(RuntimeError):
            await h.agent.start("https://other.example.com")
        await h.close()

    @pytest.mark.asyncio
    async def test_three_snapshots_then_human_sends_one_opening(self, negotiation_config, quiet_timings):
        """idle -> connecting -> reaching_human -> negotiating, one opening after the third snapshot."""
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.start()

        h.decider.queue(
            "reach_human_turn",
            bot_turn("Choose an option: 1) Billing 2) Tech"),
            bot_turn("Connecting you to an agent..."),
            bot_turn("Hi, I'm Sarah from billing.", human_detected=True, human_evidence="Introduced by name"),
        )
        h.decider.texts.append("Hi Sarah, I want to talk about lowering my bill.")

        await h.change_page("Choose an option: 1) Billing 2) Tech")
        assert h.agent.phase == Phase.REACHING_HUMAN
        assert h.surface.sent_messages == []

        await h.change_page("Connecting you to an agent...")
        assert h.agent.phase == Phase.REACHING_HUMAN
        assert h.surface.sent_messages == []

        await h.change_page("Hi, I'm Sarah from billing.")
        assert h.agent.phase == Phase.NEGOTIATING
        assert h.phases() == ["connecting", "reaching_human", "negotiating"]
        assert h.surface.sent_messages == ["Hi Sarah, I want to talk about lowering my bill."]

        opening_calls = h.decider.calls_for("text")
        assert len(opening_calls) == 1
        assert prompts.OPENING_INSTRUCTION in opening_calls[0]["system"]

        last = h.agent.conversation[-1]
        assert last.sender == Sender.AGENT
        assert last.text == "Hi Sarah, I want to talk about lowering my bill."
        await h.close()

    @pytest.mark.asyncio
    async def test_resumed_conversation_uses_resumed_opening(self, negotiation_config, quiet_timings):
        prior = [
            ConversationMessage(sender=Sender.REMOTE_PARTY, text="Hi, I'm Sarah."),
            ConversationMessage(sender=Sender.AGENT, text="Hi Sarah, about my bill."),
            ConversationMessage(sender=Sender.REMOTE_PARTY, text="Sure, let me pull up your account."),
        ]
        h = AgentHarness(negotiation_config, quiet_timings, prior_conversation=prior)
        await h.start()

        h.decider.queue("reach_human_turn", bot_turn(human_detected=True))
        await h.change_page("Sure, let me pull up your account.")

        assert h.agent.phase == Phase.NEGOTIATING
        opening = h.decider.calls_for("text")[0]
        assert prompts.RESUMED_OPENING_INSTRUCTION in opening["system"]
        await h.close()

    @pytest.mark.asyncio
    async def test_mid_chat_page_on_first_detection_uses_resumed_opening(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.start()

        h.decider.queue("reach_human_turn", bot_turn(
            "Hi, I'm Sarah.", "I see you asked about your bill, still there?", human_detected=True,
        ))
        await h.change_page("Hi, I'm Sarah.", "I see you asked about your bill, still there?")

        assert h.agent.phase == Phase.NEGOTIATING
        opening = h.decider.calls_for("text")[0]
        assert prompts.RESUMED_OPENING_INSTRUCTION in opening["system"]
        await h.close()

    @pytest.mark.asyncio
    async def test_prior_conversation_is_published_without_summaries(self, negotiation_config, quiet_timings):
        prior = [
            ConversationMessage(sender=Sender.REMOTE_PARTY, text="Hello"),
            ConversationMessage(sender=Sender.SYSTEM, text=f"{SUMMARY_PREFIX}- Asked for a discount"),
        ]
        h = AgentHarness(negotiation_config, quiet_timings, prior_conversation=prior)

        assert [m.text for m in h.agent.get_conversation()] == ["Hello"]
        published = h.events_of("conversation_updated")[0]["data"]["messages"]
        assert [m["text"] for m in published] == ["Hello"]

    @pytest.mark.asyncio
    async def test_kickoff_text_reply_asks_user_for_help(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        h.decider.queue("page_action", TextReply("I am not sure what to do here."))
        await h.start()

        messages = [m.text for m in h.agent.conversation]
        assert "Agent needs help: I couldn't determine how to start the chat. What should I do?" in messages
        unsure = h.events_of("agent_unsure")
        assert unsure and unsure[0]["data"]["context"] == "Initial page analysis failed"
        await h.close()

    @pytest.mark.asyncio
    async def test_kickoff_click_is_executed_and_noted(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        h.decider.queue("page_action", {"action": "click", "ref": "e3", "reason": "Open the chat widget"})
        await h.start()

        assert h.surface.clicks == ["e3"]
        assert h.agent.conversation[-1].text == "Agent clicked: Open the chat widget"
        assert h.agent.conversation[-1].sender == Sender.SYSTEM
        await h.close()

    @pytest.mark.asyncio
    async def test_kickoff_type_action_records_agent_message(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        h.decider.queue("page_action", {"action": "type", "ref": "e5", "text": "I'd like to talk to a person"})
        await h.start()

        assert h.surface.typed == [("e5", "I'd like to talk to a person")]
        assert h.surface.keys == ["Enter"]
        assert h.agent.conversation[-1].sender == Sender.AGENT
        await h.close()

    @pytest.mark.asyncio
    async def test_needs_user_action_publishes_agent_unsure(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.start()

        h.decider.queue("reach_human_turn", bot_turn(action="needs_user", reason="Please sign in first"))
        await h.change_page("Sign in to continue")

        assert h.agent.conversation[-1].text == "Agent needs help: Please sign in first"
        assert h.events_of("agent_unsure")[-1]["data"]["question"] == "Please sign in first"
        await h.close()

    @pytest.mark.asyncio
    async def test_navigation_failure_propagates(self, negotiation_config, quiet_timings):
        from negotiator.browser.action_surface import BrowserActionError

        h = AgentHarness(negotiation_config, quiet_timings)
        h.surface.fail_navigate = True
        with pytest.raises(BrowserActionError):
            await h.agent.start("https://support.example.com/chat")
        assert h.agent.phase == Phase.CONNECTING
        await h.close()
        assert h.agent.phase == Phase.DONE


@pytest.mark.unit
class TestDebounceAndSingleFlight:
    """Change bursts and in-flight decisions."""

    @pytest.mark.asyncio
    async def test_burst_dispatches_one_turn_with_last_snapshot(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.start()
        before = len(h.decider.calls_for("reach_human_turn"))

        await h.change_page("first render", settle=False)
        await h.change_page("second render", settle=False)
        await h.change_page("third render", settle=False)
        await h.settle()

        calls = h.decider.calls_for("reach_human_turn")[before:]
        assert len(calls) == 1
        content = calls[0]["messages"][0]["content"]
        assert '"third render"' in content
        assert '"first render"' not in content
        await h.close()

    @pytest.mark.asyncio
    async def test_changes_during_decision_are_dropped(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        before = len(h.decider.calls_for("negotiation_turn"))

        h.decider.gate = asyncio.Event()
        await h.change_page("Sarah: one moment", settle=False)
        await asyncio.sleep(quiet_timings.debounce * 3)
        assert h.agent.decision_in_flight

        await h.change_page("Sarah: still checking", settle=False)
        await asyncio.sleep(quiet_timings.debounce * 3)

        h.decider.gate.set()
        await h.settle()

        assert len(h.decider.calls_for("negotiation_turn")) == before + 1
        assert h.decider.max_in_flight == 1
        await h.close()

    @pytest.mark.asyncio
    async def test_result_discarded_when_paused_mid_decision(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        log_size = len(h.agent.conversation)
        sent = list(h.surface.sent_messages)

        h.decider.gate = asyncio.Event()
        h.decider.queue("negotiation_turn", rep_turn("What plan are you on?", action="respond", response="The 300 Mbps plan."))
        await h.change_page("Sarah: What plan are you on?", settle=False)
        await asyncio.sleep(quiet_timings.debounce * 3)
        assert h.agent.decision_in_flight

        assert h.agent.pause()
        h.decider.gate.set()
        await asyncio.sleep(0.05)

        assert len(h.agent.conversation) == log_size
        assert h.surface.sent_messages == sent
        await h.close()


@pytest.mark.unit
class TestDeduplication:

    @pytest.mark.asyncio
    async def test_rereported_message_is_not_appended(self, negotiation_config, quiet_timings):
        t0 = utc_now() - timedelta(minutes=1)
        prior = [ConversationMessage(sender=Sender.REMOTE_PARTY, text="Hello", timestamp=t0)]
        h = AgentHarness(negotiation_config, quiet_timings, prior_conversation=prior)
        await h.start()

        h.decider.queue("reach_human_turn", bot_turn("Hello"))
        await h.change_page("Hello")

        assert [(m.sender, m.text) for m in h.agent.conversation] == [(Sender.REMOTE_PARTY, "Hello")]
        await h.close()

    @pytest.mark.asyncio
    async def test_batch_gets_strictly_increasing_timestamps(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.start()

        turn = bot_turn("Welcome to support", "Please choose a topic")
        turn["new_messages"].append({"sender": "system", "text": "You are in the queue"})
        h.decider.queue("reach_human_turn", turn)
        await h.change_page("Welcome to support", "Please choose a topic")

        log = h.agent.conversation
        assert [m.text for m in log] == ["Welcome to support", "Please choose a topic", "You are in the queue"]
        assert log[2].sender == Sender.SYSTEM
        assert all(a.timestamp < b.timestamp for a, b in zip(log, log[1:]))
        assert len(h.events_of("conversation_updated")) == 1
        await h.close()

    @pytest.mark.asyncio
    async def test_line_repeated_within_one_batch_is_kept(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        log_size = len(h.agent.conversation)

        h.decider.queue("negotiation_turn", rep_turn("ok", "ok"))
        await h.change_page("Sarah: ok", "Sarah: ok")

        added = h.agent.conversation[log_size:]
        assert [(m.sender, m.text) for m in added] == [(Sender.REMOTE_PARTY, "ok"), (Sender.REMOTE_PARTY, "ok")]
        assert added[0].timestamp < added[1].timestamp

        # Reported again on the next render, both are already in the log
        h.decider.queue("negotiation_turn", rep_turn("ok"))
        await h.change_page("Sarah: ok", "Sarah: ok", "Sarah: typing")
        assert len(h.agent.conversation) == log_size + 2
        await h.close()

    @pytest.mark.asyncio
    async def test_sender_aliases_are_normalized(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.start()

        h.decider.queue("reach_human_turn", {
            "new_messages": [{"sender": "rep", "text": "Hi there"}],
            "human_detected": False,
            "human_evidence": "",
            "action": "wait",
        })
        await h.change_page("Hi there")

        assert h.agent.conversation[-1].sender == Sender.REMOTE_PARTY
        await h.close()

    @pytest.mark.asyncio
    async def test_no_new_messages_means_no_response(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        sent = list(h.surface.sent_messages)

        h.decider.queue("negotiation_turn", rep_turn("Hi, this is Sarah. How can I help?", action="respond", response="Again?"))
        await h.change_page("Hi, this is Sarah. How can I help?")

        assert h.surface.sent_messages == sent
        await h.close()


@pytest.mark.unit
class TestNegotiatingTurns:

    @pytest.mark.asyncio
    async def test_respond_action_sends_and_records(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()

        h.decider.queue("negotiation_turn", rep_turn(
            "Our standard plan is $80.", action="respond", response='"I\'ve been a customer for 6 years, can you do better?"'
        ))
        await h.change_page("Sarah: Our standard plan is $80.")

        # Wrapping quotes are trimmed before sending
        assert h.surface.sent_messages[-1] == "I've been a customer for 6 years, can you do better?"
        assert h.agent.conversation[-1].sender == Sender.AGENT
        await h.close()

    @pytest.mark.asyncio
    async def test_missing_chat_input_records_nothing(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        sent = list(h.surface.sent_messages)

        h.decider.queue("negotiation_turn", rep_turn("Anything else?", action="respond", response="Yes, my bill."))
        await h.change_page("Sarah: Anything else?", with_input=False)

        assert h.surface.sent_messages == sent
        last = h.agent.conversation[-1]
        assert (last.sender, last.text) == (Sender.REMOTE_PARTY, "Anything else?")
        await h.close()

    @pytest.mark.asyncio
    async def test_pricing_line_triggers_research(self, negotiation_config, quiet_timings):
        researcher = FakeResearcher()
        h = AgentHarness(negotiation_config, quiet_timings, researcher=researcher)
        await h.reach_negotiating()

        h.decider.queue("negotiation_turn", rep_turn("Sorry, $80 is the best we can do."))
        await h.change_page("Sarah: Sorry, $80 is the best we can do.")

        assert len(researcher.queries) == 1
        assert "Comcast" in researcher.queries[0]
        results = h.events_of("research_result")
        assert results and results[0]["data"]["findings"] == researcher.findings
        await h.close()

    @pytest.mark.asyncio
    async def test_ordinary_message_does_not_trigger_research(self, negotiation_config, quiet_timings):
        researcher = FakeResearcher()
        h = AgentHarness(negotiation_config, quiet_timings, researcher=researcher)
        await h.reach_negotiating()

        h.decider.queue("negotiation_turn", rep_turn("Let me check your account."))
        await h.change_page("Sarah: Let me check your account.")

        assert researcher.queries == []
        await h.close()


@pytest.mark.unit
class TestFailureSemantics:

    @pytest.mark.asyncio
    async def test_provider_error_aborts_turn_and_rearms_watchdog(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        log_size = len(h.agent.conversation)

        h.decider.queue("negotiation_turn", ProviderResponseError("model server exploded"))
        await h.change_page("Sarah: Are you there?")

        assert h.agent.phase == Phase.NEGOTIATING
        assert len(h.agent.conversation) == log_size
        errors = h.events_of("error")
        assert errors and "model server exploded" in errors[-1]["data"]["message"]
        assert TimerPurpose.INACTIVITY in h.agent.armed_timers()
        await h.close()

    @pytest.mark.asyncio
    async def test_snapshot_failure_on_forced_turn_is_reported(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        assert h.agent.pause()

        h.surface.fail_snapshot = True
        assert h.agent.resume()
        await h.agent.settle()

        assert h.agent.phase == Phase.NEGOTIATING
        assert "Snapshot failed" in h.events_of("error")[-1]["data"]["message"]
        h.surface.fail_snapshot = False
        await h.close()

    @pytest.mark.asyncio
    async def test_text_reply_is_ignored(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        log_size = len(h.agent.conversation)

        h.decider.queue("negotiation_turn", TextReply("I think the rep wants to help."))
        await h.change_page("Sarah: Let me see.")

        assert len(h.agent.conversation) == log_size
        assert h.events_of("error") == []
        await h.close()

    @pytest.mark.asyncio
    async def test_invalid_arguments_are_ignored(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        log_size = len(h.agent.conversation)

        h.decider.queue("negotiation_turn", {"new_messages": "not a list", "action": "dance"})
        await h.change_page("Sarah: Let me see.")

        assert len(h.agent.conversation) == log_size
        assert h.agent.phase == Phase.NEGOTIATING
        await h.close()


@pytest.mark.unit
class TestWatchdog:

    @pytest.mark.asyncio
    async def test_inactivity_in_negotiating_sends_follow_up(self, negotiation_config, fast_timings):
        h = AgentHarness(negotiation_config, fast_timings)
        await h.reach_negotiating()
        sent_before = len(h.surface.sent_messages)

        h.decider.texts.append("Hello, are you still there?")
        await asyncio.sleep(fast_timings.inactivity * 1.5)

        follow_ups = [c for c in h.decider.calls_for("text") if prompts.FOLLOW_UP_INSTRUCTION in c["system"]]
        assert len(follow_ups) >= 1
        assert len(h.surface.sent_messages) > sent_before
        assert "Hello, are you still there?" in h.surface.sent_messages
        await h.close()

    @pytest.mark.asyncio
    async def test_inactivity_in_reaching_human_forces_fresh_turn(self, negotiation_config, fast_timings):
        h = AgentHarness(negotiation_config, fast_timings)
        await h.start()
        before = len(h.decider.calls_for("reach_human_turn"))
        snaps = h.surface.snapshot_calls

        await asyncio.sleep(fast_timings.inactivity * 1.5)

        assert len(h.decider.calls_for("reach_human_turn")) > before
        assert h.surface.snapshot_calls > snaps
        assert h.surface.sent_messages == []
        await h.close()

    @pytest.mark.asyncio
    async def test_typing_indicator_extends_watchdog(self, negotiation_config, fast_timings):
        h = AgentHarness(negotiation_config, fast_timings)
        await h.reach_negotiating()

        await h.change_page("Sarah is typing...", settle=False)

        loop = asyncio.get_running_loop()
        remaining = h.agent._timers.deadline(TimerPurpose.INACTIVITY) - loop.time()
        assert remaining > fast_timings.inactivity * 2
        await h.close()


@pytest.mark.unit
class TestUserTyping:

    @pytest.mark.asyncio
    async def test_typing_suppresses_turns_then_forces_one(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        before = len(h.decider.calls_for("negotiation_turn"))

        assert h.agent.user_typing_signal()
        assert h.agent.armed_timers() == [TimerPurpose.USER_TYPING]

        await h.change_page("Sarah: hello?", settle=False)
        await asyncio.sleep(quiet_timings.debounce * 3)
        assert len(h.decider.calls_for("negotiation_turn")) == before

        h.surface.page = chat_page("Sarah: latest line")
        await asyncio.sleep(quiet_timings.user_typing_window + 0.15)

        calls = h.decider.calls_for("negotiation_turn")[before:]
        assert len(calls) == 1
        assert '"Sarah: latest line"' in calls[0]["messages"][0]["content"]
        assert h.agent.user_typing is False
        await h.close()

    @pytest.mark.asyncio
    async def test_repeated_signal_refreshes_window(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        before = len(h.decider.calls_for("negotiation_turn"))

        h.agent.user_typing_signal()
        await asyncio.sleep(quiet_timings.user_typing_window * 0.6)
        h.agent.user_typing_signal()
        await asyncio.sleep(quiet_timings.user_typing_window * 0.6)

        assert h.agent.user_typing is True
        assert len(h.decider.calls_for("negotiation_turn")) == before
        await h.close()

    @pytest.mark.asyncio
    async def test_typing_signal_ignored_while_paused(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        h.agent.pause()

        assert h.agent.user_typing_signal() is False
        assert h.agent.armed_timers() == []
        await h.close()

    @pytest.mark.asyncio
    async def test_override_sends_human_text_then_catches_up(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        h.agent.user_typing_signal()
        before = len(h.decider.calls_for("negotiation_turn"))

        sent = await h.agent.user_override('"Can you match $45?"')

        assert sent is True
        # Human text goes out verbatim
        assert h.surface.sent_messages[-1] == '"Can you match $45?"'
        assert h.agent.conversation[-1].sender == Sender.AGENT
        assert h.agent.user_typing is False

        await asyncio.sleep(quiet_timings.override_followup_delay * 4)
        assert len(h.decider.calls_for("negotiation_turn")) == before + 1
        await h.close()

    @pytest.mark.asyncio
    async def test_concurrent_sends_do_not_interleave(self, negotiation_config, quiet_timings):
        surface = SlowTypingSurface()
        h = AgentHarness(negotiation_config, quiet_timings, surface=surface)
        await h.reach_negotiating()
        clicks = len(surface.clicks)

        surface.typing_gate.clear()
        first = asyncio.ensure_future(h.agent.user_override("Can you match $45?"))
        second = asyncio.ensure_future(h.agent.user_override("Or $50 with no contract?"))
        await asyncio.sleep(0.02)
        # The second send waits until the first has pressed Enter
        assert len(surface.clicks) == clicks + 1

        surface.typing_gate.set()
        assert await first is True
        assert await second is True
        assert surface.sent_messages[-2:] == ["Can you match $45?", "Or $50 with no contract?"]
        assert len(surface.clicks) == clicks + 2
        await h.close()

    @pytest.mark.asyncio
    async def test_directive_is_recorded_as_system_message(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        h.agent.user_typing_signal()

        h.agent.user_directive("Mention the Verizon offer")

        last = h.agent.conversation[-1]
        assert (last.sender, last.text) == (Sender.SYSTEM, "User directive: Mention the Verizon offer")
        assert h.agent.user_typing is False
        await h.close()


@pytest.mark.unit
class TestPauseResume:

    @pytest.mark.asyncio
    async def test_pause_freezes_everything_until_resume(self, negotiation_config, fast_timings):
        h = AgentHarness(negotiation_config, fast_timings)
        await h.reach_negotiating()
        calls_before = len(h.decider.calls)

        assert h.agent.pause()
        assert h.agent.phase == Phase.PAUSED
        assert h.agent.paused_from == Phase.NEGOTIATING
        assert h.agent.armed_timers() == []

        await h.change_page("Sarah: hello?", settle=False)
        await asyncio.sleep(fast_timings.inactivity * 1.5)
        assert len(h.decider.calls) == calls_before
        assert h.agent.armed_timers() == []

        h.surface.page = chat_page("Sarah: fresh line")
        snaps = h.surface.snapshot_calls
        assert h.agent.resume()
        await h.agent.settle()

        calls = h.decider.calls[calls_before:]
        assert [c["kind"] for c in calls] == ["negotiation_turn"]
        assert '"Sarah: fresh line"' in calls[0]["messages"][0]["content"]
        assert h.surface.snapshot_calls == snaps + 1
        assert h.agent.phase == Phase.NEGOTIATING
        assert TimerPurpose.INACTIVITY in h.agent.armed_timers()
        await h.close()

    @pytest.mark.asyncio
    async def test_pause_not_allowed_when_idle_or_done(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        assert h.agent.pause() is False

        await h.start()
        await h.agent.stop()
        assert h.agent.pause() is False
        assert h.agent.resume() is False

    @pytest.mark.asyncio
    async def test_resume_without_pause_is_rejected(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.start()
        assert h.agent.resume() is False
        await h.close()

    @pytest.mark.asyncio
    async def test_opening_discarded_by_pause_goes_out_after_resume(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings, decider=SlowOpeningDecider())
        await h.start()

        h.decider.queue("reach_human_turn", bot_turn("Hi, I'm Sarah.", human_detected=True))
        h.decider.texts.extend(["Written before the pause", "Hi Sarah, I'd like to talk about my bill."])
        await h.change_page("Hi, I'm Sarah.", settle=False)
        await asyncio.sleep(quiet_timings.debounce * 3)
        assert h.agent.phase == Phase.NEGOTIATING

        assert h.agent.pause()
        h.decider.opening_gate.set()
        await asyncio.sleep(0.05)
        assert h.surface.sent_messages == []

        assert h.agent.resume()
        await h.agent.settle()

        assert h.surface.sent_messages == ["Hi Sarah, I'd like to talk about my bill."]
        assert h.decider.calls_for("negotiation_turn") == []
        assert prompts.OPENING_INSTRUCTION in h.decider.calls_for("text")[-1]["system"]
        await h.close()

    @pytest.mark.asyncio
    async def test_start_paused_skips_kickoff(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.start(paused_restore=Phase.NEGOTIATING)

        assert h.agent.phase == Phase.PAUSED
        assert h.agent.paused_from == Phase.NEGOTIATING
        assert h.decider.calls_for("page_action") == []
        assert h.decider.calls_for("reach_human_turn") == []

        assert h.agent.resume()
        await h.agent.settle()
        assert h.agent.phase == Phase.NEGOTIATING
        assert len(h.decider.calls_for("negotiation_turn")) == 1
        await h.close()


@pytest.mark.unit
class TestApprovalFlow:

    @pytest.mark.asyncio
    async def test_counter_commitment_awaits_approval(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        sent = list(h.surface.sent_messages)

        h.decider.queue("negotiation_turn", rep_turn(
            "I can offer $65/month with a 2-year contract.",
            is_commitment=True,
            offer_description="$65/month, 2-year contract",
            recommendation="counter",
            reasoning="Above the $50 goal",
            counter_suggestion="Ask for $50 without a contract",
        ))
        await h.change_page("Sarah: I can offer $65/month with a 2-year contract.")

        assert h.agent.phase == Phase.AWAITING_APPROVAL
        assert h.agent.stall_active
        assert_approval_invariant(h.agent)

        request = h.events_of("approval_required")[-1]["data"]["request"]
        assert request["recommendation"] == "counter"
        assert request["counter_suggestion"] == "Ask for $50 without a contract"
        assert request["remote_offer_text"] == "I can offer $65/month with a 2-year contract."
        assert request["id"] == h.agent.pending_approval.id
        # Commitment turns never answer the rep directly
        assert h.surface.sent_messages == sent
        await h.close()

    @pytest.mark.asyncio
    async def test_incomplete_commitment_defaults_to_reject(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()

        h.decider.queue("negotiation_turn", rep_turn("Shall I apply the new plan?", is_commitment=True, recommendation="maybe"))
        await h.change_page("Sarah: Shall I apply the new plan?")

        pending = h.agent.pending_approval
        assert pending.recommendation == "reject"
        assert pending.description == "Service rep made an offer"
        assert pending.reasoning
        await h.close()

    @pytest.mark.asyncio
    async def test_approve_sends_one_acceptance_on_fresh_snapshot(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        request_id = await h.reach_awaiting_approval()

        h.surface.page = chat_page("Sarah: Are you still there?")
        snaps = h.surface.snapshot_calls
        texts_before = len(h.decider.calls_for("text"))
        h.decider.texts.append("Great, I'll take the $55 deal.")

        assert h.agent.approve(request_id)
        await h.settle()

        assert h.agent.phase == Phase.NEGOTIATING
        assert h.agent.pending_approval is None
        assert not h.agent.stall_active
        assert_approval_invariant(h.agent)

        calls = h.decider.calls_for("text")[texts_before:]
        assert len(calls) == 1
        assert prompts.ACCEPT_INSTRUCTION in calls[0]["system"]
        assert "Are you still there?" in calls[0]["messages"][0]["content"]
        assert h.surface.snapshot_calls > snaps
        assert h.surface.sent_messages.count("Great, I'll take the $55 deal.") == 1
        await h.close()

    @pytest.mark.asyncio
    async def test_reject_with_directive_reaches_the_prompt(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        request_id = await h.reach_awaiting_approval()
        texts_before = len(h.decider.calls_for("text"))

        assert h.agent.reject(request_id, "counter with $49/mo")
        await h.settle()

        assert h.agent.phase == Phase.NEGOTIATING
        calls = h.decider.calls_for("text")[texts_before:]
        assert len(calls) == 1
        assert "counter with $49/mo" in calls[0]["system"]
        await h.close()

    @pytest.mark.asyncio
    async def test_reject_without_directive_pushes_back(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        request_id = await h.reach_awaiting_approval()
        texts_before = len(h.decider.calls_for("text"))

        assert h.agent.reject(request_id)
        await h.settle()

        assert prompts.REJECT_INSTRUCTION in h.decider.calls_for("text")[texts_before]["system"]
        await h.close()

    @pytest.mark.asyncio
    async def test_unknown_or_repeated_resolution_is_refused(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        request_id = await h.reach_awaiting_approval()

        assert h.agent.approve("not-the-request") is False
        assert h.agent.phase == Phase.AWAITING_APPROVAL

        assert h.agent.approve(request_id)
        assert h.agent.reject(request_id) is False
        await h.settle()
        assert h.agent.phase == Phase.NEGOTIATING
        await h.close()

    @pytest.mark.asyncio
    async def test_extraction_turn_keeps_feed_current_without_acting(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_awaiting_approval()
        sent = list(h.surface.sent_messages)

        h.decider.queue("negotiation_turn", rep_turn(
            "Take your time!", action="respond", response="Should not be sent"
        ))
        await h.change_page("Sarah: Take your time!")

        last_call = h.decider.calls_for("negotiation_turn")[-1]
        assert last_call["system"] == prompts.EXTRACT_MESSAGES_PROMPT
        assert h.agent.conversation[-1].text == "Take your time!"
        assert h.surface.sent_messages == sent
        assert h.agent.phase == Phase.AWAITING_APPROVAL
        await h.close()

    @pytest.mark.asyncio
    async def test_stall_messages_sent_while_waiting(self, negotiation_config, fast_timings):
        h = AgentHarness(negotiation_config, fast_timings)
        request_id = await h.reach_awaiting_approval()

        await asyncio.sleep(fast_timings.stall_first_delay + fast_timings.stall_min_interval * 3)

        stalls = [m for m in h.surface.sent_messages if m in STALL_MESSAGES]
        assert len(stalls) >= 2
        assert stalls == list(STALL_MESSAGES[:len(stalls)])

        assert h.agent.approve(request_id)
        await asyncio.sleep(0.05)
        sent_after_approval = len(h.surface.sent_messages)
        await asyncio.sleep(fast_timings.stall_min_interval * 2)
        assert not h.agent.stall_active
        assert all(m not in STALL_MESSAGES for m in h.surface.sent_messages[sent_after_approval:])
        await h.close()

    @pytest.mark.asyncio
    async def test_pause_during_approval_keeps_request(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        request_id = await h.reach_awaiting_approval()

        assert h.agent.pause()
        assert h.agent.pending_approval is not None
        assert h.agent.effective_phase == Phase.AWAITING_APPROVAL
        assert not h.agent.stall_active
        assert_approval_invariant(h.agent)

        assert h.agent.resume()
        await h.agent.settle()
        assert h.agent.phase == Phase.AWAITING_APPROVAL
        assert h.agent.stall_active
        assert h.agent.pending_approval.id == request_id
        await h.close()

    @pytest.mark.asyncio
    async def test_approve_while_paused_stays_paused(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        request_id = await h.reach_awaiting_approval()
        h.agent.pause()
        h.decider.texts.append("Ok, let's do it.")

        assert h.agent.approve(request_id)
        await h.settle()

        assert h.agent.phase == Phase.PAUSED
        assert h.agent.paused_from == Phase.NEGOTIATING
        assert h.agent.pending_approval is None
        assert_approval_invariant(h.agent)
        assert h.surface.sent_messages[-1] == "Ok, let's do it."
        await h.close()


@pytest.mark.unit
class TestStop:

    @pytest.mark.asyncio
    async def test_stop_during_approval_resolves_and_clears(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        request_id = await h.reach_awaiting_approval()
        sent = list(h.surface.sent_messages)

        summary = await h.agent.stop()
        await asyncio.sleep(0.05)

        assert h.agent.phase == Phase.DONE
        assert h.agent.pending_approval is None
        assert h.agent.armed_timers() == []
        assert not h.agent.stall_active
        assert not h.observer.running
        assert_approval_invariant(h.agent)
        assert h.agent.approve(request_id) is False
        # No closing message after a forced rejection
        assert h.surface.sent_messages == sent

        assert summary == h.decider.default_text
        assert h.agent.conversation[-1].text == f"{SUMMARY_PREFIX}{summary}"
        assert h.events_of("session_summary")[-1]["data"]["summary"] == summary

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()

        first = await h.agent.stop()
        text_calls = len(h.decider.calls_for("text"))
        second = await h.agent.stop()

        assert first == second
        assert len(h.decider.calls_for("text")) == text_calls

    @pytest.mark.asyncio
    async def test_stop_with_empty_log_skips_summary(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.start()

        assert await h.agent.stop() is None
        assert h.events_of("session_summary") == []
        assert h.agent.phase == Phase.DONE

    @pytest.mark.asyncio
    async def test_summary_failure_still_reaches_done(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        h.decider.texts.append(ProviderResponseError("summary failed"))

        assert await h.agent.stop() is None
        assert h.agent.phase == Phase.DONE

    @pytest.mark.asyncio
    async def test_commands_after_stop_are_refused(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()
        await h.agent.stop()

        assert h.agent.user_typing_signal() is False
        assert await h.agent.user_override("hello?") is False


@pytest.mark.unit
class TestAccessors:

    @pytest.mark.asyncio
    async def test_rename_updates_config_copy(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        h.agent.rename("Comcast retention call")

        config = h.agent.get_config()
        assert config.session_name == "Comcast retention call"
        config.session_name = "mutated"
        assert h.agent.get_config().session_name == "Comcast retention call"

    @pytest.mark.asyncio
    async def test_get_conversation_returns_copy(self, negotiation_config, quiet_timings):
        h = AgentHarness(negotiation_config, quiet_timings)
        await h.reach_negotiating()

        snapshot = h.agent.get_conversation()
        snapshot.clear()
        assert len(h.agent.conversation) == 2
        await h.close()
