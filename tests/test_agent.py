"""Tests for the tool-dispatch graph.

Covers:
  - Routing functions (tools / confirm / exhausted / END)
  - End-to-end turns with a mocked tool-calling model
  - Terminal actions, skipped calls, malformed and unknown tool calls
  - The iteration cap
"""

from __future__ import annotations

import json
from datetime import UTC, date, datetime
from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage
from langgraph.graph import END

from dental_agent.agent import (
    AgentState,
    create_dental_agent,
    message_text,
    route_after_chatbot,
    route_after_tools,
    run_agent_turn,
)
from dental_agent.config import MAX_TOOL_ITERATIONS
from dental_agent.services.quick_replies import ClinicData
from dental_agent.tools.scheduling import TurnContext

FROZEN = datetime(2025, 3, 7, 8, 0, tzinfo=UTC)

BOOKING_ARGS = {
    "patient_name": "Anna de Boer",
    "patient_phone": "+31 6 1234 5678",
    "service": "Teeth Cleaning",
    "doctor_id": 1,
    "date": "2025-03-10",
    "time": "10:00",
}


# ── Helpers ──────────────────────────────────────────────────────────


def _call(name: str, args: dict, call_id: str = "call_1") -> dict:
    return {"name": name, "args": args, "id": call_id}


def _tool_turn(*calls: dict) -> AIMessage:
    return AIMessage(content="", tool_calls=list(calls))


def _make_mock_llm(*responses: AIMessage):
    """Create a mock LLM that returns *responses* in order."""
    mock_llm = MagicMock()
    mock_llm.invoke.side_effect = list(responses)
    return mock_llm


def _sent_messages(mock_llm, call_index: int):
    return mock_llm.invoke.call_args_list[call_index][0][0]


@pytest.fixture
def ctx(session_factory, booking_service):
    return TurnContext(
        session_factory=session_factory,
        booking=booking_service,
        language="en",
        clinic=ClinicData(
            today=date(2025, 3, 7),
            services=["General Checkup", "Teeth Cleaning"],
            doctors=[{"id": 1, "name": "Sarah de Vries", "specialty": "General Dentistry"}],
            working_days=[0, 1, 2, 3, 4],
        ),
        now_fn=lambda: FROZEN,
    )


def _run(mock_llm, ctx, text: str = "Hi"):
    graph = create_dental_agent(llm=mock_llm)
    return run_agent_turn(graph, [HumanMessage(content=text)], ctx, "You are a receptionist.")


# ── Routing ──────────────────────────────────────────────────────────


class TestRouting:
    def test_plain_answer_ends(self):
        state: AgentState = {"messages": [AIMessage(content="Hello")], "iterations": 1}
        assert route_after_chatbot(state) == END

    def test_tool_calls_go_to_tools(self):
        state: AgentState = {"messages": [_tool_turn(_call("find_emergency_slot", {}))], "iterations": 1}
        assert route_after_chatbot(state) == "tools"

    def test_cap_goes_to_exhausted(self):
        state: AgentState = {
            "messages": [_tool_turn(_call("find_emergency_slot", {}))],
            "iterations": MAX_TOOL_ITERATIONS,
        }
        assert route_after_chatbot(state) == "exhausted"

    def test_terminal_action_goes_to_confirm(self):
        assert route_after_tools({"messages": [], "terminal_action": "cancel_appointment"}) == "confirm"
        assert route_after_tools({"messages": [], "terminal_action": None}) == "chatbot"

    def test_message_text_joins_text_blocks(self):
        message = AIMessage(content=[{"type": "text", "text": "Hello "}, {"type": "text", "text": "there"}])
        assert message_text(message) == "Hello there"


# ── Full turns ───────────────────────────────────────────────────────


class TestAgentTurns:
    def test_plain_answer(self, ctx):
        llm = _make_mock_llm(AIMessage(content="Hello! How can I help?"))
        outcome = _run(llm, ctx)
        assert outcome.text == "Hello! How can I help?"
        assert outcome.booking is None
        assert outcome.iterations == 1

    def test_system_prompt_is_sent_first(self, ctx):
        llm = _make_mock_llm(AIMessage(content="Hello"))
        _run(llm, ctx)
        sent = _sent_messages(llm, 0)
        assert sent[0].content == "You are a receptionist."
        assert sent[-1].content == "Hi"

    def test_non_terminal_tool_loops_back(self, ctx):
        llm = _make_mock_llm(
            _tool_turn(_call("check_availability", {"doctor_id": 1, "date": "2025-03-10"})),
            AIMessage(content="Dr. de Vries is free at 09:00."),
        )
        outcome = _run(llm, ctx, "Is Sarah free on Monday?")

        assert outcome.text == "Dr. de Vries is free at 09:00."
        assert outcome.last_tool == "check_availability"
        tool_message = _sent_messages(llm, 1)[-1]
        assert isinstance(tool_message, ToolMessage)
        payload = json.loads(tool_message.content)
        assert payload["success"] is True
        assert payload["available_slots"][0] == "09:00"

    def test_terminal_tool_confirms_and_skips_the_rest(self, ctx, session_factory):
        llm = _make_mock_llm(
            _tool_turn(
                _call("book_appointment", BOOKING_ARGS, "call_1"),
                _call("check_availability", {"doctor_id": 1, "date": "2025-03-11"}, "call_2"),
            ),
            AIMessage(content="You're booked for Monday at 10:00."),
        )
        outcome = _run(llm, ctx, "Yes, book it")

        assert llm.invoke.call_count == 2
        assert outcome.terminal_action == "book_appointment"
        assert outcome.action_ok
        assert outcome.booking["reference_code"].startswith("APT-")
        assert outcome.text == "You're booked for Monday at 10:00."

        results = [m for m in _sent_messages(llm, 1) if isinstance(m, ToolMessage)]
        assert [m.tool_call_id for m in results] == ["call_1", "call_2"]
        assert json.loads(results[1].content)["error_code"] == "SKIPPED"

    def test_terminal_failure_still_ends_the_turn(self, ctx):
        llm = _make_mock_llm(
            _tool_turn(_call("book_appointment", {**BOOKING_ARGS, "patient_name": "test"})),
            AIMessage(content="Could you tell me your full name?"),
        )
        outcome = _run(llm, ctx)
        assert outcome.terminal_action == "book_appointment"
        assert not outcome.action_ok
        assert outcome.booking is None
        assert llm.invoke.call_count == 2

    def test_empty_confirmation_uses_template(self, ctx):
        llm = _make_mock_llm(
            _tool_turn(_call("book_appointment", BOOKING_ARGS)),
            AIMessage(content=""),
        )
        outcome = _run(llm, ctx)
        assert outcome.text.startswith("All done. Your reference number is APT-")

    def test_failed_confirmation_call_uses_template(self, ctx):
        llm = MagicMock()
        llm.invoke.side_effect = [_tool_turn(_call("book_appointment", BOOKING_ARGS)), RuntimeError("overloaded")]
        outcome = _run(llm, ctx)
        assert "reference number" in outcome.text

    def test_malformed_arguments_become_error_results(self, ctx):
        bad = AIMessage(
            content="",
            invalid_tool_calls=[{
                "name": "book_appointment", "args": "{not json", "id": "call_bad", "error": "bad json",
            }],
        )
        llm = _make_mock_llm(bad, AIMessage(content="Let me try that again."))
        outcome = _run(llm, ctx)

        assert outcome.text == "Let me try that again."
        tool_message = _sent_messages(llm, 1)[-1]
        assert tool_message.tool_call_id == "call_bad"
        assert json.loads(tool_message.content)["error_code"] == "TOOL_EXECUTION_FAILED"

    def test_unknown_tool(self, ctx):
        llm = _make_mock_llm(
            _tool_turn(_call("teleport_patient", {})),
            AIMessage(content="Sorry, I can't do that."),
        )
        _run(llm, ctx)
        tool_message = _sent_messages(llm, 1)[-1]
        assert tool_message.status == "error"
        assert "Unknown tool" in json.loads(tool_message.content)["error"]

    def test_quick_reply_suggestion_is_kept(self, ctx):
        llm = _make_mock_llm(
            _tool_turn(_call("suggest_quick_replies", {"category": "yes_no"})),
            AIMessage(content="Shall I book it?"),
        )
        outcome = _run(llm, ctx)
        assert [b["label"] for b in outcome.suggested_replies] == ["Yes, confirm", "No, change something"]

    def test_iteration_cap_apologises(self, ctx):
        llm = MagicMock()
        llm.invoke.side_effect = lambda messages: _tool_turn(_call("find_emergency_slot", {}))
        outcome = _run(llm, ctx)

        assert llm.invoke.call_count == MAX_TOOL_ITERATIONS
        assert "sorry" in outcome.text.lower()
        assert outcome.booking is None
