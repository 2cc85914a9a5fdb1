"""LangGraph tool-dispatch loop for the dental booking assistant.

Architecture:
  One conversation turn is a StateGraph with four nodes:

    1. **chatbot**    the tool-calling model; every visit is one round-trip
    2. **tools**      runs the requested tool calls sequentially, in order
    3. **confirm**    one last model call after a terminal action
    4. **exhausted**  closes the turn with an apology at the iteration cap

  Routing:
    chatbot → (no tool calls?)           → END
    chatbot → (tool calls, under cap?)   → tools
    chatbot → (tool calls, cap reached?) → exhausted → END
    tools   → (terminal tool executed?)  → confirm → END
    tools   → (otherwise)                → chatbot

  Terminal tools (booking, walk-in, cancel, reschedule) end the turn even
  when they fail; calls queued after one in the same batch are answered
  with a "skipped" result and never run.

  Memory:
    The graph is compiled without a checkpointer.  The chat engine replays
    the stored conversation as ``messages`` at the start of every turn, and
    per-turn collaborators travel in ``config["configurable"]``.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Annotated, Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AnyMessage, BaseMessage, SystemMessage, ToolMessage
from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from dental_agent.config import ANTHROPIC_API_KEY, MAX_TOOL_ITERATIONS, MODEL_NAME
from dental_agent.prompts import get_templates
from dental_agent.services.metrics import metrics
from dental_agent.tools.scheduling import (
    ALL_TOOLS,
    TurnContext,
    execute_tool,
    is_terminal,
    turn_config,
    turn_context,
)

logger = logging.getLogger(__name__)

QUICK_REPLY_TOOL = "suggest_quick_replies"
BOOKING_TOOLS = frozenset({"book_appointment", "book_walk_in", "reschedule_appointment"})


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict, total=False):
    """The state that flows through the graph for one turn.

    ``messages`` uses the ``add_messages`` reducer; every other key is
    overwritten by whichever node returns it.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    iterations: int
    terminal_action: str | None
    action_result: dict[str, Any] | None
    action_ok: bool
    suggested_replies: list[dict[str, str]] | None
    last_tool: str | None
    last_tool_ok: bool | None


@dataclass
class TurnOutcome:
    text: str
    booking: dict[str, Any] | None = None
    terminal_action: str | None = None
    action_ok: bool = False
    suggested_replies: list[dict[str, str]] | None = None
    last_tool: str | None = None
    iterations: int = 0


# ── Helpers ──────────────────────────────────────────────────────────


def message_text(message: BaseMessage) -> str:
    """Plain text of a message whose content may be a list of blocks."""
    content = message.content
    if isinstance(content, str):
        return content.strip()
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts).strip()


def _pending_calls(message: BaseMessage) -> list[dict[str, Any]]:
    calls = list(getattr(message, "tool_calls", None) or [])
    calls += list(getattr(message, "invalid_tool_calls", None) or [])
    return calls


def _tool_message(payload: dict[str, Any], call: dict[str, Any], ok: bool) -> ToolMessage:
    return ToolMessage(
        content=json.dumps(payload, default=str),
        tool_call_id=call.get("id") or "",
        name=call.get("name") or "",
        status="success" if ok else "error",
    )


def _system(config: RunnableConfig) -> SystemMessage:
    return SystemMessage(content=config["configurable"]["system_prompt"])


# ── LLM builder ─────────────────────────────────────────────────────


def _build_llm():
    """Build the tool-calling model with every scheduling tool bound."""
    llm = ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.1,
        max_tokens=1024,
    )
    return llm.bind_tools(ALL_TOOLS)


def _invoke(llm, messages: list[BaseMessage], operation: str) -> AIMessage:
    t0 = time.perf_counter()
    with metrics.track("anthropic", operation):
        response = llm.invoke(messages)
    logger.debug("%s responded in %.0fms", operation, (time.perf_counter() - t0) * 1000)
    return response


# ── Nodes ────────────────────────────────────────────────────────────


def _make_chatbot_node(llm):
    def chatbot_node(state: AgentState, config: RunnableConfig) -> dict:
        iterations = state.get("iterations", 0) + 1
        logger.debug("chatbot round-trip %d/%d", iterations, MAX_TOOL_ITERATIONS)
        response = _invoke(llm, [_system(config)] + state["messages"], "llm_invoke")
        return {"messages": [response], "iterations": iterations}

    return chatbot_node


def tools_node(state: AgentState, config: RunnableConfig) -> dict:
    """Execute the last message's tool calls one by one, in received order."""
    outputs: list[ToolMessage] = []
    updates: dict[str, Any] = {}
    terminal: str | None = None

    for call in _pending_calls(state["messages"][-1]):
        name = call.get("name") or ""
        if terminal is not None:
            payload = {
                "success": False,
                "error_code": "SKIPPED",
                "error": f"Not executed: {terminal} already completed this turn.",
            }
            outputs.append(_tool_message(payload, call, ok=False))
            continue

        payload, ok = execute_tool(name, call.get("args"), config)
        outputs.append(_tool_message(payload, call, ok))
        updates["last_tool"] = name
        updates["last_tool_ok"] = ok

        if name == QUICK_REPLY_TOOL and ok:
            updates["suggested_replies"] = payload.get("buttons") or None
        if is_terminal(name):
            terminal = name
            updates.update(terminal_action=name, action_result=payload, action_ok=ok)
            logger.info("Terminal tool %s finished (success=%s)", name, ok)

    return {"messages": outputs, **updates}


def _make_confirm_node(llm):
    def confirm_node(state: AgentState, config: RunnableConfig) -> dict:
        """One more model call to phrase the outcome; tool calls are dropped."""
        ctx = turn_context(config)
        t = get_templates(ctx.language)
        try:
            response = _invoke(llm, [_system(config)] + state["messages"], "llm_confirm")
            text = message_text(response)
        except Exception:
            logger.exception("Confirmation call failed; using template")
            text = ""
        if not text:
            result = state.get("action_result") or {}
            if state.get("action_ok"):
                text = t["confirm_fallback_success"].format(reference_code=result.get("reference_code", ""))
            else:
                text = t["confirm_fallback_failure"].format(error=result.get("error", ""))
        return {"messages": [AIMessage(content=text)], "iterations": state.get("iterations", 0) + 1}

    return confirm_node


def exhausted_node(state: AgentState, config: RunnableConfig) -> dict:
    """Answer the dangling tool calls, then apologise."""
    ctx = turn_context(config)
    logger.warning("Tool loop hit the %d round-trip cap", MAX_TOOL_ITERATIONS)
    outputs: list[BaseMessage] = [
        _tool_message(
            {"success": False, "error_code": "ITERATION_LIMIT", "error": "Tool call limit reached."},
            call, ok=False,
        )
        for call in _pending_calls(state["messages"][-1])
    ]
    outputs.append(AIMessage(content=get_templates(ctx.language)["apology"]))
    return {"messages": outputs}


# ── Conditional edges ────────────────────────────────────────────────


def route_after_chatbot(state: AgentState) -> str:
    if not _pending_calls(state["messages"][-1]):
        return END
    if state.get("iterations", 0) >= MAX_TOOL_ITERATIONS:
        return "exhausted"
    return "tools"


def route_after_tools(state: AgentState) -> str:
    return "confirm" if state.get("terminal_action") else "chatbot"


# ── Graph assembly ───────────────────────────────────────────────────


def create_dental_agent(llm=None):
    """Build and compile the tool-dispatch graph.

    Invoke it through ``run_agent_turn`` rather than directly.
    """
    llm = llm or _build_llm()
    graph = StateGraph(AgentState)

    graph.add_node("chatbot", _make_chatbot_node(llm))
    graph.add_node("tools", tools_node)
    graph.add_node("confirm", _make_confirm_node(llm))
    graph.add_node("exhausted", exhausted_node)

    graph.set_entry_point("chatbot")
    graph.add_conditional_edges(
        "chatbot", route_after_chatbot,
        {"tools": "tools", "exhausted": "exhausted", END: END},
    )
    graph.add_conditional_edges(
        "tools", route_after_tools, {"chatbot": "chatbot", "confirm": "confirm"},
    )
    graph.add_edge("confirm", END)
    graph.add_edge("exhausted", END)

    compiled = graph.compile()
    logger.debug("Dental agent compiled (model=%s, max_iterations=%d)", MODEL_NAME, MAX_TOOL_ITERATIONS)
    return compiled


def run_agent_turn(
    graph,
    history: list[BaseMessage],
    ctx: TurnContext,
    system_prompt: str,
) -> TurnOutcome:
    """Run one turn over *history* (which ends with the patient's message)."""
    state = graph.invoke(
        {
            "messages": history,
            "iterations": 0,
            "terminal_action": None,
            "action_result": None,
            "action_ok": False,
            "suggested_replies": None,
            "last_tool": None,
            "last_tool_ok": None,
        },
        config={
            **turn_config(ctx, system_prompt=system_prompt),
            "recursion_limit": 2 * MAX_TOOL_ITERATIONS + 5,
        },
    )

    new_messages = state["messages"][len(history):]
    text = ""
    for message in reversed(new_messages):
        if isinstance(message, AIMessage):
            text = message_text(message)
            if text:
                break
    if not text:
        text = get_templates(ctx.language)["apology"]

    action = state.get("terminal_action")
    booking = None
    if action in BOOKING_TOOLS and state.get("action_ok"):
        booking = state.get("action_result")
    return TurnOutcome(
        text=text,
        booking=booking,
        terminal_action=action,
        action_ok=bool(state.get("action_ok")),
        suggested_replies=state.get("suggested_replies"),
        last_tool=state.get("last_tool"),
        iterations=state.get("iterations", 0),
    )
