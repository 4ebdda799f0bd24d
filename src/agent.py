"""LangGraph-based agent for the Sonrisas dental clinic.

Architecture:
  The agent is a LangGraph StateGraph with three nodes:

    1. **agent**: Claude with the five appointment tools bound
    2. **tools**: executes every tool call in the last AI message
    3. **tool_limit**: ends a turn that keeps asking for tools past
                         ``MAX_TOOL_ROUNDS``

  Routing:
    agent → (has tool calls?) → tools → agent (loop)
          → (too many rounds?) → tool_limit → END
          → (no tool calls?)   → END

  Memory:
    The graph itself is stateless.  ``TurnController`` reads the session
    history from the ConversationStore, runs one turn, and commits the new
    messages (user message, every tool call and tool result, final reply)
    only when the turn succeeds.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Annotated, Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import (
    AIMessage,
    AnyMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langgraph.graph import END, StateGraph
from langgraph.prebuilt import ToolNode
from typing_extensions import TypedDict

from src.config import (
    ANTHROPIC_API_KEY,
    MAX_TOOL_ROUNDS,
    MODEL_MAX_TOKENS,
    MODEL_NAME,
    MODEL_TEMPERATURE,
)
from src.prompts import EMPTY_REPLY, FALLBACK_REPLY, TOOL_LIMIT_REPLY, get_system_prompt
from src.services.metrics import metrics
from src.services.sessions import ConversationStore, merge_messages
from src.tools.appointments import ALL_TOOLS

logger = logging.getLogger(__name__)


class TurnError(Exception):
    """Raised when the graph result has no usable assistant reply."""


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """The state that flows through the graph.

    ``messages`` is reduced with ``merge_messages``: every node's output
    batch is appended, an empty batch changes nothing.
    """

    messages: Annotated[list[AnyMessage], merge_messages]


# ── LLM builder ─────────────────────────────────────────────────────


def _build_llm():
    """Build the Claude chat model with the appointment tools bound."""
    llm = ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=MODEL_TEMPERATURE,
        max_tokens=MODEL_MAX_TOKENS,
    )
    return llm.bind_tools(ALL_TOOLS)


# ── Node: agent ─────────────────────────────────────────────────────


def _make_agent_node():
    """Create the node that invokes the model on the current history.

    The bound model is captured in the closure so that repeated node
    invocations (agent -> tools -> agent -> ...) share one client.
    The system prompt is prepended on every call and never stored.
    """
    llm_with_tools = _build_llm()

    def agent_node(state: AgentState) -> dict:
        messages = state.get("messages") or []
        system = SystemMessage(content=get_system_prompt())
        logger.debug("agent node invoked with %d message(s) + system", len(messages))
        with metrics.track("anthropic", "llm_invoke"):
            response = llm_with_tools.invoke([system] + messages)
        if getattr(response, "tool_calls", None):
            logger.debug("model requested %d tool call(s)", len(response.tool_calls))
        return {"messages": [response]}

    return agent_node


# ── Node: tool_limit ────────────────────────────────────────────────


def tool_limit_node(state: AgentState) -> dict:
    """Close a turn that exceeded the tool-round limit.

    Each pending tool call gets a "skipped" result so the stored history
    stays well-formed, followed by a fixed assistant reply.
    """
    last = state["messages"][-1]
    skipped = [
        ToolMessage(
            content="Skipped: the tool-call limit for this turn was reached.",
            tool_call_id=call["id"],
            name=call["name"],
            status="error",
        )
        for call in getattr(last, "tool_calls", None) or []
    ]
    return {"messages": skipped + [AIMessage(content=TOOL_LIMIT_REPLY)]}


# ── Conditional edge ────────────────────────────────────────────────


def _tool_rounds_this_turn(messages: Sequence[BaseMessage]) -> int:
    """Count AI messages with tool calls since the latest user message."""
    rounds = 0
    for msg in reversed(messages):
        if isinstance(msg, HumanMessage):
            break
        if isinstance(msg, AIMessage) and msg.tool_calls:
            rounds += 1
    return rounds


def should_continue(state: AgentState, max_tool_rounds: int = MAX_TOOL_ROUNDS) -> str:
    """Route to tools if the last message has tool calls, else end the turn."""
    messages = state.get("messages") or []
    if not messages:
        logger.error("No messages in state; ending the turn")
        return END

    last_message = messages[-1]
    tool_calls = getattr(last_message, "tool_calls", None)
    if tool_calls:
        if _tool_rounds_this_turn(messages) > max_tool_rounds:
            logger.warning(
                "Tool-call round limit (%d) exceeded; forcing a final reply",
                max_tool_rounds,
            )
            return "tool_limit"
        logger.debug("Decision: run %d tool call(s)", len(tool_calls))
        return "tools"

    logger.debug("Decision: reply to the patient")
    return END


# ── Graph assembly ───────────────────────────────────────────────────


def create_dental_agent(max_tool_rounds: int = MAX_TOOL_ROUNDS):
    """Build and compile the dental assistant LangGraph agent.

    Returns a compiled graph that can be invoked with:
        graph.invoke({"messages": [*history, HumanMessage(content="...")]})
    """
    graph = StateGraph(AgentState)

    graph.add_node("agent", _make_agent_node())
    graph.add_node("tools", ToolNode(ALL_TOOLS, handle_tool_errors=True))
    graph.add_node("tool_limit", tool_limit_node)

    graph.set_entry_point("agent")

    def route(state: AgentState) -> str:
        return should_continue(state, max_tool_rounds)

    graph.add_conditional_edges(
        "agent",
        route,
        {"tools": "tools", "tool_limit": "tool_limit", END: END},
    )
    graph.add_edge("tools", "agent")
    graph.add_edge("tool_limit", END)

    compiled = graph.compile()
    logger.debug(
        "Dental agent compiled (model: %s, tools: %d, max tool rounds: %d)",
        MODEL_NAME, len(ALL_TOOLS), max_tool_rounds,
    )
    return compiled


# ── Turn execution ──────────────────────────────────────────────────


def extract_reply_text(message: BaseMessage) -> str:
    """Return the text of a terminal assistant message.

    List content (content blocks) is reduced to its text fragments,
    joined with single spaces and trimmed.
    """
    content = message.content
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for chunk in content:
            if isinstance(chunk, str):
                parts.append(chunk)
            elif isinstance(chunk, dict) and chunk.get("text"):
                parts.append(chunk["text"])
        return " ".join(parts).strip()
    return ""


def run_turn(
    agent,
    history: Sequence[AnyMessage],
    user_message: str,
    *,
    max_tool_rounds: int = MAX_TOOL_ROUNDS,
) -> tuple[list[AnyMessage], str]:
    """Run one user turn through *agent*.

    Returns the messages produced during the turn (the user message first)
    and the reply text.  Raises ``TurnError`` if the graph result is
    missing or does not end with an assistant message.
    """
    inputs = {"messages": merge_messages(history, [HumanMessage(content=user_message)])}
    # agent + (tools, agent) per round + the limit node, with some headroom
    config: dict[str, Any] = {"recursion_limit": 2 * max_tool_rounds + 5}
    result = agent.invoke(inputs, config=config)

    if not isinstance(result, dict):
        raise TurnError("The agent returned no result.")
    messages = result.get("messages")
    if not isinstance(messages, list) or len(messages) <= len(history):
        raise TurnError("The agent returned no new messages.")
    last_message = messages[-1]
    if not isinstance(last_message, AIMessage):
        raise TurnError(
            f"The turn ended on a {type(last_message).__name__}, not an assistant reply."
        )

    return messages[len(history):], extract_reply_text(last_message)


class TurnController:
    """Runs chat turns for sessions, committing history only on success."""

    def __init__(
        self,
        agent,
        store: ConversationStore,
        *,
        max_tool_rounds: int = MAX_TOOL_ROUNDS,
    ) -> None:
        self._agent = agent
        self._store = store
        self._max_tool_rounds = max_tool_rounds

    @property
    def store(self) -> ConversationStore:
        return self._store

    def handle(self, session_id: str, user_message: str) -> str:
        """Process *user_message* for *session_id* and return the reply text.

        Turns for the same session are serialized.  Any failure yields the
        generic apology and leaves the stored history untouched.
        """
        with self._store.session_lock(session_id):
            history = self._store.get(session_id)
            try:
                new_messages, reply = run_turn(
                    self._agent,
                    history,
                    user_message,
                    max_tool_rounds=self._max_tool_rounds,
                )
            except Exception:
                logger.exception("Turn failed for session %s", session_id)
                return FALLBACK_REPLY

            stored = self._store.append(session_id, new_messages)
            logger.info(
                "History updated: %d message(s) in session %s", len(stored), session_id,
            )

        return reply or EMPTY_REPLY
