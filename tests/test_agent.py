"""Tests for the agent graph and the turn controller.

Covers:
  - The tool/end routing decision and the tool-round limit
  - The agent node (system prompt handling, error propagation)
  - Reply-text extraction
  - Full turns through the compiled graph with a mocked model and store
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from src.agent import (
    AgentState,
    TurnController,
    TurnError,
    _make_agent_node,
    create_dental_agent,
    extract_reply_text,
    run_turn,
    should_continue,
    tool_limit_node,
)
from src.prompts import EMPTY_REPLY, FALLBACK_REPLY, TOOL_LIMIT_REPLY
from src.services.appointments import AppointmentStoreError
from src.services.sessions import ConversationStore

BOOKING_ARGS = {
    "patient_name": "Ana Pérez",
    "identification_number": "0701234567",
    "phone_number": "0991234567",
    "reason": "Limpieza",
    "date": "2025-10-25T10:00:00",
}


# ── Helpers ──────────────────────────────────────────────────────────


def _tool_call_message(*calls: tuple[str, dict, str]) -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[{"name": name, "args": args, "id": call_id} for name, args, call_id in calls],
    )


def _make_mock_llm(*responses):
    """Create a mock bound LLM that returns *responses* in order."""
    mock_llm = MagicMock()
    mock_llm.invoke.side_effect = list(responses)
    return mock_llm


def _controller(mock_llm, *, max_tool_rounds: int = 8) -> TurnController:
    with patch("src.agent._build_llm", return_value=mock_llm):
        agent = create_dental_agent(max_tool_rounds=max_tool_rounds)
    return TurnController(agent, ConversationStore(), max_tool_rounds=max_tool_rounds)


# ── TestShouldContinue ───────────────────────────────────────────────


class TestShouldContinue:
    """Verify the tool-routing edge function."""

    def test_message_with_tool_calls_routes_to_tools(self):
        state: AgentState = {
            "messages": [
                HumanMessage(content="¿Hay espacio el sábado?"),
                _tool_call_message(("find_appointments_by_day", {"date": "2025-10-25"}, "1")),
            ],
        }
        assert should_continue(state) == "tools"

    def test_message_without_tool_calls_routes_to_end(self):
        state: AgentState = {"messages": [AIMessage(content="La limpieza cuesta $45.")]}
        assert should_continue(state) == "__end__"

    def test_message_with_empty_tool_calls_routes_to_end(self):
        ai_msg = AIMessage(content="Listo!")
        ai_msg.tool_calls = []
        assert should_continue({"messages": [ai_msg]}) == "__end__"

    def test_no_messages_routes_to_end(self):
        assert should_continue({"messages": []}) == "__end__"

    def test_exceeding_round_limit_routes_to_tool_limit(self):
        call = ("find_appointments_by_day", {"date": "2025-10-25"}, "x")
        messages = [HumanMessage(content="hola")]
        for i in range(3):
            messages.append(_tool_call_message(call))
            messages.append(ToolMessage(content="ok", tool_call_id="x"))
        messages.append(_tool_call_message(call))
        assert should_continue({"messages": messages}, max_tool_rounds=3) == "tool_limit"
        assert should_continue({"messages": messages}, max_tool_rounds=4) == "tools"

    def test_rounds_from_previous_turns_do_not_count(self):
        call = ("find_appointments_by_day", {"date": "2025-10-25"}, "x")
        messages = [
            HumanMessage(content="primer turno"),
            _tool_call_message(call),
            ToolMessage(content="ok", tool_call_id="x"),
            AIMessage(content="listo"),
            HumanMessage(content="segundo turno"),
            _tool_call_message(call),
        ]
        assert should_continue({"messages": messages}, max_tool_rounds=1) == "tools"


# ── TestAgentNode ────────────────────────────────────────────────────


class TestAgentNode:
    @patch("src.agent._build_llm")
    def test_prepends_system_prompt_without_storing_it(self, mock_build):
        reply = AIMessage(content="¡Hola! Soy el Dr. Jimmy.")
        mock_build.return_value = _make_mock_llm(reply)
        node = _make_agent_node()

        result = node({"messages": [HumanMessage(content="Hola")]})

        sent = mock_build.return_value.invoke.call_args.args[0]
        assert isinstance(sent[0], SystemMessage)
        assert "Clínica Dental Sonrisas" in sent[0].content
        assert sent[1].content == "Hola"
        assert result == {"messages": [reply]}

    @patch("src.agent._build_llm")
    def test_raises_on_llm_error(self, mock_build):
        mock_llm = MagicMock()
        mock_llm.invoke.side_effect = RuntimeError("LLM down")
        mock_build.return_value = mock_llm
        node = _make_agent_node()

        with pytest.raises(RuntimeError, match="LLM down"):
            node({"messages": [HumanMessage(content="Hola")]})


# ── TestToolLimitNode ────────────────────────────────────────────────


class TestToolLimitNode:
    def test_answers_every_pending_call_then_replies(self):
        pending = _tool_call_message(
            ("cancel_appointment", {"appointment_id": "a"}, "c1"),
            ("cancel_appointment", {"appointment_id": "b"}, "c2"),
        )
        result = tool_limit_node({"messages": [HumanMessage(content="x"), pending]})

        *tool_messages, final = result["messages"]
        assert [m.tool_call_id for m in tool_messages] == ["c1", "c2"]
        assert all(m.status == "error" for m in tool_messages)
        assert isinstance(final, AIMessage)
        assert final.content == TOOL_LIMIT_REPLY


# ── TestExtractReplyText ─────────────────────────────────────────────


class TestExtractReplyText:
    def test_plain_string_content(self):
        assert extract_reply_text(AIMessage(content="Hola")) == "Hola"

    def test_fragments_are_joined_with_spaces_and_trimmed(self):
        msg = AIMessage(content=["Tu cita", {"type": "text", "text": "está confirmada. "}])
        assert extract_reply_text(msg) == "Tu cita está confirmada."

    def test_non_text_blocks_are_skipped(self):
        msg = AIMessage(content=[
            {"type": "text", "text": "Revisando"},
            {"type": "tool_use", "id": "t1", "name": "x", "input": {}},
        ])
        assert extract_reply_text(msg) == "Revisando"

    def test_empty_content(self):
        assert extract_reply_text(AIMessage(content="")) == ""


# ── TestRunTurn ──────────────────────────────────────────────────────


class TestRunTurn:
    def test_missing_result_raises(self):
        agent = MagicMock()
        agent.invoke.return_value = None
        with pytest.raises(TurnError):
            run_turn(agent, [], "Hola")

    def test_result_without_messages_raises(self):
        agent = MagicMock()
        agent.invoke.return_value = {"messages": []}
        with pytest.raises(TurnError):
            run_turn(agent, [], "Hola")

    def test_result_ending_on_tool_message_raises(self):
        agent = MagicMock()
        agent.invoke.return_value = {
            "messages": [HumanMessage(content="Hola"), ToolMessage(content="?", tool_call_id="1")],
        }
        with pytest.raises(TurnError):
            run_turn(agent, [], "Hola")

    def test_returns_only_the_new_messages(self):
        history = [HumanMessage(content="antes"), AIMessage(content="ok")]
        final = AIMessage(content="respuesta")
        agent = MagicMock()
        agent.invoke.return_value = {
            "messages": history + [HumanMessage(content="ahora"), final],
        }

        new_messages, reply = run_turn(agent, history, "ahora", max_tool_rounds=3)

        assert [m.content for m in new_messages] == ["ahora", "respuesta"]
        assert reply == "respuesta"
        inputs = agent.invoke.call_args.args[0]
        assert [m.content for m in inputs["messages"]] == ["antes", "ok", "ahora"]
        assert agent.invoke.call_args.kwargs["config"]["recursion_limit"] == 11


# ── TestTurnController (graph end to end) ────────────────────────────


class TestTurnController:
    def test_direct_answer_takes_one_model_call(self, mock_store):
        mock_llm = _make_mock_llm(AIMessage(content="La limpieza cuesta $45 USD."))
        controller = _controller(mock_llm)

        reply = controller.handle("s1", "¿Cuánto cuesta la limpieza?")

        assert reply == "La limpieza cuesta $45 USD."
        assert mock_llm.invoke.call_count == 1
        history = controller.store.get("s1")
        assert len(history) == 2
        assert isinstance(history[0], HumanMessage)
        assert isinstance(history[1], AIMessage)

    def test_booking_stores_full_tool_trace(self, mock_store):
        mock_store.create.return_value = "CITA123"
        mock_llm = _make_mock_llm(
            _tool_call_message(("create_appointment", BOOKING_ARGS, "call_1")),
            AIMessage(content="Tu cita quedó registrada con el ID CITA123."),
        )
        controller = _controller(mock_llm)

        reply = controller.handle("s1", "Quiero una cita de limpieza el 25/10 a las 10:00")

        assert "CITA123" in reply
        history = controller.store.get("s1")
        assert [type(m) for m in history] == [HumanMessage, AIMessage, ToolMessage, AIMessage]
        tool_result = history[2]
        assert tool_result.tool_call_id == "call_1"
        assert "CITA123" in tool_result.content
        mock_store.create.assert_called_once()

    def test_each_tool_call_gets_one_correlated_result(self, mock_store):
        mock_store.find_by_day.return_value = []
        mock_store.find_by_identification.return_value = []
        mock_llm = _make_mock_llm(
            _tool_call_message(
                ("find_appointments_by_day", {"date": "2025-10-25"}, "a"),
                ("find_appointments_by_identification", {"identification_number": "07"}, "b"),
            ),
            AIMessage(content="El sábado está libre y no tienes citas."),
        )
        controller = _controller(mock_llm)

        controller.handle("s1", "¿Estoy agendado? ¿Y el sábado?")

        second_call_messages = mock_llm.invoke.call_args_list[1].args[0]
        tool_results = [m for m in second_call_messages if isinstance(m, ToolMessage)]
        assert [m.tool_call_id for m in tool_results] == ["a", "b"]
        assert isinstance(second_call_messages[-1], ToolMessage)

    def test_storage_failure_is_fed_back_to_the_model(self, mock_store):
        mock_store.create.side_effect = AppointmentStoreError("The appointment could not be saved.")
        mock_llm = _make_mock_llm(
            _tool_call_message(("create_appointment", BOOKING_ARGS, "call_1")),
            AIMessage(content="Lo siento, no pude guardar tu cita."),
        )
        controller = _controller(mock_llm)

        reply = controller.handle("s1", "Agéndame")

        assert reply == "Lo siento, no pude guardar tu cita."
        tool_result = controller.store.get("s1")[2]
        assert "could not be saved" in tool_result.content

    def test_invalid_arguments_become_error_results(self, mock_store):
        bad_args = {k: v for k, v in BOOKING_ARGS.items() if k != "phone_number"}
        mock_llm = _make_mock_llm(
            _tool_call_message(("create_appointment", bad_args, "call_1")),
            AIMessage(content="¿Me das tu número de teléfono?"),
        )
        controller = _controller(mock_llm)

        reply = controller.handle("s1", "Agéndame")

        assert reply == "¿Me das tu número de teléfono?"
        tool_result = controller.store.get("s1")[2]
        assert isinstance(tool_result, ToolMessage)
        assert tool_result.status == "error"
        mock_store.create.assert_not_called()

    def test_unknown_tool_becomes_error_result(self, mock_store):
        mock_llm = _make_mock_llm(
            _tool_call_message(("delete_everything", {}, "call_1")),
            AIMessage(content="No puedo hacer eso."),
        )
        controller = _controller(mock_llm)

        assert controller.handle("s1", "Borra todo") == "No puedo hacer eso."
        tool_result = controller.store.get("s1")[2]
        assert tool_result.status == "error"

    def test_model_failure_returns_apology_and_commits_nothing(self, mock_store):
        mock_llm = MagicMock()
        mock_llm.invoke.side_effect = RuntimeError("LLM exploded")
        controller = _controller(mock_llm)

        assert controller.handle("s1", "Hola") == FALLBACK_REPLY
        assert controller.store.get("s1") == []

    def test_failed_turn_keeps_previous_history(self, mock_store):
        mock_llm = _make_mock_llm(AIMessage(content="¡Hola!"), RuntimeError("LLM exploded"))
        controller = _controller(mock_llm)

        controller.handle("s1", "Hola")
        assert controller.handle("s1", "¿Sigues ahí?") == FALLBACK_REPLY
        assert [m.content for m in controller.store.get("s1")] == ["Hola", "¡Hola!"]

    def test_history_grows_across_turns(self, mock_store):
        mock_llm = _make_mock_llm(AIMessage(content="¡Hola!"), AIMessage(content="Con gusto."))
        controller = _controller(mock_llm)

        controller.handle("s1", "Hola")
        first = controller.store.get("s1")
        controller.handle("s1", "Gracias")
        second = controller.store.get("s1")

        assert len(second) == 4
        assert second[:2] == first
        # The second model call sees the first turn plus the new message
        sent = mock_llm.invoke.call_args_list[1].args[0]
        assert [m.content for m in sent[1:]] == ["Hola", "¡Hola!", "Gracias"]

    def test_round_limit_forces_a_final_reply(self, mock_store):
        mock_store.find_by_day.return_value = []
        looping = [
            _tool_call_message(("find_appointments_by_day", {"date": "2025-10-25"}, f"c{i}"))
            for i in range(3)
        ]
        mock_llm = _make_mock_llm(*looping)
        controller = _controller(mock_llm, max_tool_rounds=2)

        reply = controller.handle("s1", "¿Qué horas hay?")

        assert reply == TOOL_LIMIT_REPLY
        assert mock_llm.invoke.call_count == 3
        assert mock_store.find_by_day.call_count == 2
        history = controller.store.get("s1")
        assert isinstance(history[-1], AIMessage)
        assert history[-2].tool_call_id == "c2"

    def test_empty_reply_is_replaced(self, mock_store):
        controller = _controller(_make_mock_llm(AIMessage(content="")))
        assert controller.handle("s1", "...") == EMPTY_REPLY
        assert len(controller.store.get("s1")) == 2

    def test_malformed_agent_result_commits_nothing(self):
        agent = MagicMock()
        agent.invoke.return_value = {}
        controller = TurnController(agent, ConversationStore())

        assert controller.handle("s1", "Hola") == FALLBACK_REPLY
        assert controller.store.has("s1") is False

    def test_failed_turns_on_new_sessions_leave_no_locks_behind(self):
        agent = MagicMock()
        agent.invoke.side_effect = RuntimeError("LLM exploded")
        controller = TurnController(agent, ConversationStore(max_sessions=10))

        for i in range(50):
            assert controller.handle(f"s{i}", "Hola") == FALLBACK_REPLY

        assert controller.store.session_count == 0
        assert controller.store.lock_count == 0
