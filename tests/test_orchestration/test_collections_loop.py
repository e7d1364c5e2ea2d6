"""
Tests for the bounded collections loop.

The model is scripted; the tool client is either mocked or the real
provider process in demo mode.
"""

import asyncio
import json
from typing import Optional
from unittest.mock import AsyncMock, Mock

import pytest

from arcollect.errors import (
    ModelError,
    RpcError,
    ToolExecutionError,
    TransportError,
)
from arcollect.orchestration.conversation import AssistantTurn, ToolCallIntent
from arcollect.orchestration.loop import (
    FALLBACK_ANSWER,
    CollectionsOrchestrator,
    OrchestratorState,
)
from arcollect.rpc import ToolClient
from arcollect.rpc.messages import ToolDescriptor


class ScriptedModel:
    """Returns canned turns in order; the last one repeats forever."""

    def __init__(self, turns: list[AssistantTurn]):
        self.turns = turns
        self.calls: list[list[dict]] = []

    async def complete(self, messages, tools=None, tracing_context=None, name=""):
        self.calls.append(messages)
        index = min(len(self.calls) - 1, len(self.turns) - 1)
        return self.turns[index]


def _call(call_id: str, name: str, arguments: Optional[dict] = None, raw: Optional[str] = None) -> ToolCallIntent:
    return ToolCallIntent(
        id=call_id,
        name=name,
        arguments=raw if raw is not None else json.dumps(arguments or {}),
    )


def _tools_turn(*calls: ToolCallIntent) -> AssistantTurn:
    return AssistantTurn(content=None, tool_calls=list(calls))


def _answer(text: str) -> AssistantTurn:
    return AssistantTurn(content=text)


@pytest.fixture
def tool_client() -> Mock:
    client = Mock(spec=ToolClient)
    client.list_tools = AsyncMock(
        return_value=[
            ToolDescriptor(
                name="get_ar_aging_data",
                description="aging",
                input_schema={"type": "object", "properties": {"customerId": {"type": "string"}}},
                annotations={"readOnlyHint": True},
            ),
            ToolDescriptor(
                name="update_customer_notes",
                description="notes",
                input_schema={"type": "object", "properties": {}},
                annotations={"readOnlyHint": False},
            ),
        ]
    )
    client.call_tool = AsyncMock(return_value={"ok": True})
    return client


def _tool_messages(orchestrator: CollectionsOrchestrator) -> list[dict]:
    return [m for m in orchestrator.conversation.to_openai() if m["role"] == "tool"]


class TestFinalAnswer:
    """Turns that end with a model answer."""

    @pytest.mark.asyncio
    async def test_answer_without_tools(self, tool_client):
        model = ScriptedModel([_answer("Nothing is overdue.")])
        orchestrator = CollectionsOrchestrator(tool_client, model)

        result = await orchestrator.run_turn("Anything overdue?")

        assert result.answer == "Nothing is overdue."
        assert result.iterations == 1
        assert not result.exhausted
        assert result.tool_calls == []
        assert orchestrator.state == OrchestratorState.DONE
        tool_client.call_tool.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tool_results_feed_next_model_call(self, tool_client):
        tool_client.call_tool.return_value = {"totalOutstanding": 125000}
        model = ScriptedModel(
            [
                _tools_turn(_call("call_1", "get_ar_aging_data", {"customerId": "CUST-001"})),
                _answer("CUST-001 owes 125,000."),
            ]
        )
        orchestrator = CollectionsOrchestrator(tool_client, model)

        result = await orchestrator.run_turn("How much does CUST-001 owe?")

        assert result.answer == "CUST-001 owes 125,000."
        assert result.iterations == 2
        tool_client.call_tool.assert_awaited_once_with(
            "get_ar_aging_data", {"customerId": "CUST-001"}
        )
        second_call = model.calls[1]
        assert second_call[-2]["tool_calls"][0]["id"] == "call_1"
        assert second_call[-1] == {
            "role": "tool",
            "content": json.dumps({"totalOutstanding": 125000}),
            "tool_call_id": "call_1",
        }
        assert result.tool_calls[0].ok

    @pytest.mark.asyncio
    async def test_calls_execute_in_order_received(self, tool_client):
        model = ScriptedModel(
            [
                _tools_turn(
                    _call("a", "get_ar_aging_data", {"customerId": "CUST-003"}),
                    _call("b", "get_ar_aging_data", {"customerId": "CUST-001"}),
                    _call("c", "get_ar_aging_data", {"customerId": "CUST-002"}),
                ),
                _answer("done"),
            ]
        )
        orchestrator = CollectionsOrchestrator(tool_client, model)

        await orchestrator.run_turn("Compare all three")

        awaited = [c.args[1]["customerId"] for c in tool_client.call_tool.await_args_list]
        assert awaited == ["CUST-003", "CUST-001", "CUST-002"]
        assert [m["tool_call_id"] for m in _tool_messages(orchestrator)] == ["a", "b", "c"]
        assert orchestrator.conversation.is_well_formed()

    @pytest.mark.asyncio
    async def test_catalog_fetched_once(self, tool_client):
        model = ScriptedModel([_answer("ok")])
        orchestrator = CollectionsOrchestrator(tool_client, model)

        await orchestrator.run_turn("one")
        await orchestrator.run_turn("two")

        tool_client.list_tools.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_on_tool_call_callback(self, tool_client):
        seen = []
        model = ScriptedModel(
            [_tools_turn(_call("a", "get_ar_aging_data", {"customerId": "CUST-001"})), _answer("ok")]
        )
        orchestrator = CollectionsOrchestrator(
            tool_client, model, on_tool_call=lambda name, args: seen.append((name, args))
        )

        await orchestrator.run_turn("go")

        assert seen == [("get_ar_aging_data", {"customerId": "CUST-001"})]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_abort_turn(self, tool_client):
        def callback(name, args):
            raise RuntimeError("progress sink unavailable")

        model = ScriptedModel(
            [_tools_turn(_call("a", "get_ar_aging_data", {"customerId": "CUST-001"})), _answer("ok")]
        )
        orchestrator = CollectionsOrchestrator(tool_client, model, on_tool_call=callback)

        result = await orchestrator.run_turn("go")

        assert result.answer == "ok"
        assert result.tool_calls[0].ok
        tool_client.call_tool.assert_awaited_once()
        assert orchestrator.conversation.is_well_formed()

    @pytest.mark.asyncio
    async def test_side_effects_come_from_catalog_annotations(self, tool_client):
        model = ScriptedModel(
            [
                _tools_turn(
                    _call("a", "get_ar_aging_data", {"customerId": "CUST-001"}),
                    _call("b", "update_customer_notes", {"customerId": "CUST-001", "note": "x"}),
                ),
                _answer("ok"),
            ]
        )
        orchestrator = CollectionsOrchestrator(tool_client, model)

        result = await orchestrator.run_turn("go")

        assert orchestrator.side_effecting_tools == {"update_customer_notes"}
        assert [r.side_effecting for r in result.tool_calls] == [False, True]


class TestRecoverableToolFailures:
    """Tool errors are fed back to the model and never retried."""

    @pytest.mark.asyncio
    async def test_tool_error_becomes_error_message(self, tool_client):
        tool_client.call_tool.side_effect = ToolExecutionError(
            "get_ar_aging_data", "Customer not found: CUST-999"
        )
        model = ScriptedModel(
            [_tools_turn(_call("a", "get_ar_aging_data", {"customerId": "CUST-999"})), _answer("Not found.")]
        )
        orchestrator = CollectionsOrchestrator(tool_client, model)

        result = await orchestrator.run_turn("Look up CUST-999")

        assert result.answer == "Not found."
        assert tool_client.call_tool.await_count == 1
        message = _tool_messages(orchestrator)[0]
        assert json.loads(message["content"]) == {"error": "Customer not found: CUST-999"}
        assert not result.tool_calls[0].ok

    @pytest.mark.asyncio
    async def test_rpc_error_becomes_error_message(self, tool_client):
        tool_client.call_tool.side_effect = RpcError(-32602, "tools/call requires a string 'name'")
        model = ScriptedModel([_tools_turn(_call("a", "get_ar_aging_data", {})), _answer("sorry")])
        orchestrator = CollectionsOrchestrator(tool_client, model)

        result = await orchestrator.run_turn("go")

        assert result.answer == "sorry"
        assert "error" in json.loads(_tool_messages(orchestrator)[0]["content"])

    @pytest.mark.asyncio
    async def test_malformed_arguments_not_executed(self, tool_client):
        model = ScriptedModel(
            [_tools_turn(_call("a", "get_ar_aging_data", raw='{"customerId": ')), _answer("retrying")]
        )
        orchestrator = CollectionsOrchestrator(tool_client, model)

        result = await orchestrator.run_turn("go")

        tool_client.call_tool.assert_not_awaited()
        assert "not valid JSON" in json.loads(_tool_messages(orchestrator)[0]["content"])["error"]
        assert not result.tool_calls[0].executed


class TestLoopBound:
    """The loop never exceeds max_iterations model calls."""

    @pytest.mark.asyncio
    async def test_always_tool_model_terminates_with_fallback(self, tool_client):
        model = ScriptedModel([_tools_turn(_call("a", "get_ar_aging_data", {"customerId": "CUST-001"}))])
        orchestrator = CollectionsOrchestrator(tool_client, model, max_iterations=15)

        result = await orchestrator.run_turn("Loop forever")

        assert result.exhausted
        assert len(model.calls) <= 15 + 1
        assert result.iterations == 15
        assert result.answer.startswith(FALLBACK_ANSWER)
        assert "No changes were made" in result.answer
        last = orchestrator.conversation.to_openai()[-1]
        assert last == {"role": "assistant", "content": result.answer}
        assert orchestrator.conversation.is_well_formed()

    @pytest.mark.asyncio
    async def test_fallback_reports_side_effects(self, tool_client):
        async def call_tool(name, arguments):
            if arguments.get("note") == "second":
                raise ToolExecutionError(name, "ERP write rejected")
            return {"success": True}

        tool_client.call_tool.side_effect = call_tool
        model = ScriptedModel(
            [
                _tools_turn(_call("a", "update_customer_notes", {"customerId": "CUST-001", "note": "first"})),
                _tools_turn(_call("b", "update_customer_notes", {"customerId": "CUST-002", "note": "second"})),
                _tools_turn(_call("c", "get_ar_aging_data", {"customerId": "CUST-001"})),
            ]
        )
        orchestrator = CollectionsOrchestrator(tool_client, model, max_iterations=3)

        result = await orchestrator.run_turn("Record notes")

        assert result.exhausted
        assert "update_customer_notes(customerId='CUST-001', note='first'): succeeded" in result.answer
        assert "update_customer_notes(customerId='CUST-002', note='second'): failed" in result.answer
        assert "get_ar_aging_data" not in result.answer

    def test_max_iterations_must_be_positive(self, tool_client):
        with pytest.raises(ValueError):
            CollectionsOrchestrator(tool_client, ScriptedModel([_answer("x")]), max_iterations=0)


class TestFatalFailures:
    """Session loss and model failure abort the turn."""

    @pytest.mark.asyncio
    async def test_session_loss_marks_outcomes_and_reraises(self, tool_client):
        tool_client.call_tool.side_effect = [
            {"ok": True},
            TransportError("Tool server closed its output stream (exit code: 1)", returncode=1),
        ]
        model = ScriptedModel(
            [
                _tools_turn(
                    _call("a", "get_ar_aging_data", {"customerId": "CUST-001"}),
                    _call("b", "update_customer_notes", {"customerId": "CUST-001", "note": "x"}),
                    _call("c", "get_ar_aging_data", {"customerId": "CUST-002"}),
                )
            ]
        )
        orchestrator = CollectionsOrchestrator(tool_client, model)

        with pytest.raises(TransportError):
            await orchestrator.run_turn("go")

        assert tool_client.call_tool.await_count == 2
        contents = [json.loads(m["content"]) for m in _tool_messages(orchestrator)]
        assert contents[0] == {"ok": True}
        assert "outcome is unknown" in contents[1]["error"]
        assert "Not executed" in contents[2]["error"]
        assert orchestrator.conversation.is_well_formed()
        assert orchestrator.state == OrchestratorState.AWAITING_USER_INPUT

    @pytest.mark.asyncio
    async def test_model_error_resets_state(self, tool_client):
        model = Mock()
        model.complete = AsyncMock(side_effect=ModelError("rate limited"))
        orchestrator = CollectionsOrchestrator(tool_client, model)

        with pytest.raises(ModelError):
            await orchestrator.run_turn("go")

        assert orchestrator.state == OrchestratorState.AWAITING_USER_INPUT

        model.complete = AsyncMock(return_value=_answer("recovered"))
        result = await orchestrator.run_turn("again")
        assert result.answer == "recovered"

    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_history_well_formed(self, tool_client):
        tool_client.call_tool.side_effect = RuntimeError("client bug")
        model = ScriptedModel(
            [
                _tools_turn(
                    _call("a", "update_customer_notes", {"customerId": "CUST-001", "note": "x"}),
                    _call("b", "get_ar_aging_data", {"customerId": "CUST-001"}),
                ),
                _answer("recovered"),
            ]
        )
        orchestrator = CollectionsOrchestrator(tool_client, model)

        with pytest.raises(RuntimeError):
            await orchestrator.run_turn("go")

        contents = [json.loads(m["content"]) for m in _tool_messages(orchestrator)]
        assert "outcome is unknown" in contents[0]["error"]
        assert "Not executed" in contents[1]["error"]
        assert orchestrator.conversation.is_well_formed()
        assert orchestrator.state == OrchestratorState.AWAITING_USER_INPUT

        result = await orchestrator.run_turn("again")
        assert result.answer == "recovered"
        assert [m.get("tool_call_id") for m in model.calls[1] if m["role"] == "tool"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_cancellation_keeps_history_well_formed(self, tool_client):
        tool_client.call_tool.side_effect = asyncio.CancelledError()
        model = ScriptedModel(
            [_tools_turn(_call("a", "get_ar_aging_data", {"customerId": "CUST-001"}))]
        )
        orchestrator = CollectionsOrchestrator(tool_client, model)

        with pytest.raises(asyncio.CancelledError):
            await orchestrator.run_turn("go")

        assert orchestrator.conversation.is_well_formed()
        assert "outcome is unknown" in json.loads(_tool_messages(orchestrator)[0]["content"])["error"]
        assert orchestrator.state == OrchestratorState.AWAITING_USER_INPUT


class TestWithRealProvider:
    """End to end over the demo provider process."""

    @pytest.mark.asyncio
    async def test_collections_scenario(self, provider_config):
        model = ScriptedModel(
            [
                _tools_turn(_call("1", "get_customers_with_outstanding_balance")),
                _tools_turn(
                    _call("2", "get_ar_aging_data", {"customerId": "CUST-001"}),
                    _call("3", "get_ar_aging_data!!", {"customerId": "CUST-001"}),
                    _call("4", "get_payment_history", {"customerId": "CUST-001"}),
                ),
                _tools_turn(
                    _call("5", "update_customer_notes", {"customerId": "CUST-001", "note": "Escalate"})
                ),
                _answer("CUST-001 escalated."),
            ]
        )
        async with ToolClient(provider_config) as client:
            orchestrator = CollectionsOrchestrator(client, model, execution_id="test")
            result = await orchestrator.run_turn("Who should we chase first?")

        assert result.answer == "CUST-001 escalated."
        assert result.iterations == 4
        assert [r.ok for r in result.tool_calls] == [True, True, False, True, True]
        assert json.loads(result.tool_calls[0].result_text) == ["CUST-001", "CUST-002", "CUST-003"]
        assert result.tool_calls[4].side_effecting
        assert orchestrator.conversation.is_well_formed()
        tools_sent = model.calls[0]
        assert tools_sent[0]["role"] == "system"
