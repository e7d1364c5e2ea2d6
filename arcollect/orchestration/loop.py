"""
Bounded agentic loop for the collections assistant.

Per user turn:
    1. Append the user message to the conversation
    2. Call the model with the history and the provider's tool catalog
    3. No tool requests: the assistant text is the answer, turn is done
    4. Otherwise execute each requested tool in order, append one tool
       message per call, and go back to 2

At most ``max_iterations`` model calls are made per turn.  When the bound
is hit, a fallback answer is appended instead of another model call; it
lists the side-effecting tools that ran during the turn so the user knows
what did and did not happen.

Tool failures the model can react to (tool errors, rejected requests,
malformed arguments) become ``{"error": ...}`` tool messages.  Anything
else aborts the turn (a lost tool session, cancellation): the interrupted
call is recorded as having an unknown outcome, the rest of the batch as
not executed, and the error propagates.  Every tool request in the history
keeps its answer either way.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from ..errors import (
    ClientClosedError,
    ModelError,
    RpcError,
    SessionFatalError,
    ToolExecutionError,
)
from ..rpc.client import ToolClient
from ..tracing import TracingContext
from .conversation import AssistantTurn, Conversation, ToolCallIntent
from .tool_defs import build_system_prompt, build_tool_definitions

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 15

FALLBACK_ANSWER = (
    "I reached the maximum number of steps. Please try a more specific request."
)
OUTCOME_UNKNOWN = "Tool session lost while this call was in flight; its outcome is unknown"
INTERRUPTED = "Interrupted while this call was in flight; its outcome is unknown"
NOT_EXECUTED = "Not executed: the turn was aborted before this call ran"

ToolCallCallback = Callable[[str, dict], Union[None, Awaitable[None]]]


class ModelClient(Protocol):
    async def complete(
        self,
        messages: list[dict],
        tools: Optional[list[dict]] = None,
        tracing_context: Optional[TracingContext] = None,
        name: str = ...,
    ) -> AssistantTurn: ...


class OrchestratorState(str, Enum):
    AWAITING_USER_INPUT = "awaiting_user_input"
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


@dataclass
class ToolCallRecord:
    """What happened to one requested tool call."""

    id: str
    name: str
    arguments: Any
    ok: bool
    side_effecting: bool = False
    result_text: str = ""
    executed: bool = True


@dataclass
class TurnResult:
    """Result of one user turn."""

    answer: str
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    iterations: int = 0
    exhausted: bool = False


class CollectionsOrchestrator:
    """
    Drives one conversation: model calls and tool calls, one turn at a time.

    The orchestrator owns its Conversation; the ToolClient and model client
    are injected.  The tool catalog is fetched once and cached.
    """

    def __init__(
        self,
        tool_client: ToolClient,
        llm_client: ModelClient,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        conversation: Optional[Conversation] = None,
        user_email: str = "your-email@example.com",
        max_messages: int = 200,
        on_tool_call: Optional[ToolCallCallback] = None,
        execution_id: Optional[str] = None,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.tool_client = tool_client
        self.llm_client = llm_client
        self.max_iterations = max_iterations
        # Filled from the catalog: tools not advertised as read-only
        self.side_effecting_tools: set[str] = set()
        self.conversation = conversation or Conversation(
            build_system_prompt(user_email), max_messages=max_messages
        )
        self.on_tool_call = on_tool_call
        self.execution_id = execution_id
        self.state = OrchestratorState.AWAITING_USER_INPUT
        self._tools: Optional[list[dict]] = None

    @property
    def _id_prefix(self) -> str:
        return f"[{self.execution_id}] " if self.execution_id else ""

    async def tools(self) -> list[dict]:
        """OpenAI tool definitions for the provider's catalog (cached)."""
        if self._tools is None:
            descriptors = await self.tool_client.list_tools()
            self._tools = build_tool_definitions(descriptors)
            self.side_effecting_tools = {d.name for d in descriptors if not d.read_only}
            logger.info(
                f"{self._id_prefix}Loaded {len(self._tools)} tools: "
                f"{[d.name for d in descriptors]} "
                f"(side-effecting: {sorted(self.side_effecting_tools)})"
            )
        return self._tools

    async def run_turn(
        self, user_message: str, tracing_context: Optional[TracingContext] = None
    ) -> TurnResult:
        """
        Process one user message to a final answer.

        Raises:
            ModelError: The model call failed.
            TransportError, ProtocolError: The tool session was lost.
            ClientClosedError: The tool client was closed.
        """
        if self.state not in (OrchestratorState.AWAITING_USER_INPUT, OrchestratorState.DONE):
            raise RuntimeError(f"A turn is already in progress (state={self.state.value})")

        self.conversation.add_user(user_message)
        logger.debug(f"{self._id_prefix}Starting turn: {user_message[:200]}")

        try:
            if tracing_context is None:
                result = await self._run_loop(None)
            else:
                with tracing_context.span(
                    name="orchestration",
                    metadata={"max_iterations": self.max_iterations},
                    input={"query": user_message},
                ) as span:
                    result = await self._run_loop(tracing_context)
                    span.set_output(
                        {
                            "iterations": result.iterations,
                            "exhausted": result.exhausted,
                            "answer": result.answer[:500],
                        }
                    )
        except BaseException:
            self.state = OrchestratorState.AWAITING_USER_INPUT
            raise

        self.state = OrchestratorState.DONE
        return result

    async def _run_loop(self, tracing_context: Optional[TracingContext]) -> TurnResult:
        records: list[ToolCallRecord] = []
        tools = await self.tools()

        for iteration in range(1, self.max_iterations + 1):
            self.state = OrchestratorState.AWAITING_MODEL
            logger.debug(f"{self._id_prefix}Iteration {iteration}: calling model")
            try:
                turn = await self.llm_client.complete(
                    self.conversation.to_openai(),
                    tools=tools,
                    tracing_context=tracing_context,
                    name=f"orchestrator_step_{iteration}",
                )
            except ModelError:
                logger.error(f"{self._id_prefix}Model call failed at iteration {iteration}")
                raise

            self.conversation.add_assistant(turn.content, turn.tool_calls)

            if not turn.tool_calls:
                logger.info(
                    f"{self._id_prefix}Turn finished after {iteration} model calls, "
                    f"{len(records)} tool calls"
                )
                return TurnResult(
                    answer=turn.content or "",
                    tool_calls=records,
                    iterations=iteration,
                )

            self.state = OrchestratorState.EXECUTING_TOOLS
            await self._execute_batch(turn.tool_calls, records, tracing_context)

        logger.warning(
            f"{self._id_prefix}Max iterations ({self.max_iterations}) reached, "
            "returning fallback answer"
        )
        answer = self._fallback_answer(records)
        self.conversation.add_assistant(answer)
        return TurnResult(
            answer=answer,
            tool_calls=records,
            iterations=self.max_iterations,
            exhausted=True,
        )

    async def _execute_batch(
        self,
        calls: list[ToolCallIntent],
        records: list[ToolCallRecord],
        tracing_context: Optional[TracingContext],
    ) -> None:
        """Run the model's tool requests sequentially, in the order received."""
        for index, call in enumerate(calls):
            try:
                record = await self._execute_call(call, tracing_context)
            except BaseException as e:
                if isinstance(e, ClientClosedError):
                    interrupted = self._abandon(call, NOT_EXECUTED, executed=False)
                elif isinstance(e, SessionFatalError):
                    interrupted = self._abandon(call, OUTCOME_UNKNOWN, executed=True)
                else:
                    interrupted = self._abandon(call, INTERRUPTED, executed=True)
                records.append(interrupted)
                for pending in calls[index + 1:]:
                    records.append(self._abandon(pending, NOT_EXECUTED, executed=False))
                logger.error(f"{self._id_prefix}Turn aborted during '{call.name}': {e!r}")
                raise
            records.append(record)
            self.conversation.add_tool_result(call.id, record.result_text)

    async def _execute_call(
        self, call: ToolCallIntent, tracing_context: Optional[TracingContext]
    ) -> ToolCallRecord:
        side_effecting = call.name in self.side_effecting_tools
        try:
            arguments = call.parse_arguments()
        except ValueError as e:
            logger.warning(f"{self._id_prefix}{e}")
            return ToolCallRecord(
                id=call.id,
                name=call.name,
                arguments=call.arguments,
                ok=False,
                side_effecting=side_effecting,
                result_text=_error_text(str(e)),
                executed=False,
            )

        if self.on_tool_call is not None:
            try:
                maybe_awaitable = self.on_tool_call(call.name, arguments)
                if maybe_awaitable is not None:
                    await maybe_awaitable
            except Exception:
                logger.exception(
                    f"{self._id_prefix}on_tool_call callback failed for '{call.name}', ignoring"
                )

        if tracing_context is None:
            return await self._invoke(call, arguments, side_effecting)

        with tracing_context.span(name=f"tool:{call.name}", input=arguments) as span:
            record = await self._invoke(call, arguments, side_effecting)
            span.set_output({"result": record.result_text[:500]})
            if not record.ok:
                span.set_status("error")
            return record

    async def _invoke(
        self, call: ToolCallIntent, arguments: dict, side_effecting: bool
    ) -> ToolCallRecord:
        logger.debug(f"{self._id_prefix}Executing tool '{call.name}'")
        try:
            result = await self.tool_client.call_tool(call.name, arguments)
            ok, text = True, json.dumps(result, default=str)
        except ToolExecutionError as e:
            logger.warning(f"{self._id_prefix}{e}")
            ok, text = False, _error_text(e.message)
        except RpcError as e:
            logger.warning(f"{self._id_prefix}Tool '{call.name}' rejected: {e}")
            ok, text = False, _error_text(e.message)
        return ToolCallRecord(
            id=call.id,
            name=call.name,
            arguments=arguments,
            ok=ok,
            side_effecting=side_effecting,
            result_text=text,
        )

    def _abandon(self, call: ToolCallIntent, reason: str, executed: bool) -> ToolCallRecord:
        """Record a call the turn could not finish; keeps every request answered."""
        text = _error_text(reason)
        self.conversation.add_tool_result(call.id, text)
        return ToolCallRecord(
            id=call.id,
            name=call.name,
            arguments=call.arguments,
            ok=False,
            side_effecting=call.name in self.side_effecting_tools,
            result_text=text,
            executed=executed,
        )

    @staticmethod
    def _fallback_answer(records: list[ToolCallRecord]) -> str:
        effects = [r for r in records if r.side_effecting and r.executed]
        if not effects:
            return FALLBACK_ANSWER + " No changes were made to any records."
        lines = [FALLBACK_ANSWER, "", "Changes attempted during this request:"]
        for r in effects:
            status = "succeeded" if r.ok else "failed"
            lines.append(f"- {r.name}({_describe_arguments(r.arguments)}): {status}")
        return "\n".join(lines)


def _error_text(message: str) -> str:
    return json.dumps({"error": message})


def _describe_arguments(arguments: Any) -> str:
    if isinstance(arguments, dict):
        return ", ".join(f"{k}={v!r}" for k, v in arguments.items())
    return str(arguments)
