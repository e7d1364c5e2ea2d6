"""
Conversation endpoints.

Each conversation owns its own orchestrator and its own tool client, so
each has its own provider process.  Messages within one conversation are
processed one at a time.

    POST   /v1/conversations                 -> create
    POST   /v1/conversations/{id}/messages   -> run one user turn
    DELETE /v1/conversations/{id}            -> close (terminates the provider)
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import APIRouter, HTTPException

from ...config import config
from ...errors import ModelError, ToolClientError
from ...llm_call import LLMClient
from ...orchestration import CollectionsOrchestrator, TurnResult
from ...rpc import ToolClient
from ...tracing import TracingContext, flush_tracing
from ..schemas import (
    CreateConversationResponse,
    ErrorResponse,
    MessageResponse,
    SendMessageRequest,
    ToolCallInfo,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@dataclass
class ConversationHandle:
    conversation_id: str
    orchestrator: CollectionsOrchestrator
    tool_client: ToolClient
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ConversationStore:
    """Open conversations, keyed by id."""

    def __init__(self):
        self._conversations: dict[str, ConversationHandle] = {}

    def __len__(self) -> int:
        return len(self._conversations)

    def add(self, handle: ConversationHandle) -> None:
        self._conversations[handle.conversation_id] = handle

    def get(self, conversation_id: str) -> Optional[ConversationHandle]:
        return self._conversations.get(conversation_id)

    def pop(self, conversation_id: str) -> Optional[ConversationHandle]:
        return self._conversations.pop(conversation_id, None)

    async def close_all(self) -> None:
        handles = list(self._conversations.values())
        self._conversations.clear()
        for handle in handles:
            await handle.tool_client.close()
        if handles:
            logger.info(f"Closed {len(handles)} open conversations")


store = ConversationStore()


def _create_handle(conversation_id: str) -> ConversationHandle:
    orchestrator_config = config.orchestrator
    tool_client = ToolClient(config.tool_server.to_server_config())
    orchestrator = CollectionsOrchestrator(
        tool_client=tool_client,
        llm_client=LLMClient(orchestrator_config),
        max_iterations=orchestrator_config.max_iterations,
        user_email=orchestrator_config.user_email,
        max_messages=orchestrator_config.max_conversation_messages,
        execution_id=conversation_id,
    )
    return ConversationHandle(
        conversation_id=conversation_id,
        orchestrator=orchestrator,
        tool_client=tool_client,
    )


def _to_response(conversation_id: str, result: TurnResult) -> MessageResponse:
    return MessageResponse(
        conversation_id=conversation_id,
        answer=result.answer,
        exhausted=result.exhausted,
        iterations=result.iterations,
        tool_calls=[
            ToolCallInfo(
                id=r.id,
                name=r.name,
                arguments=r.arguments,
                ok=r.ok,
                side_effecting=r.side_effecting,
                executed=r.executed,
            )
            for r in result.tool_calls
        ],
    )


@router.post(
    "/v1/conversations",
    response_model=CreateConversationResponse,
    status_code=201,
    summary="Create conversation",
)
async def create_conversation() -> CreateConversationResponse:
    conversation_id = f"conv-{uuid.uuid4().hex[:12]}"
    store.add(_create_handle(conversation_id))
    logger.info(f"[{conversation_id}] Conversation created")
    return CreateConversationResponse(conversation_id=conversation_id)


@router.post(
    "/v1/conversations/{conversation_id}/messages",
    response_model=MessageResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Unknown conversation"},
        502: {"model": ErrorResponse, "description": "Tool provider or model failure"},
    },
    summary="Send a message",
    description=(
        "Run one user turn: the assistant calls ERP tools as needed and returns "
        "its answer with the tool calls it made."
    ),
)
async def send_message(conversation_id: str, request: SendMessageRequest) -> MessageResponse:
    handle = store.get(conversation_id)
    if handle is None:
        raise HTTPException(status_code=404, detail=f"Conversation '{conversation_id}' not found")

    logger.info(f"[{conversation_id}] Processing message: {request.content[:100]}")
    tracing_context = TracingContext(execution_id=conversation_id, session_id=conversation_id)
    tracing_context.start_trace(name="conversation_turn", query=request.content)

    async with handle.lock:
        try:
            result = await handle.orchestrator.run_turn(
                request.content, tracing_context=tracing_context
            )
        except ModelError as e:
            tracing_context.end_trace(output=str(e), status="error")
            flush_tracing()
            logger.error(f"[{conversation_id}] Model failure: {e}")
            raise HTTPException(status_code=502, detail=f"Model call failed: {e}")
        except ToolClientError as e:
            tracing_context.end_trace(output=str(e), status="error")
            flush_tracing()
            logger.error(f"[{conversation_id}] Tool provider failure: {e}")
            raise HTTPException(status_code=502, detail=f"Tool provider failure: {e}")

    tracing_context.end_trace(
        output=result.answer,
        status="exhausted" if result.exhausted else "success",
        metadata={"iterations": result.iterations, "tool_calls": len(result.tool_calls)},
    )
    flush_tracing()
    return _to_response(conversation_id, result)


@router.delete(
    "/v1/conversations/{conversation_id}",
    status_code=204,
    summary="Close conversation",
)
async def delete_conversation(conversation_id: str) -> None:
    handle = store.pop(conversation_id)
    if handle is None:
        raise HTTPException(status_code=404, detail=f"Conversation '{conversation_id}' not found")
    await handle.tool_client.close()
    logger.info(f"[{conversation_id}] Conversation closed")
