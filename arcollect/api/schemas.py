"""
Pydantic schemas for the collections assistant API.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response body for /health endpoint."""

    status: Literal["healthy", "unhealthy"]
    version: str
    service: str


class CreateConversationResponse(BaseModel):
    conversation_id: str


class SendMessageRequest(BaseModel):
    """Request body for posting a user message to a conversation."""

    content: str = Field(..., min_length=1, description="The user's message")

    model_config = {
        "json_schema_extra": {
            "example": {"content": "Which customers have balances over 90 days?"}
        }
    }


class ToolCallInfo(BaseModel):
    """One tool call made while answering."""

    id: str
    name: str
    arguments: Any = None
    ok: bool
    side_effecting: bool = False
    executed: bool = True


class MessageResponse(BaseModel):
    """Response body for a processed user message."""

    conversation_id: str
    answer: str
    exhausted: bool = Field(
        default=False, description="True when the step limit was reached before a final answer"
    )
    iterations: int = Field(default=0, description="Model calls made for this message")
    tool_calls: list[ToolCallInfo] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Body of every error raised through HTTPException."""

    detail: str
