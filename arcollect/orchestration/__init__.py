"""
Collections orchestration: conversation history, tool definitions and the
bounded model/tool loop.
"""

from .conversation import AssistantTurn, Conversation, ConversationMessage, ToolCallIntent
from .tool_defs import build_system_prompt, build_tool_definitions, descriptor_to_openai
from .loop import (
    CollectionsOrchestrator,
    OrchestratorState,
    ToolCallRecord,
    TurnResult,
)

__all__ = [
    "AssistantTurn",
    "Conversation",
    "ConversationMessage",
    "ToolCallIntent",
    "build_system_prompt",
    "build_tool_definitions",
    "descriptor_to_openai",
    "CollectionsOrchestrator",
    "OrchestratorState",
    "ToolCallRecord",
    "TurnResult",
]
