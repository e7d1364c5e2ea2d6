"""
Conversation history for the collections assistant.

The history is what the model sees on every call: the system prompt, then
user, assistant and tool messages in the order they happened.  An
assistant message that requests tools is always followed by exactly one
tool message per requested call, in the same order.

Retention drops whole exchanges (a user message and everything after it
up to the next user message) from the head once the history grows past
``max_messages``.  The system prompt and the current exchange are never
dropped, so tool-call groups are never split.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"


@dataclass
class ToolCallIntent:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: str = ""

    def parse_arguments(self) -> dict[str, Any]:
        """
        Decode the model's JSON argument string.

        Raises:
            ValueError: The arguments are not a JSON object.
        """
        if not self.arguments or not self.arguments.strip():
            return {}
        try:
            parsed = json.loads(self.arguments)
        except json.JSONDecodeError as e:
            raise ValueError(f"Arguments for '{self.name}' are not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise ValueError(f"Arguments for '{self.name}' must be a JSON object")
        return parsed

    def to_openai(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class AssistantTurn:
    """One model response: text, tool requests, or both."""

    content: Optional[str] = None
    tool_calls: list[ToolCallIntent] = field(default_factory=list)
    usage: Optional[dict] = None


@dataclass
class ConversationMessage:
    role: str
    content: Optional[str] = None
    tool_calls: list[ToolCallIntent] = field(default_factory=list)
    tool_call_id: Optional[str] = None

    def to_openai(self) -> dict:
        """Chat Completions message dict."""
        message: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.role == ROLE_ASSISTANT and self.tool_calls:
            message["tool_calls"] = [tc.to_openai() for tc in self.tool_calls]
        if self.role == ROLE_TOOL:
            message["tool_call_id"] = self.tool_call_id
        return message


class Conversation:
    """Ordered message history with a bounded size."""

    def __init__(self, system_prompt: str, max_messages: int = 200):
        if max_messages < 2:
            raise ValueError("max_messages must leave room for the system prompt and a user message")
        self.max_messages = max_messages
        self._messages: list[ConversationMessage] = [
            ConversationMessage(role=ROLE_SYSTEM, content=system_prompt)
        ]
        self.dropped_messages = 0

    @property
    def messages(self) -> list[ConversationMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def add_user(self, content: str) -> None:
        self._messages.append(ConversationMessage(role=ROLE_USER, content=content))
        self.enforce_retention()

    def add_assistant(
        self, content: Optional[str], tool_calls: Optional[list[ToolCallIntent]] = None
    ) -> None:
        self._messages.append(
            ConversationMessage(
                role=ROLE_ASSISTANT, content=content, tool_calls=list(tool_calls or [])
            )
        )

    def add_tool_result(self, tool_call_id: str, content: str) -> None:
        self._messages.append(
            ConversationMessage(role=ROLE_TOOL, content=content, tool_call_id=tool_call_id)
        )

    def to_openai(self) -> list[dict]:
        return [m.to_openai() for m in self._messages]

    def enforce_retention(self) -> int:
        """
        Drop the oldest whole exchanges until the history fits.

        Returns:
            Number of messages dropped.
        """
        dropped = 0
        while len(self._messages) > self.max_messages:
            starts = self._exchange_starts()
            # Only the current exchange left: nothing more can go.
            if len(starts) < 2:
                break
            first, second = starts[0], starts[1]
            dropped += second - first
            del self._messages[first:second]

        if dropped:
            self.dropped_messages += dropped
            logger.info(
                f"Conversation retention dropped {dropped} messages "
                f"({len(self._messages)} kept, limit {self.max_messages})"
            )
        return dropped

    def is_well_formed(self) -> bool:
        """Every assistant tool request is answered, in order, before anything else."""
        msgs = self._messages
        if not msgs or msgs[0].role != ROLE_SYSTEM:
            return False
        i = 1
        while i < len(msgs):
            msg = msgs[i]
            if msg.role == ROLE_SYSTEM:
                return False
            if msg.role == ROLE_TOOL:
                return False
            if msg.role == ROLE_ASSISTANT and msg.tool_calls:
                expected = [tc.id for tc in msg.tool_calls]
                answered = [m.tool_call_id for m in msgs[i + 1:i + 1 + len(expected)]]
                roles = [m.role for m in msgs[i + 1:i + 1 + len(expected)]]
                if answered != expected or any(r != ROLE_TOOL for r in roles):
                    return False
                i += len(expected)
            i += 1
        return True

    def _exchange_starts(self) -> list[int]:
        return [i for i, m in enumerate(self._messages) if m.role == ROLE_USER]
