"""
JSON-RPC 2.0 messages and the MCP payloads carried inside them.

Every frame on the wire is one of these models serialized to a single line
of compact JSON.  Requests are built by the client, responses by the
provider; both sides parse with the same models.
"""

import json
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..errors import ProtocolError

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

RequestId = Union[int, str]


class JsonRpcRequest(BaseModel):
    """A JSON-RPC 2.0 request (or a notification when ``id`` is None)."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: Optional[RequestId] = None
    method: str
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_notification(self) -> bool:
        return self.id is None

    def to_line(self) -> str:
        if self.is_notification:
            payload = self.model_dump(exclude={"id"})
        else:
            payload = self.model_dump()
        return json.dumps(payload, separators=(",", ":"))


class JsonRpcError(BaseModel):
    """A JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any = None


class JsonRpcResponse(BaseModel):
    """A JSON-RPC 2.0 response. Exactly one of ``result`` / ``error`` is set."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: Optional[RequestId] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[JsonRpcError] = None

    @model_validator(mode="after")
    def _result_xor_error(self) -> "JsonRpcResponse":
        if (self.result is None) == (self.error is None):
            raise ValueError("response must carry exactly one of 'result' or 'error'")
        return self

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_line(self) -> str:
        payload = self.model_dump(exclude_none=True)
        # id is mandatory in responses, even when null (parse errors)
        payload["id"] = self.id
        return json.dumps(payload, separators=(",", ":"))

    @classmethod
    def from_line(cls, line: str) -> "JsonRpcResponse":
        """Parse one frame; anything that is not a valid response is a ProtocolError."""
        try:
            raw = json.loads(line)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Malformed frame (not JSON): {e}") from e
        if not isinstance(raw, dict) or "id" not in raw:
            raise ProtocolError(f"Malformed frame (not a response): {line[:200]}")
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise ProtocolError(f"Malformed response: {e.errors()[0]['msg']}") from e

    @classmethod
    def success(cls, request_id: Optional[RequestId], result: dict) -> "JsonRpcResponse":
        return cls(id=request_id, result=result)

    @classmethod
    def failure(
        cls,
        request_id: Optional[RequestId],
        code: int,
        message: str,
        data: Any = None,
    ) -> "JsonRpcResponse":
        return cls(id=request_id, error=JsonRpcError(code=code, message=message, data=data))


# ---------------------------------------------------------------------------
# MCP payloads
# ---------------------------------------------------------------------------


class ToolDescriptor(BaseModel):
    """A tool as advertised by ``tools/list``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")
    annotations: Optional[dict[str, Any]] = None

    @property
    def read_only(self) -> bool:
        """``readOnlyHint`` from the annotations. Unannotated tools may have side effects."""
        return bool((self.annotations or {}).get("readOnlyHint", False))

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class TextContent(BaseModel):
    """A text content block. The only block type this system produces."""

    type: Literal["text"] = "text"
    text: str


class ToolResult(BaseModel):
    """Result of ``tools/call``.

    ``is_error`` reports a domain failure inside a successful RPC round trip.
    """

    model_config = ConfigDict(populate_by_name=True)

    content: list[dict[str, Any]] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def text(cls, value: Any, is_error: bool = False) -> "ToolResult":
        """Wrap a JSON-serializable value as a single text block."""
        text = value if isinstance(value, str) else json.dumps(value, default=str)
        return cls(content=[TextContent(text=text).model_dump()], is_error=is_error)

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls.text({"error": message}, is_error=True)

    def first_text(self) -> Optional[str]:
        """Return the text of the first block, or None if it is not text."""
        if not self.content:
            return None
        block = self.content[0]
        if block.get("type") != "text" or not isinstance(block.get("text"), str):
            return None
        return block["text"]

    def to_wire(self) -> dict:
        payload: dict[str, Any] = {"content": self.content}
        if self.is_error:
            payload["isError"] = True
        return payload
