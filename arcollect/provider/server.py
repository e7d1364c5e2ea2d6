"""
JSON-RPC tool server that communicates via stdin/stdout.

Protocol:
- One JSON-RPC message per line, in both directions
- Methods:
    - "initialize"  → handshake (protocol version, server info, capabilities)
    - "ping"        → health check
    - "tools/list"  → the registry's tool catalog
    - "tools/call"  → run a tool by name with arguments
- Notifications (no id) are accepted and never answered

Only protocol frames are written to stdout; logging goes to stderr.
"""

import json
import logging
import sys
from typing import Any, Optional, TextIO

from pydantic import ValidationError

from ..rpc.messages import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    PROTOCOL_VERSION,
    JsonRpcRequest,
    JsonRpcResponse,
)
from .registry import ToolRegistry

logger = logging.getLogger(__name__)


class MethodError(Exception):
    """A request-level failure reported as a JSON-RPC error object."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class StdioToolServer:
    """Serve a ToolRegistry over line-delimited JSON-RPC."""

    def __init__(
        self,
        registry: ToolRegistry,
        name: str = "erp-tool-server",
        version: str = "0.1.0",
    ):
        self.registry = registry
        self.name = name
        self.version = version

    def run(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None) -> None:
        """
        Main loop: read requests, dispatch, write responses.

        Blocks until stdin is closed (the parent closed the pipe or exited).
        """
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        logger.info(
            f"Tool server starting with {len(self.registry.names())} tools: "
            f"{self.registry.names()}"
        )

        for line in stdin:
            line = line.strip()
            if not line:
                continue
            response = self.handle_line(line)
            if response is not None:
                stdout.write(response.to_line() + "\n")
                stdout.flush()

        logger.info("Tool server input closed, exiting")

    def handle_line(self, line: str) -> Optional[JsonRpcResponse]:
        """Handle one frame. Returns None for notifications."""
        try:
            raw = json.loads(line)
        except json.JSONDecodeError as e:
            return JsonRpcResponse.failure(None, PARSE_ERROR, f"Parse error: {e}")

        request_id = raw.get("id") if isinstance(raw, dict) else None
        if isinstance(request_id, bool) or not isinstance(request_id, (int, str)):
            request_id = None
        try:
            request = JsonRpcRequest.model_validate(raw)
        except ValidationError as e:
            return JsonRpcResponse.failure(
                request_id, INVALID_REQUEST, f"Invalid request: {e.errors()[0]['msg']}"
            )

        if request.is_notification:
            logger.debug(f"Notification: {request.method}")
            return None

        try:
            result = self.dispatch(request.method, request.params)
        except MethodError as e:
            return JsonRpcResponse.failure(request.id, e.code, e.message)
        except Exception as e:
            logger.exception(f"Internal error handling {request.method}")
            return JsonRpcResponse.failure(request.id, INTERNAL_ERROR, str(e))
        return JsonRpcResponse.success(request.id, result)

    def dispatch(self, method: str, params: dict[str, Any]) -> dict:
        """Route a method call to the appropriate handler."""
        if method == "initialize":
            return {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": self.name, "version": self.version},
            }

        if method == "ping":
            return {}

        if method == "tools/list":
            return {"tools": [t.to_wire() for t in self.registry.list_tools()]}

        if method == "tools/call":
            tool_name = params.get("name")
            if not isinstance(tool_name, str):
                raise MethodError(INVALID_PARAMS, "tools/call requires a string 'name'")
            arguments = params.get("arguments") or {}
            if not isinstance(arguments, dict):
                raise MethodError(INVALID_PARAMS, "tools/call 'arguments' must be an object")
            logger.info(f"Calling tool: {tool_name}")
            return self.registry.call_tool(tool_name, arguments).to_wire()

        raise MethodError(METHOD_NOT_FOUND, f"Unknown method: '{method}'")
