"""
Tool RPC: newline-delimited JSON-RPC 2.0 over a child process's stdio.

    +----------------+   stdin/stdout   +----------------+
    |   ToolClient   | ---------------> | Tool provider  |
    | (orchestrator) | <--------------- |  (subprocess)  |
    +----------------+     JSON-RPC     +----------------+
"""

from .client import ClientState, ToolClient, ToolServerConfig, ToolSession
from .messages import (
    JsonRpcError,
    JsonRpcRequest,
    JsonRpcResponse,
    ToolDescriptor,
    ToolResult,
)
from .transport import StdioTransport

__all__ = [
    "ClientState",
    "ToolClient",
    "ToolServerConfig",
    "ToolSession",
    "JsonRpcError",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "ToolDescriptor",
    "ToolResult",
    "StdioTransport",
]
