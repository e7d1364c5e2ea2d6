"""
Error taxonomy for the tool RPC layer and the orchestration loop.

Two failure classes are kept strictly apart:

- Session-fatal failures (``TransportError``, ``ProtocolError``): the byte
  stream to the provider process can no longer be trusted. The session is
  discarded; a fresh one may be started for later calls.
- Recoverable failures (``ToolExecutionError``, ``RpcError``): the RPC round
  trip worked but the provider reported a problem. The session stays usable
  and the orchestrator feeds the message back to the model.
"""

from typing import Optional


class ToolClientError(Exception):
    """Base class for every error raised by the tool client stack."""


class SessionFatalError(ToolClientError):
    """The session must be discarded after this error."""


class TransportError(SessionFatalError):
    """Stream closed or unreadable (child process exited, broken pipe)."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class ProtocolError(SessionFatalError):
    """A frame could not be parsed, or its id matched no outstanding request."""


class RpcError(ToolClientError):
    """The provider answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: object = None):
        super().__init__(f"JSON-RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class ToolExecutionError(ToolClientError):
    """A tool ran (or was looked up) and reported a domain error."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name
        self.message = message


class ClientClosedError(ToolClientError):
    """The client was used after ``close()``."""


class ModelError(Exception):
    """The language model call failed."""
