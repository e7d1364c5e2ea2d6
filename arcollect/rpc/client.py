"""
Consumer side of the tool RPC: one session per client, lazily started.

Usage:
    client = ToolClient(ToolServerConfig(command=[sys.executable, "-m", "arcollect.provider"]))

    ids = await client.call_tool("get_customers_with_outstanding_balance", {})
    aging = await client.call_tool("get_ar_aging_data", {"customerId": ids[0]})

    await client.close()
"""

import asyncio
import itertools
import json
import logging
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError

from ..errors import (
    ClientClosedError,
    ProtocolError,
    RpcError,
    SessionFatalError,
    ToolExecutionError,
    TransportError,
)
from .messages import (
    PROTOCOL_VERSION,
    JsonRpcRequest,
    JsonRpcResponse,
    ToolDescriptor,
    ToolResult,
)
from .transport import DEFAULT_LINE_LIMIT, StdioTransport

logger = logging.getLogger(__name__)

CLIENT_INFO = {"name": "arcollect-orchestrator", "version": "0.1.0"}


@dataclass
class ToolServerConfig:
    """How to launch the provider process. Passed in explicitly, never sniffed."""

    command: list[str] = field(
        default_factory=lambda: [sys.executable, "-m", "arcollect.provider"]
    )
    env: Optional[dict[str, str]] = None
    cwd: Optional[str] = None
    shutdown_timeout: float = 5.0
    line_limit: int = DEFAULT_LINE_LIMIT


class ClientState(str, Enum):
    """Lifecycle of a ToolClient."""

    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    CLOSED = "closed"


class ToolSession:
    """
    One child process, one transport, one id counter.

    Requests are strictly sequential: a lock guarantees a single
    outstanding request, so every response read belongs to the request
    just written.  Any transport or protocol failure breaks the session
    permanently.
    """

    def __init__(self, config: ToolServerConfig):
        self.config = config
        self.transport = StdioTransport(
            command=config.command,
            env=config.env,
            cwd=config.cwd,
            shutdown_timeout=config.shutdown_timeout,
            line_limit=config.line_limit,
        )
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()
        self._broken: Optional[SessionFatalError] = None
        self.server_info: dict = {}

    @property
    def broken(self) -> bool:
        return self._broken is not None

    async def open(self) -> None:
        """Spawn the provider and perform the initialize handshake."""
        await self.transport.start()
        result = await self.request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            },
        )
        self.server_info = result.get("serverInfo", {})
        await self.notify("notifications/initialized")
        logger.info(
            f"Tool session open: {self.server_info.get('name', 'unknown')} "
            f"{self.server_info.get('version', '')} (pid={self.transport.pid})"
        )

    async def request(self, method: str, params: Optional[dict] = None) -> dict:
        """
        Send one request and return the ``result`` of its response.

        Raises:
            RpcError: The provider returned a JSON-RPC error object.
            TransportError, ProtocolError: The session is now broken.
        """
        async with self._lock:
            if self._broken is not None:
                raise TransportError(f"Session is broken: {self._broken}")

            request = JsonRpcRequest(id=next(self._ids), method=method, params=params or {})
            logger.debug(f"-> {method} (id={request.id})")
            try:
                await self.transport.send(request)
                response = await self.transport.receive()
                self._check_correlation(request, response)
            except SessionFatalError as e:
                self._broken = e
                raise

        if response.is_error:
            assert response.error is not None
            raise RpcError(response.error.code, response.error.message, response.error.data)
        logger.debug(f"<- {method} (id={response.id})")
        return response.result or {}

    async def notify(self, method: str, params: Optional[dict] = None) -> None:
        """Send a notification (no id, no response)."""
        async with self._lock:
            try:
                await self.transport.send(JsonRpcRequest(method=method, params=params or {}))
            except SessionFatalError as e:
                self._broken = e
                raise

    async def close(self) -> None:
        await self.transport.stop()

    @staticmethod
    def _check_correlation(request: JsonRpcRequest, response: JsonRpcResponse) -> None:
        if response.id != request.id:
            detail = ""
            if response.is_error and response.error is not None:
                detail = f" ({response.error.message})"
            raise ProtocolError(
                f"Response id {response.id!r} does not match outstanding request "
                f"id {request.id!r}{detail}"
            )


class ToolClient:
    """
    Single entry point for calling provider tools.

    State machine:
        UNINITIALIZED --first call--> CONNECTED --close()--> CLOSED
        CONNECTED --transport/protocol failure--> UNINITIALIZED

    The session is started lazily and reused for every call.  A
    session-fatal failure tears it down; the next call starts a new one.
    Calling after ``close()`` raises ``ClientClosedError``.
    """

    def __init__(self, config: Optional[ToolServerConfig] = None):
        self.config = config or ToolServerConfig()
        self.state = ClientState.UNINITIALIZED
        self._session: Optional[ToolSession] = None
        self._opening: Optional[ToolSession] = None
        self._start_lock = asyncio.Lock()

    @property
    def session(self) -> Optional[ToolSession]:
        return self._session

    async def __aenter__(self) -> "ToolClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def list_tools(self) -> list[ToolDescriptor]:
        """Fetch the provider's tool catalog."""
        result = await self._request("tools/list", {})
        tools = result.get("tools")
        if not isinstance(tools, list):
            await self._discard_session()
            raise ProtocolError("tools/list response has no 'tools' array")
        try:
            return [ToolDescriptor.model_validate(t) for t in tools]
        except ValidationError as e:
            await self._discard_session()
            raise ProtocolError(f"Malformed tool descriptor: {e}") from e

    async def call_tool(self, name: str, arguments: Optional[dict[str, Any]] = None) -> Any:
        """
        Invoke a tool and return its parsed result.

        Raises:
            ToolExecutionError: The tool reported an error (``isError`` or an
                ``error`` field in its payload).  The session stays usable.
            RpcError: The provider rejected the request at the JSON-RPC level.
            TransportError, ProtocolError: The session was lost and discarded.
            ClientClosedError: The client has been closed.
        """
        result = await self._request(
            "tools/call", {"name": name, "arguments": arguments or {}}
        )
        try:
            tool_result = ToolResult.model_validate(result)
        except ValidationError as e:
            await self._discard_session()
            raise ProtocolError(f"Malformed tools/call result for '{name}': {e}") from e
        text = tool_result.first_text()
        if text is None:
            await self._discard_session()
            raise ProtocolError(f"Tool '{name}' returned no text content")

        payload = _parse_payload(text)
        if tool_result.is_error:
            raise ToolExecutionError(name, _error_message(payload))
        if isinstance(payload, dict) and "error" in payload:
            raise ToolExecutionError(name, _error_message(payload))
        return payload

    async def ping(self) -> bool:
        await self._request("ping", {})
        return True

    async def close(self) -> None:
        """Terminate the provider process. Idempotent."""
        if self.state == ClientState.CLOSED:
            return
        self.state = ClientState.CLOSED
        session, self._session = self._session, None
        opening, self._opening = self._opening, None
        for pending in (session, opening):
            if pending is not None:
                await pending.close()
        logger.info("Tool client closed")

    async def _request(self, method: str, params: dict) -> dict:
        session = await self._ensure_session()
        try:
            return await session.request(method, params)
        except SessionFatalError as e:
            logger.error(f"Tool session lost during {method}: {e}")
            await self._discard_session(session)
            raise

    async def _ensure_session(self) -> ToolSession:
        if self.state == ClientState.CLOSED:
            raise ClientClosedError("Tool client is closed")

        async with self._start_lock:
            if self.state == ClientState.CLOSED:
                raise ClientClosedError("Tool client is closed")
            if self._session is not None:
                return self._session

            session = ToolSession(self.config)
            self._opening = session
            try:
                await session.open()
            except (SessionFatalError, RpcError) as e:
                await session.close()
                if self.state == ClientState.CLOSED:
                    raise ClientClosedError(
                        "Tool client closed while the session was starting"
                    ) from e
                raise
            except BaseException:
                await session.close()
                raise
            finally:
                self._opening = None

            # close() may have run while the handshake was in flight
            if self.state == ClientState.CLOSED:
                await session.close()
                raise ClientClosedError("Tool client closed while the session was starting")
            self._session = session
            self.state = ClientState.CONNECTED
            return session

    async def _discard_session(self, session: Optional[ToolSession] = None) -> None:
        session = session or self._session
        if session is None:
            return
        if self._session is session:
            self._session = None
            if self.state == ClientState.CONNECTED:
                self.state = ClientState.UNINITIALIZED
        await session.close()


def _parse_payload(text: str) -> Any:
    """Tool payloads are JSON; plain text is passed through untouched."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _error_message(payload: Any) -> str:
    if isinstance(payload, dict) and "error" in payload:
        error = payload["error"]
        return error if isinstance(error, str) else json.dumps(error)
    if isinstance(payload, str):
        return payload
    return json.dumps(payload)
