"""
Tests for ToolClient and ToolSession.

Most tests run the real provider process in demo mode; failure paths use
the fake provider in fixtures/.
"""

import asyncio
from unittest.mock import patch

import pytest

from arcollect.errors import (
    ClientClosedError,
    ProtocolError,
    RpcError,
    ToolExecutionError,
    TransportError,
)
from arcollect.rpc import ClientState, ToolClient, ToolSession
from arcollect.rpc.messages import METHOD_NOT_FOUND


class TestToolClientLifecycle:
    """State machine: UNINITIALIZED -> CONNECTED -> CLOSED."""

    @pytest.mark.asyncio
    async def test_session_starts_lazily(self, provider_config):
        client = ToolClient(provider_config)
        assert client.state == ClientState.UNINITIALIZED
        assert client.session is None
        try:
            assert await client.ping() is True
            assert client.state == ClientState.CONNECTED
            assert client.session.server_info["name"] == "erp-tool-server"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_close_terminates_provider(self, provider_config):
        client = ToolClient(provider_config)
        await client.ping()
        transport = client.session.transport
        assert transport.is_alive()

        await client.close()

        assert not transport.is_alive()
        assert client.state == ClientState.CLOSED

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, provider_config):
        client = ToolClient(provider_config)
        await client.ping()
        await client.close()
        await client.close()
        assert client.state == ClientState.CLOSED

    @pytest.mark.asyncio
    async def test_close_without_calls(self, provider_config):
        """Closing a client that never started a session is safe."""
        client = ToolClient(provider_config)
        await client.close()
        assert client.state == ClientState.CLOSED

    @pytest.mark.asyncio
    async def test_call_after_close_fails_immediately(self, provider_config):
        client = ToolClient(provider_config)
        await client.close()
        with pytest.raises(ClientClosedError):
            await client.call_tool("get_customers_with_outstanding_balance")
        assert client.session is None

    @pytest.mark.asyncio
    async def test_async_context_manager_closes(self, provider_config):
        async with ToolClient(provider_config) as client:
            await client.ping()
            transport = client.session.transport
        assert client.state == ClientState.CLOSED
        assert not transport.is_alive()

    @pytest.mark.asyncio
    async def test_close_during_lazy_start_terminates_provider(self, fake_provider_config):
        """close() while the handshake is in flight leaves no process behind."""
        client = ToolClient(fake_provider_config("slow_start"))
        task = asyncio.create_task(client.call_tool("echo", {"x": 1}))
        for _ in range(500):
            opening = client._opening
            if opening is not None and opening.transport.is_alive():
                break
            await asyncio.sleep(0.01)
        transport = client._opening.transport

        await client.close()

        with pytest.raises(ClientClosedError):
            await task
        assert client.state == ClientState.CLOSED
        assert client.session is None
        assert not transport.is_alive()

    @pytest.mark.asyncio
    async def test_session_opened_after_close_is_discarded(self, provider_config):
        """A handshake that completes after close() does not revive the client."""
        started = asyncio.Event()
        release = asyncio.Event()
        closed_sessions = []

        async def slow_open(session):
            started.set()
            await release.wait()

        async def record_close(session):
            closed_sessions.append(session)

        with patch.object(ToolSession, "open", slow_open), patch.object(
            ToolSession, "close", record_close
        ):
            client = ToolClient(provider_config)
            task = asyncio.create_task(client.ping())
            await started.wait()
            await client.close()
            release.set()
            with pytest.raises(ClientClosedError):
                await task

        assert client.state == ClientState.CLOSED
        assert client.session is None
        assert closed_sessions
        assert len({id(s) for s in closed_sessions}) == 1


class TestToolClientCalls:
    """Tool calls against the demo provider."""

    @pytest.mark.asyncio
    async def test_list_tools_is_stable(self, provider_config):
        """Listing twice returns identical catalogs in registration order."""
        async with ToolClient(provider_config) as client:
            first = await client.list_tools()
            second = await client.list_tools()

        assert first == second
        assert [t.name for t in first] == [
            "get_ar_aging_data",
            "get_payment_history",
            "get_customers_with_outstanding_balance",
            "update_customer_notes",
            "send_dunning_email",
            "send_teams_notification",
            "record_promise_to_pay",
        ]
        aging = first[0]
        assert aging.input_schema["type"] == "object"
        assert "customerId" in aging.input_schema["properties"]
        assert aging.input_schema["required"] == ["customerId"]

    @pytest.mark.asyncio
    async def test_responses_correlate_over_many_calls(self, provider_config):
        """Each result belongs to the request that asked for it."""
        customers = ["CUST-001", "CUST-002", "CUST-003"] * 10
        async with ToolClient(provider_config) as client:
            pid = None
            for customer_id in customers:
                aging = await client.call_tool("get_ar_aging_data", {"customerId": customer_id})
                assert aging["customerId"] == customer_id
                pid = pid or client.session.transport.pid
                assert client.session.transport.pid == pid

    @pytest.mark.asyncio
    async def test_full_collections_scenario(self, provider_config):
        """The ERP tools on one session, with a bad call in the middle."""
        async with ToolClient(provider_config) as client:
            customer_ids = await client.call_tool("get_customers_with_outstanding_balance", {})
            assert customer_ids == ["CUST-001", "CUST-002", "CUST-003"]
            pid = client.session.transport.pid

            aging = await client.call_tool("get_ar_aging_data", {"customerId": "CUST-001"})
            assert aging["totalOutstanding"] == 125000
            assert aging["current"] == 50000
            assert aging["days30"] == 30000
            assert aging["days120Plus"] == 45000
            assert len(aging["invoices"]) == 3

            with pytest.raises(ToolExecutionError) as exc_info:
                await client.call_tool("get_ar_aging_data!!", {"customerId": "CUST-001"})
            assert "get_ar_aging_data!!" in str(exc_info.value)

            history = await client.call_tool("get_payment_history", {"customerId": "CUST-002"})
            assert history["customerId"] == "CUST-002"
            assert 0 <= history["onTimePaymentRate"] <= 1

            result = await client.call_tool(
                "update_customer_notes",
                {"customerId": "CUST-003", "note": "Promised payment by Friday"},
            )
            assert result == {"success": True}
            assert client.session.transport.pid == pid
            assert client.state == ClientState.CONNECTED

    @pytest.mark.asyncio
    async def test_unknown_tool_is_tool_error_and_session_survives(self, provider_config):
        async with ToolClient(provider_config) as client:
            await client.ping()
            pid = client.session.transport.pid

            with pytest.raises(ToolExecutionError) as exc_info:
                await client.call_tool("send_dunning_letter", {})
            assert exc_info.value.tool_name == "send_dunning_letter"
            assert "send_dunning_letter" in exc_info.value.message

            assert await client.ping() is True
            assert client.session.transport.pid == pid

    @pytest.mark.asyncio
    async def test_handler_failure_is_tool_error_and_session_survives(self, provider_config):
        """A handler that raises inside the provider comes back as a tool error."""
        async with ToolClient(provider_config) as client:
            with pytest.raises(ToolExecutionError) as exc_info:
                await client.call_tool("get_ar_aging_data", {"customerId": "CUST-999"})
            assert "CUST-999" in exc_info.value.message
            pid = client.session.transport.pid

            aging = await client.call_tool("get_ar_aging_data", {"customerId": "CUST-002"})
            assert aging["customerId"] == "CUST-002"
            assert client.session.transport.pid == pid

    @pytest.mark.asyncio
    async def test_side_effecting_handler_failure_keeps_session(self, provider_config):
        """A write tool that raises inside the provider is a tool error, not a lost session."""
        async with ToolClient(provider_config) as client:
            await client.ping()
            pid = client.session.transport.pid

            with pytest.raises(ToolExecutionError) as exc_info:
                await client.call_tool(
                    "update_customer_notes", {"customerId": "CUST-999", "note": "Escalate"}
                )
            assert exc_info.value.message == "Customer not found: CUST-999"

            with pytest.raises(ToolExecutionError) as exc_info:
                await client.call_tool(
                    "send_dunning_email", {"customerId": "CUST-001", "recipientEmail": "bob"}
                )
            assert "Invalid recipient address" in exc_info.value.message

            result = await client.call_tool(
                "update_customer_notes", {"customerId": "CUST-001", "note": "Escalate"}
            )
            assert result == {"success": True}
            assert client.session.transport.pid == pid
            assert client.state == ClientState.CONNECTED

    @pytest.mark.asyncio
    async def test_invalid_arguments_are_tool_error(self, provider_config):
        async with ToolClient(provider_config) as client:
            with pytest.raises(ToolExecutionError) as exc_info:
                await client.call_tool("update_customer_notes", {"customerId": "CUST-001"})
            assert "note" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unknown_method_is_rpc_error_and_session_survives(self, provider_config):
        async with ToolClient(provider_config) as client:
            await client.ping()
            with pytest.raises(RpcError) as exc_info:
                await client.session.request("resources/list", {})
            assert exc_info.value.code == METHOD_NOT_FOUND
            assert await client.ping() is True


class TestSessionFatalFailures:
    """Transport and protocol failures discard the session."""

    @pytest.mark.asyncio
    async def test_crash_is_transport_error_and_resets_state(self, fake_provider_config):
        client = ToolClient(fake_provider_config("crash"))
        try:
            await client._ensure_session()
            transport = client.session.transport

            with pytest.raises(TransportError):
                await client.call_tool("echo", {"x": 1})

            assert client.state == ClientState.UNINITIALIZED
            assert client.session is None
            assert not transport.is_alive()
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_next_call_starts_fresh_session(self, fake_provider_config):
        """After a crash the next call spawns a new provider process."""
        client = ToolClient(fake_provider_config("crash_once"))
        try:
            with pytest.raises(TransportError):
                await client.call_tool("echo", {"x": 1})
            assert client.state == ClientState.UNINITIALIZED

            assert await client.call_tool("echo", {"x": 2}) == {"x": 2}
            assert client.state == ClientState.CONNECTED
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_garbage_is_protocol_error(self, fake_provider_config):
        client = ToolClient(fake_provider_config("garbage"))
        try:
            with pytest.raises(ProtocolError):
                await client.call_tool("echo", {})
            assert client.state == ClientState.UNINITIALIZED
            assert client.session is None
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_mismatched_id_is_protocol_error(self, fake_provider_config):
        client = ToolClient(fake_provider_config("mismatch"))
        try:
            with pytest.raises(ProtocolError) as exc_info:
                await client.call_tool("echo", {})
            assert "does not match" in str(exc_info.value)
            assert client.session is None
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_empty_content_is_protocol_error(self, fake_provider_config):
        client = ToolClient(fake_provider_config("no_text"))
        try:
            with pytest.raises(ProtocolError):
                await client.call_tool("echo", {})
            assert client.state == ClientState.UNINITIALIZED
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_tools_list_without_array_is_protocol_error(self, fake_provider_config):
        client = ToolClient(fake_provider_config("bad_tools"))
        try:
            with pytest.raises(ProtocolError):
                await client.list_tools()
            assert client.session is None
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_close_after_failure_is_safe(self, fake_provider_config):
        client = ToolClient(fake_provider_config("crash"))
        with pytest.raises(TransportError):
            await client.call_tool("echo", {})
        await client.close()
        await client.close()
        assert client.state == ClientState.CLOSED
