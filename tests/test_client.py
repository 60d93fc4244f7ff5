"""
Tests for the simple and reliable RPC clients.

Tests cover:
- Read timeouts and stale response draining
- raise_on_error
- Unreachable servers
- Background reconnect and call behaviour while disconnected
- Cancellation
"""

import threading
import time

import pytest

from reflectrpc import (
    InvokeStatusCode,
    RemoteInvokeError,
    ReliableRPCClient,
    RPCClient,
    RPCServer,
    TransportError,
)

from conftest import Calculator, wait_for


@pytest.fixture
def fixed_port_server(free_port):
    """Server on a known port, not started."""
    rpc_server = RPCServer(host="127.0.0.1", port=free_port, name="late")
    rpc_server.register_object("Calc", Calculator())
    yield rpc_server
    rpc_server.stop()


class TestRPCClient:
    """Tests for RPCClient."""

    def test_timeout_then_stale_response_discarded(self, server):
        with RPCClient("127.0.0.1", server.port, read_timeout=0.2) as client:
            slow = client.call("Calc", "Slow", 0.6)
            assert slow.status_code == InvokeStatusCode.TIMEOUT
            assert slow.object_method == "Calc.Slow"

            # Let the late answer arrive before the next request
            time.sleep(1.0)
            result = client.call("Calc", "Add", 2, 3)

            assert result.return_value == 5
            stats = client.get_statistics()
            assert stats["timeouts"] == 1
            assert stats["drained"] == 1

    def test_raise_on_error(self, server):
        with RPCClient("127.0.0.1", server.port, raise_on_error=True) as client:
            with pytest.raises(RemoteInvokeError) as exc_info:
                client.call("Calc", "Missing")

            assert exc_info.value.result.status_code == InvokeStatusCode.FAILED
            assert client.call("Calc", "Add", 1, 1).return_value == 2

    def test_unreachable_server(self, free_port):
        client = RPCClient("127.0.0.1", free_port, connect_timeout=1.0)
        with pytest.raises(TransportError):
            client.call("Calc", "Add", 1, 2)
        client.close()

    def test_reconnects_on_next_call(self, fixed_port_server):
        fixed_port_server.start()
        client = RPCClient("127.0.0.1", fixed_port_server.port)
        try:
            assert client.call("Calc", "Add", 1, 2).return_value == 3

            fixed_port_server.stop()
            assert wait_for(lambda: not client.is_connected)
            with pytest.raises(TransportError):
                client.call("Calc", "Add", 1, 2)

            fixed_port_server.start()
            assert client.call("Calc", "Add", 2, 2).return_value == 4
        finally:
            client.close()

    def test_connection_state_callback(self, server):
        states = []
        client = RPCClient("127.0.0.1", server.port)
        client.on_connection_state_changed = states.append

        client.call("Calc", "Add", 1, 2)
        client.close()

        assert wait_for(lambda: states == [True, False])


class TestReliableRPCClient:
    """Tests for ReliableRPCClient."""

    def test_requires_host_or_name(self):
        with pytest.raises(ValueError):
            ReliableRPCClient(None, 2023)

    def test_call_while_disconnected_returns_none(self, free_port):
        client = ReliableRPCClient("127.0.0.1", free_port, reconnect_interval=0.1)
        try:
            assert client.call("Calc", "Add", 1, 2) is None
            assert client.is_running
            assert wait_for(lambda: client.attempts >= 2)
        finally:
            client.stop()

    def test_connects_when_server_starts_late(self, fixed_port_server):
        client = ReliableRPCClient("127.0.0.1", fixed_port_server.port, reconnect_interval=0.1)
        client.start()
        try:
            time.sleep(0.3)
            assert not client.is_connected

            fixed_port_server.start()
            assert client.wait_connected(5.0)
            assert client.call("Calc", "Add", 20, 22).return_value == 42
            assert wait_for(lambda: client.attempts == 0)
        finally:
            client.stop()

    def test_reconnects_after_server_restart(self, fixed_port_server):
        fixed_port_server.start()
        client = ReliableRPCClient("127.0.0.1", fixed_port_server.port, reconnect_interval=0.1)
        client.start()
        try:
            assert client.wait_connected(5.0)

            fixed_port_server.stop()
            assert wait_for(lambda: not client.is_connected)
            assert client.call("Calc", "Add", 1, 2) is None
            time.sleep(0.3)

            fixed_port_server.start()
            assert client.wait_connected(5.0)
            assert client.call("Calc", "Add", 1, 2).return_value == 3
            assert wait_for(lambda: client.get_statistics()["reconnects"] >= 1)
        finally:
            client.stop()

    def test_cancelled_call_returns_none(self, server):
        client = ReliableRPCClient("127.0.0.1", server.port, reconnect_interval=0.1)
        client.start()
        try:
            assert client.wait_connected(5.0)

            cancel = threading.Event()
            threading.Timer(0.2, cancel.set).start()
            assert client.call("Calc", "Slow", 1.0, cancel=cancel) is None
        finally:
            client.stop()

    def test_per_call_timeout(self, server):
        client = ReliableRPCClient("127.0.0.1", server.port, reconnect_interval=0.1)
        client.start()
        try:
            assert client.wait_connected(5.0)
            result = client.call("Calc", "Slow", 0.5, timeout=0.1)
            assert result.status_code == InvokeStatusCode.TIMEOUT
        finally:
            client.stop()

    def test_wait_connected_times_out(self, free_port):
        client = ReliableRPCClient("127.0.0.1", free_port, reconnect_interval=0.1)
        client.start()
        try:
            assert not client.wait_connected(0.3)
        finally:
            client.stop()
