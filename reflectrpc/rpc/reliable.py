"""
ReflectRPC Reliable Client

Long-lived client that keeps its connection up by itself.

Features:
- Background reconnect loop: fixed interval, escalating to a longer
  interval after a number of failed attempts
- Optional UDP discovery of the server address by server name
- Per-call read timeout and cancellation event
- Transport failures never raise: the call is left unresolved (None)
  and a reconnect is scheduled
"""

import logging
import threading
import time
from typing import Any, Optional

from .. import DEFAULT_PORT
from ..net import discover_server, format_endpoint
from ..net.discovery import DEFAULT_BROADCAST_ADDRESS
from ..protocol import InvokeMessage, InvokeResult
from .client import RPCClient


logger = logging.getLogger(__name__)

# Reconnect backoff
DEFAULT_RECONNECT_INTERVAL = 5.0        # seconds between attempts
DEFAULT_RECONNECT_INTERVAL_LONG = 10.0  # seconds, after the threshold
DEFAULT_RECONNECT_THRESHOLD = 120       # attempts before escalating

# Liveness re-check interval while connected (seconds)
LIVENESS_INTERVAL = 1.0


class ReliableRPCClient(RPCClient):
    """
    Self-reconnecting RPC client.

    Usage:
        client = ReliableRPCClient("192.168.1.10", 2023)
        client.start()
        result = client.call("Calc", "Add", 2, 3)
        if result is None:
            ...  # not connected; a reconnect is already under way
        client.stop()

        # Locate the server by name instead of address
        client = ReliableRPCClient.from_discovery("demo", 2023)
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: int = DEFAULT_PORT,
        *,
        server_name: Optional[str] = None,
        broadcast_address: str = DEFAULT_BROADCAST_ADDRESS,
        reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL,
        reconnect_interval_long: float = DEFAULT_RECONNECT_INTERVAL_LONG,
        reconnect_threshold: int = DEFAULT_RECONNECT_THRESHOLD,
        **kwargs: Any,
    ):
        """
        Initialize client.

        Args:
            host: Server address (None to discover it by server_name)
            port: Server port, also the discovery port
            server_name: Name to discover when host is None
            broadcast_address: Destination of discovery broadcasts
            reconnect_interval: Seconds between reconnect attempts
            reconnect_interval_long: Seconds between attempts after the threshold
            reconnect_threshold: Failed attempts before the longer interval
            **kwargs: Passed to RPCClient (framing, read_timeout, ...)

        Raises:
            ValueError: If neither host nor server_name is given
        """
        if host is None and not server_name:
            raise ValueError("Either host or server_name is required")

        super().__init__(host, port, **kwargs)
        self.server_name = server_name
        self.broadcast_address = broadcast_address
        self.reconnect_interval = reconnect_interval
        self.reconnect_interval_long = reconnect_interval_long
        self.reconnect_threshold = reconnect_threshold

        self._stop_event = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._attempts = 0
        self._reconnects = 0

    @classmethod
    def from_discovery(cls, server_name: str, port: int = DEFAULT_PORT, **kwargs: Any) -> "ReliableRPCClient":
        """Client that finds its server by UDP broadcast."""
        return cls(None, port, server_name=server_name, **kwargs)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def attempts(self) -> int:
        """Failed connection attempts since the last success."""
        return self._attempts

    def start(self) -> None:
        """Start the background connection loop."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._connection_loop,
            daemon=True,
            name="rpc-reconnect",
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop reconnecting and close the connection."""
        self._stop_event.set()
        self._wake.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=5.0)
        self._thread = None
        self._transport.close()

    def close(self) -> None:
        self.stop()

    def wait_connected(self, timeout: Optional[float] = None) -> bool:
        """
        Block until connected.

        Returns:
            bool: True if connected before the timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.is_connected:
            if self._stop_event.is_set():
                return False
            if deadline is not None and time.monotonic() >= deadline:
                return False
            self._stop_event.wait(0.05)
        return True

    def call(self, object_name: str, method_name: str, *parameters: Any,
             asynchronous: bool = False, timeout: Optional[float] = None,
             cancel: Optional[threading.Event] = None) -> Optional[InvokeResult]:
        """
        Invoke a remote method.

        Args:
            object_name: Registered object name
            method_name: Method name
            *parameters: Arguments
            asynchronous: Let the server post the call and answer at once
            timeout: Read timeout override (seconds)
            cancel: Event that abandons the wait when set

        Returns:
            InvokeResult (TIMEOUT if no answer in time), or None if not
            connected, the connection dropped or the call was cancelled

        Raises:
            RemoteInvokeError: With raise_on_error, for non-success results
        """
        message = InvokeMessage(object_name, method_name, parameters, asynchronous)
        return self.call_message(message, timeout, cancel)

    def call_message(self, message: InvokeMessage, timeout: Optional[float] = None,
                     cancel: Optional[threading.Event] = None) -> Optional[InvokeResult]:
        if not self.is_running:
            self.start()

        if not self.is_connected:
            logger.debug(f"Invoke '{message.object_method}' while disconnected")
            self._wake.set()
            return None

        result = self._exchange(message, timeout, cancel)
        if result is None:
            if not self.is_connected:
                self._wake.set()
            return None
        return self._check(result)

    def _connection_loop(self) -> None:
        """Discover, connect and reconnect until stopped."""
        while not self._stop_event.is_set():
            if self.is_connected:
                self._wake.wait(LIVENESS_INTERVAL)
                self._wake.clear()
                continue

            if self.host is None:
                found = discover_server(
                    self.server_name,
                    self.port,
                    cancel=self._stop_event,
                    broadcast_address=self.broadcast_address,
                )
                if found is None:
                    continue
                self.host, self.port = found

            if self.connect():
                if self._attempts:
                    self._reconnects += 1
                    logger.info(f"Reconnected to {format_endpoint(self.remote)} after {self._attempts} attempts")
                self._attempts = 0
                continue

            self._attempts += 1
            interval = self.reconnect_interval
            if self._attempts >= self.reconnect_threshold:
                interval = self.reconnect_interval_long
            logger.warning(
                f"Connect to {format_endpoint(self.remote)} failed "
                f"(attempt {self._attempts}), retrying in {interval:.1f}s"
            )
            self._stop_event.wait(interval)

    def _on_disconnected(self, endpoint) -> None:
        super()._on_disconnected(endpoint)
        self._wake.set()

    def get_statistics(self) -> dict:
        stats = super().get_statistics()
        stats["attempts"] = self._attempts
        stats["reconnects"] = self._reconnects
        stats["server_name"] = self.server_name
        return stats
