"""
ReflectRPC Client

Simple synchronous client: connect on demand, send one InvokeMessage,
block for its InvokeResult.

Before each request any unread bytes from an earlier, abandoned
response are discarded so a late answer is never taken for the current
one.
"""

import logging
import queue
import threading
import time
from typing import Any, Callable, Optional, Union

from .. import BUFFER_SIZE, DEFAULT_PORT
from ..errors import ProtocolError, RemoteInvokeError, TransportError
from ..net import Endpoint, Framing, TcpClient, format_endpoint, get_framing
from ..protocol import InvokeMessage, InvokeResult


logger = logging.getLogger(__name__)

# Seconds to wait for a response
DEFAULT_READ_TIMEOUT = 5.0

# Seconds to wait for a connection
DEFAULT_CONNECT_TIMEOUT = 5.0

# Response wait slice while watching for cancellation (seconds)
WAIT_SLICE = 0.1


class RPCClient:
    """
    Synchronous RPC client.

    Usage:
        client = RPCClient("127.0.0.1", 2023)
        result = client.call("Calc", "Add", 2, 3)
        print(result.return_value)  # 5
        client.close()

    Raises TransportError when the server cannot be reached. With
    raise_on_error=True, non-success results raise RemoteInvokeError.
    """

    def __init__(
        self,
        host: Optional[str] = "127.0.0.1",
        port: int = DEFAULT_PORT,
        *,
        framing: Union[str, Framing] = "raw",
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        raise_on_error: bool = False,
        buffer_size: int = BUFFER_SIZE,
    ):
        """
        Initialize client.

        Args:
            host: Server address
            port: Server port
            framing: "raw", "length" or a Framing instance (must match the server)
            read_timeout: Seconds to wait for each response
            connect_timeout: Seconds to wait for a connection
            raise_on_error: Raise RemoteInvokeError for non-success results
            buffer_size: Receive buffer size in bytes
        """
        self.host = host
        self.port = port
        self.framing = get_framing(framing) if isinstance(framing, str) else framing
        self.read_timeout = read_timeout
        self.raise_on_error = raise_on_error

        self._transport = TcpClient(
            name="rpc-client",
            buffer_size=buffer_size,
            connect_timeout=connect_timeout,
        )
        self._transport.on_connected = self._on_connected
        self._transport.on_disconnected = self._on_disconnected
        self._transport.on_data_received = self._on_data_received

        self._decoder = self.framing.decoder()
        self._decoder_lock = threading.Lock()
        self._responses: "queue.Queue[bytes]" = queue.Queue()

        # One outstanding request at a time
        self._call_lock = threading.Lock()

        self._connected = False
        self.on_connection_state_changed: Optional[Callable[[bool], None]] = None

        # Statistics
        self._calls = 0
        self._timeouts = 0
        self._drained = 0

    @property
    def is_connected(self) -> bool:
        return self._transport.is_connected

    @property
    def remote(self) -> Optional[Endpoint]:
        if self.host is None:
            return None
        return (self.host, self.port)

    def connect(self) -> bool:
        """
        Connect to the server, waiting for the outcome.

        Returns:
            bool: True if connected
        """
        if self.is_connected:
            return True
        if self.host is None:
            return False
        self._transport.close()
        return self._transport.connect(self.host, self.port, wait=True)

    def close(self) -> None:
        self._transport.close()

    def call(self, object_name: str, method_name: str, *parameters: Any,
             asynchronous: bool = False) -> InvokeResult:
        """
        Invoke a remote method.

        Args:
            object_name: Registered object name
            method_name: Method name
            *parameters: Arguments
            asynchronous: Let the server post the call and answer at once

        Returns:
            InvokeResult

        Raises:
            TransportError: If the server cannot be reached
            RemoteInvokeError: With raise_on_error, for non-success results
        """
        message = InvokeMessage(object_name, method_name, parameters, asynchronous)
        return self.call_message(message)

    def call_message(self, message: InvokeMessage, timeout: Optional[float] = None) -> InvokeResult:
        """
        Send a prepared InvokeMessage and wait for its result.

        Raises:
            TransportError: If the server cannot be reached
            RemoteInvokeError: With raise_on_error, for non-success results
        """
        if not self.connect():
            raise TransportError(f"Cannot connect to {format_endpoint(self.remote)}")

        result = self._exchange(message, timeout)
        if result is None:
            raise TransportError(f"Connection to {format_endpoint(self.remote)} lost")
        return self._check(result)

    def _exchange(
        self,
        message: InvokeMessage,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[InvokeResult]:
        """
        Drain, send and wait for one response.

        Returns:
            The result, a TIMEOUT result, or None if the request could not
            be sent, the connection dropped or the wait was cancelled
        """
        timeout = self.read_timeout if timeout is None else timeout
        label = message.object_method

        with self._call_lock:
            self._calls += 1
            self._drain()

            if not self._transport.send_bytes(self.framing.encode(message.to_bytes())):
                return None

            deadline = time.monotonic() + timeout
            while True:
                if cancel is not None and cancel.is_set():
                    return None

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._timeouts += 1
                    logger.warning(f"Invoke '{label}' timed out after {timeout:.1f}s")
                    return InvokeResult.timeout(label)

                try:
                    payload = self._responses.get(timeout=min(remaining, WAIT_SLICE))
                except queue.Empty:
                    if not self._transport.is_connected:
                        return None
                    continue

                try:
                    return InvokeResult.parse(payload)
                except ProtocolError as e:
                    logger.warning(f"Invalid response to '{label}': {e}")
                    return InvokeResult.unknown(label, f"Invalid response: {e}")

    def _check(self, result: InvokeResult) -> InvokeResult:
        if self.raise_on_error and not result.succeeded:
            raise RemoteInvokeError(result)
        return result

    def _drain(self) -> None:
        """Discard stale responses and partial frames."""
        with self._decoder_lock:
            self._decoder.reset()
        while True:
            try:
                self._responses.get_nowait()
            except queue.Empty:
                break
            self._drained += 1
            logger.debug("Discarded a stale response")

    def _on_data_received(self, endpoint: Endpoint, data: bytes) -> None:
        with self._decoder_lock:
            try:
                payloads = self._decoder.feed(data)
            except ProtocolError as e:
                logger.warning(f"Corrupt response stream from {format_endpoint(endpoint)}: {e}")
                self._decoder.reset()
                return
        for payload in payloads:
            self._responses.put(payload)

    def _on_connected(self, endpoint: Endpoint) -> None:
        logger.info(f"Connected to {format_endpoint(endpoint)}")
        self._set_connected(True)

    def _on_disconnected(self, endpoint: Endpoint) -> None:
        logger.info(f"Disconnected from {format_endpoint(endpoint)}")
        self._set_connected(False)

    def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        if self.on_connection_state_changed:
            self.on_connection_state_changed(connected)

    def get_statistics(self) -> dict:
        return {
            "remote": format_endpoint(self.remote),
            "connected": self.is_connected,
            "calls": self._calls,
            "timeouts": self._timeouts,
            "drained": self._drained,
            "transport": self._transport.get_statistics(),
        }

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} remote={format_endpoint(self.remote)} connected={self.is_connected}>"
