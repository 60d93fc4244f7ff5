"""
ReflectRPC TCP Client Transport

Single-connection TCP client with a background I/O thread.

Features:
- Non-blocking connect (optionally waited on)
- Fixed-size receive buffer
- Half-open connection detection in is_connected
- Disconnected event on zero-byte read or read failure
"""

import logging
import socket
import threading
from typing import Optional

from .base import (
    BaseTransport,
    Endpoint,
    TransportState,
    format_endpoint,
    is_socket_alive,
)


logger = logging.getLogger(__name__)

# Receive buffer size (bytes)
DEFAULT_BUFFER_SIZE = 8192

# Connect timeout (seconds)
DEFAULT_CONNECT_TIMEOUT = 5.0


class TcpClient(BaseTransport):
    """
    TCP client transport.

    connect() returns immediately; the connection is established on the
    client's I/O thread which then fires on_connected (or on_exception on
    failure) and keeps reading until the connection drops.

    Usage:
        client = TcpClient()
        client.on_data_received = handle
        if client.connect("127.0.0.1", 2023, wait=True):
            client.send_bytes(b"...")
        client.close()
    """

    def __init__(
        self,
        name: str = "tcp-client",
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ):
        super().__init__(name)
        self._buffer = bytearray(buffer_size)
        self._connect_timeout = connect_timeout

        self._sock: Optional[socket.socket] = None
        self._remote: Optional[Endpoint] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._closing = False

    @property
    def remote(self) -> Optional[Endpoint]:
        """Endpoint of the last connect() call."""
        return self._remote

    @property
    def is_connected(self) -> bool:
        """
        True if connected and the peer has not closed its side.
        """
        return self._state == TransportState.CONNECTED and is_socket_alive(self._sock)

    def connect(self, host: str, port: int, wait: bool = False) -> bool:
        """
        Start connecting to a server.

        Args:
            host: Server address
            port: Server port
            wait: Block until the attempt completes

        Returns:
            bool: With wait, whether the connection was established.
                Without wait, whether an attempt was started (False if a
                connection is already open or in progress).
        """
        with self._lock:
            if self._state in (TransportState.CONNECTING, TransportState.CONNECTED):
                return False
            self._closing = False
            self._remote = (host, port)
            self._state = TransportState.CONNECTING

            attempt_done = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(host, port, attempt_done),
                daemon=True,
                name=f"{self.name}-io",
            )
            self._thread.start()

        if not wait:
            return True

        attempt_done.wait(self._connect_timeout + 1.0)
        return self._state == TransportState.CONNECTED

    def close(self) -> None:
        """Close the connection and wait for the I/O thread to exit."""
        with self._lock:
            self._closing = True
            sock = self._sock
            thread = self._thread
            self._thread = None

        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                # Not connected
                pass
            sock.close()

        if thread and thread is not threading.current_thread():
            thread.join(timeout=self._connect_timeout + 1.0)

        self._state = TransportState.CLOSED

    def send_bytes(self, data: bytes, endpoint: Optional[Endpoint] = None) -> bool:
        """
        Send data to the server.

        Returns:
            bool: False if not connected or the write failed
        """
        sock = self._sock
        if sock is None or self._state != TransportState.CONNECTED or not data:
            return False

        try:
            sock.sendall(data)
        except OSError as e:
            self._send_errors += 1
            self._fire_exception(self._remote, e)
            return False

        self._bytes_sent += len(data)
        return True

    def _run(self, host: str, port: int, attempt_done: threading.Event) -> None:
        """Connect, then read until the connection drops."""
        try:
            sock = socket.create_connection((host, port), timeout=self._connect_timeout)
        except OSError as e:
            self._state = TransportState.ERROR
            attempt_done.set()
            self._fire_exception((host, port), e)
            return

        sock.settimeout(None)
        with self._lock:
            if self._closing:
                sock.close()
                self._state = TransportState.CLOSED
                attempt_done.set()
                return
            self._sock = sock
            self._state = TransportState.CONNECTED

        endpoint: Endpoint = (host, port)
        logger.debug(f"{self.name}: connected to {format_endpoint(endpoint)}")
        self._fire_connected(endpoint)
        attempt_done.set()

        view = memoryview(self._buffer)
        try:
            while True:
                try:
                    count = sock.recv_into(view)
                except OSError as e:
                    if not self._closing:
                        self._receive_errors += 1
                        self._fire_exception(endpoint, e)
                    break

                if count == 0:
                    break

                self._fire_data_received(endpoint, bytes(view[:count]))
        finally:
            with self._lock:
                if self._sock is sock:
                    self._sock = None
                    self._state = TransportState.CLOSED
            sock.close()
            self._fire_disconnected(endpoint)
