"""
ReflectRPC UDP Client Transport

Datagram client with a default remote endpoint and a receive thread.
"""

import logging
import socket
import threading
from typing import Optional, Set

from .base import (
    BaseTransport,
    Endpoint,
    MAX_RECEIVE_BUFFER,
    POLL_INTERVAL,
    TransportState,
)


logger = logging.getLogger(__name__)


class UdpClient(BaseTransport):
    """
    UDP client transport.

    connect() only records the default destination; the first datagram
    sent to or received from an endpoint fires on_connected for it.

    Usage:
        client = UdpClient(broadcast=True)
        client.open()
        client.send_bytes(b"DISCOVER:demo", ("255.255.255.255", 2023))
        client.close()
    """

    def __init__(
        self,
        name: str = "udp-client",
        buffer_size: int = MAX_RECEIVE_BUFFER,
        broadcast: bool = False,
    ):
        super().__init__(name)
        self._buffer_size = buffer_size
        self._broadcast = broadcast

        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._remote: Optional[Endpoint] = None

        self._peers: Set[Endpoint] = set()
        self._lock = threading.Lock()

    @property
    def remote(self) -> Optional[Endpoint]:
        """Default destination set by connect()."""
        return self._remote

    @property
    def local_port(self) -> int:
        if self._socket is None:
            return 0
        return self._socket.getsockname()[1]

    def open(self, local_port: int = 0) -> None:
        """
        Bind a local socket and start the receive thread.

        Raises:
            OSError: If the local port cannot be bound
        """
        if self._running:
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        if self._broadcast:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        try:
            sock.bind(("", local_port))
        except OSError:
            sock.close()
            self._state = TransportState.ERROR
            raise

        sock.settimeout(POLL_INTERVAL)
        self._socket = sock
        self._running = True
        self._state = TransportState.LISTENING
        self._thread = threading.Thread(
            target=self._receive_loop,
            daemon=True,
            name=f"{self.name}-recv",
        )
        self._thread.start()

    def connect(self, host: str, port: int) -> bool:
        """
        Set the default destination, opening the socket if needed.

        Returns:
            bool: True once the socket is open
        """
        self._remote = (host, port)
        if not self._running:
            try:
                self.open()
            except OSError as e:
                self._fire_exception(self._remote, e)
                return False
        self._state = TransportState.CONNECTED
        return True

    def close(self) -> None:
        if not self._running:
            return
        self._running = False

        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None

        if self._socket:
            self._socket.close()
            self._socket = None

        with self._lock:
            self._peers.clear()
        self._state = TransportState.CLOSED

    def send_bytes(self, data: bytes, endpoint: Optional[Endpoint] = None) -> bool:
        """
        Send a datagram to endpoint, or to the default destination.

        Returns:
            bool: False if closed, no destination is known, or sendto failed
        """
        target = endpoint or self._remote
        if not self._running or self._socket is None or target is None or not data:
            return False

        try:
            self._socket.sendto(data, target)
        except OSError as e:
            self._send_errors += 1
            self._fire_exception(target, e)
            return False

        self._bytes_sent += len(data)
        self._track_peer(target)
        return True

    def _receive_loop(self) -> None:
        while self._running:
            try:
                data, address = self._socket.recvfrom(self._buffer_size)
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    self._receive_errors += 1
                    self._fire_exception(self._remote, e)
                    continue
                break

            endpoint: Endpoint = (address[0], address[1])
            self._track_peer(endpoint)
            self._fire_data_received(endpoint, data)

    def _track_peer(self, endpoint: Endpoint) -> None:
        with self._lock:
            if endpoint in self._peers:
                return
            self._peers.add(endpoint)
        self._fire_connected(endpoint)
