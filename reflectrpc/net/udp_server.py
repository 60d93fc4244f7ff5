"""
ReflectRPC UDP Server Transport

Connectionless datagram listener that tracks the peers it has heard from.

Features:
- Synthetic connected event on the first datagram from a new endpoint
- Reply to one peer, or broadcast to every known peer
- Optional SO_BROADCAST for discovery responders
"""

import logging
import socket
import threading
from typing import List, Optional, Set

from .base import (
    BaseTransport,
    Endpoint,
    MAX_RECEIVE_BUFFER,
    POLL_INTERVAL,
    TransportState,
)


logger = logging.getLogger(__name__)


class UdpServer(BaseTransport):
    """
    UDP server transport.

    There is no teardown signal for UDP peers: once seen, an endpoint
    stays in the peer set until the server stops.

    Usage:
        server = UdpServer("0.0.0.0", 2023)
        server.on_data_received = lambda ep, data: server.send_bytes(b"ack", ep)
        server.start()
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 0,
        name: str = "udp-server",
        buffer_size: int = MAX_RECEIVE_BUFFER,
        broadcast: bool = False,
    ):
        super().__init__(name)
        self.host = host
        self._port = port
        self._buffer_size = buffer_size
        self._broadcast = broadcast

        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False

        self._peers: Set[Endpoint] = set()
        self._lock = threading.Lock()

    @property
    def port(self) -> int:
        """Bound port (the ephemeral port once started)."""
        return self._port

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def clients(self) -> List[Endpoint]:
        """Endpoints heard from so far."""
        with self._lock:
            return list(self._peers)

    def start(self) -> None:
        """
        Bind and start the receive thread.

        Raises:
            OSError: If the address cannot be bound
        """
        if self._running:
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if self._broadcast:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        try:
            sock.bind((self.host, self._port))
        except OSError:
            sock.close()
            self._state = TransportState.ERROR
            raise

        sock.settimeout(POLL_INTERVAL)
        self._socket = sock
        self._port = sock.getsockname()[1]

        self._running = True
        self._state = TransportState.LISTENING
        self._thread = threading.Thread(
            target=self._serve_loop,
            daemon=True,
            name=f"{self.name}-recv",
        )
        self._thread.start()

        logger.info(f"{self.name}: listening on udp {self.host}:{self._port}")

    def stop(self) -> None:
        """Stop receiving and forget all peers."""
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

    def close(self) -> None:
        self.stop()

    def send_bytes(self, data: bytes, endpoint: Optional[Endpoint] = None) -> bool:
        """
        Send a datagram.

        Args:
            data: Payload
            endpoint: Destination; None sends to every known peer

        Returns:
            bool: False if stopped, or any send failed
        """
        if not self._running or self._socket is None or not data:
            return False

        if endpoint is None:
            targets = self.clients
        else:
            targets = [endpoint]

        ok = bool(targets)
        for target in targets:
            try:
                self._socket.sendto(data, target)
            except OSError as e:
                self._send_errors += 1
                self._fire_exception(target, e)
                ok = False
                continue
            self._bytes_sent += len(data)
            self._track_peer(target)
        return ok

    def _serve_loop(self) -> None:
        while self._running:
            try:
                data, address = self._socket.recvfrom(self._buffer_size)
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    self._receive_errors += 1
                    self._fire_exception((self.host, self._port), e)
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
