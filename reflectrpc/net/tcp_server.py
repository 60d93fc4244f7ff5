"""
ReflectRPC TCP Server Transport

Multi-client TCP listener.

Features:
- One accept thread, one read thread per connection
- Per-connection reusable receive buffer
- Connection registry keyed by remote endpoint
- Graceful (zero-byte read) and faulted disconnect detection
"""

import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .base import (
    BaseTransport,
    Endpoint,
    POLL_INTERVAL,
    TransportState,
    format_endpoint,
    receive_buffer_size,
)


logger = logging.getLogger(__name__)

# Listen backlog
DEFAULT_BACKLOG = 16


@dataclass
class Connection:
    """Accepted client connection."""
    endpoint: Endpoint
    sock: socket.socket
    buffer: bytearray
    connected_at: float = field(default_factory=time.time)
    thread: Optional[threading.Thread] = None
    closed: bool = False


class TcpServer(BaseTransport):
    """
    TCP server accepting any number of clients.

    Received data is delivered on the connection's own read thread, so
    a handler that answers before returning keeps the connection strictly
    request/response ordered.

    Usage:
        server = TcpServer("0.0.0.0", 2023)
        server.on_data_received = lambda ep, data: server.send_bytes(data, ep)
        server.start()
        ...
        server.stop()
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 0,
        name: str = "tcp-server",
        backlog: int = DEFAULT_BACKLOG,
    ):
        """
        Initialize TCP server.

        Args:
            host: Local address to bind
            port: Local port (0 picks an ephemeral port)
            name: Name for logs and threads
            backlog: Listen backlog
        """
        super().__init__(name)
        self.host = host
        self._port = port
        self._backlog = backlog

        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False

        # Connection registry: endpoint -> Connection
        self._connections: Dict[Endpoint, Connection] = {}
        self._lock = threading.Lock()

        self._accepted = 0

    @property
    def port(self) -> int:
        """Bound port (the ephemeral port once started)."""
        return self._port

    @property
    def is_running(self) -> bool:
        """Check if server is accepting connections."""
        return self._running

    @property
    def clients(self) -> List[Endpoint]:
        """Endpoints of currently connected clients."""
        with self._lock:
            return list(self._connections.keys())

    def start(self) -> None:
        """
        Bind, listen and start the accept thread.

        Raises:
            OSError: If the address cannot be bound
        """
        if self._running:
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self._port))
            sock.listen(self._backlog)
        except OSError:
            sock.close()
            self._state = TransportState.ERROR
            raise

        sock.settimeout(POLL_INTERVAL)  # For clean shutdown
        self._socket = sock
        self._port = sock.getsockname()[1]

        self._running = True
        self._state = TransportState.LISTENING
        self._thread = threading.Thread(
            target=self._serve_loop,
            daemon=True,
            name=f"{self.name}-accept",
        )
        self._thread.start()

        logger.info(f"{self.name}: listening on {self.host}:{self._port}")

    def stop(self) -> None:
        """Stop accepting and close every connection."""
        if not self._running:
            return
        self._running = False

        if self._socket:
            self._socket.close()
            self._socket = None

        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None

        with self._lock:
            connections = list(self._connections.values())
        for conn in connections:
            self._close_connection(conn)
        for conn in connections:
            if conn.thread and conn.thread is not threading.current_thread():
                conn.thread.join(timeout=5.0)

        self._state = TransportState.CLOSED
        logger.info(f"{self.name}: stopped")

    def close(self) -> None:
        self.stop()

    def send_bytes(self, data: bytes, endpoint: Optional[Endpoint] = None) -> bool:
        """
        Send data to one connected client.

        Args:
            data: Payload
            endpoint: Client endpoint (required)

        Returns:
            bool: False if the server is stopped, the endpoint is unknown
                or disconnected, or the write failed
        """
        if not self._running or endpoint is None or not data:
            return False

        with self._lock:
            conn = self._connections.get(endpoint)
        if conn is None or conn.closed:
            return False

        try:
            conn.sock.sendall(data)
        except OSError as e:
            self._send_errors += 1
            self._fire_exception(endpoint, e)
            return False

        self._bytes_sent += len(data)
        return True

    def disconnect(self, endpoint: Endpoint) -> bool:
        """
        Close one client connection.

        Returns:
            bool: True if the endpoint was connected
        """
        with self._lock:
            conn = self._connections.get(endpoint)
        if conn is None:
            return False
        self._close_connection(conn)
        return True

    def _serve_loop(self) -> None:
        """Accept loop."""
        listener = self._socket
        while self._running:
            try:
                sock, address = listener.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    self._fire_exception((self.host, self._port), e)
                    continue
                break

            endpoint: Endpoint = (address[0], address[1])
            sock.settimeout(None)
            conn = Connection(
                endpoint=endpoint,
                sock=sock,
                buffer=bytearray(receive_buffer_size(sock)),
            )
            with self._lock:
                self._connections[endpoint] = conn
            self._accepted += 1

            conn.thread = threading.Thread(
                target=self._read_loop,
                args=(conn,),
                daemon=True,
                name=f"{self.name}-{format_endpoint(endpoint)}",
            )
            self._fire_connected(endpoint)
            conn.thread.start()

    def _read_loop(self, conn: Connection) -> None:
        """Per-connection read loop."""
        view = memoryview(conn.buffer)
        try:
            while self._running and not conn.closed:
                try:
                    count = conn.sock.recv_into(view)
                except OSError as e:
                    if self._running and not conn.closed:
                        self._receive_errors += 1
                        self._fire_exception(conn.endpoint, e)
                    break

                if count == 0:
                    break

                self._fire_data_received(conn.endpoint, bytes(view[:count]))
        finally:
            self._close_connection(conn)
            self._remove_connection(conn)

    def _close_connection(self, conn: Connection) -> None:
        if conn.closed:
            return
        conn.closed = True
        try:
            conn.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already reset by the peer
            pass
        conn.sock.close()

    def _remove_connection(self, conn: Connection) -> None:
        with self._lock:
            if self._connections.get(conn.endpoint) is not conn:
                return
            del self._connections[conn.endpoint]
        self._fire_disconnected(conn.endpoint)

    def get_statistics(self) -> dict:
        stats = super().get_statistics()
        stats["accepted"] = self._accepted
        stats["clients"] = len(self.clients)
        return stats
