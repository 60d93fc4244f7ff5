"""
ReflectRPC Transport Base Class

Defines the interface shared by the TCP and UDP transports.

Design Principles:
- Blocking sockets driven by daemon threads
- Events delivered through callbacks (connected, disconnected,
  data received, exception)
- send_bytes() never raises: it reports whether the data was accepted
- Statistics tracking
"""

import logging
import select
import socket
from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import Callable, Optional, Tuple


logger = logging.getLogger(__name__)

# Remote endpoint: (host, port)
Endpoint = Tuple[str, int]

# Receive buffer bounds for accepted connections
MIN_RECEIVE_BUFFER = 2048
MAX_RECEIVE_BUFFER = 8192

# Accept/receive poll interval for clean shutdown (seconds)
POLL_INTERVAL = 1.0

ConnectedCallback = Callable[[Endpoint], None]
DisconnectedCallback = Callable[[Endpoint], None]
DataReceivedCallback = Callable[[Endpoint, bytes], None]
ExceptionCallback = Callable[[Endpoint, BaseException], None]


class TransportState(Enum):
    """Transport lifecycle state."""
    CLOSED = auto()       # Not started / fully closed
    CONNECTING = auto()   # Client connect in progress
    CONNECTED = auto()    # Client connected
    LISTENING = auto()    # Server accepting / receiving
    ERROR = auto()        # Last operation failed


def receive_buffer_size(sock: socket.socket) -> int:
    """
    Size of the reusable receive buffer for a socket.

    The OS receive buffer size, clamped to [2048, 8192] bytes.
    """
    try:
        size = sock.getsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF)
    except OSError:
        size = MAX_RECEIVE_BUFFER
    return min(max(size, MIN_RECEIVE_BUFFER), MAX_RECEIVE_BUFFER)


def is_socket_alive(sock: Optional[socket.socket]) -> bool:
    """
    Check whether a connected stream socket is still usable.

    A socket that polls readable but has zero bytes pending has been
    closed by the peer (half-open) and is reported as dead.

    Args:
        sock: Socket to check (None is never alive)

    Returns:
        True if the socket looks alive
    """
    if sock is None or sock.fileno() < 0:
        return False

    try:
        readable, _, errored = select.select([sock], [], [sock], 0)
    except (OSError, ValueError):
        return False

    if errored:
        return False
    if not readable:
        return True

    try:
        peek = sock.recv(1, socket.MSG_PEEK | getattr(socket, "MSG_DONTWAIT", 0))
    except BlockingIOError:
        # Another reader consumed the pending data first
        return True
    except OSError:
        return False

    return len(peek) > 0


def format_endpoint(endpoint: Optional[Endpoint]) -> str:
    """Render an endpoint as host:port."""
    if not endpoint:
        return "-"
    return f"{endpoint[0]}:{endpoint[1]}"


class BaseTransport(ABC):
    """
    Abstract base class for byte transports.

    Subclasses call the _fire_* helpers; callers attach handlers by
    assigning the on_* attributes.

    Usage:
        transport = ConcreteTransport()
        transport.on_data_received = lambda ep, data: print(ep, data)
        transport.on_exception = lambda ep, exc: print(ep, exc)
    """

    def __init__(self, name: str = "transport"):
        """
        Initialize transport base class.

        Args:
            name: Human-readable name, also used for thread names
        """
        self.name = name
        self._state = TransportState.CLOSED

        self.on_connected: Optional[ConnectedCallback] = None
        self.on_disconnected: Optional[DisconnectedCallback] = None
        self.on_data_received: Optional[DataReceivedCallback] = None
        self.on_exception: Optional[ExceptionCallback] = None

        # Statistics
        self._bytes_sent = 0
        self._bytes_received = 0
        self._send_errors = 0
        self._receive_errors = 0

    @property
    def state(self) -> TransportState:
        """Current transport state."""
        return self._state

    @abstractmethod
    def send_bytes(self, data: bytes, endpoint: Optional[Endpoint] = None) -> bool:
        """
        Send raw bytes.

        Args:
            data: Payload to send
            endpoint: Destination, for transports with several peers

        Returns:
            bool: True if the data was handed to the socket
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close all sockets and stop background threads."""
        pass

    def _fire_connected(self, endpoint: Endpoint) -> None:
        logger.debug(f"{self.name}: connected {format_endpoint(endpoint)}")
        self._invoke_callback(self.on_connected, endpoint)

    def _fire_disconnected(self, endpoint: Endpoint) -> None:
        logger.debug(f"{self.name}: disconnected {format_endpoint(endpoint)}")
        self._invoke_callback(self.on_disconnected, endpoint)

    def _fire_data_received(self, endpoint: Endpoint, data: bytes) -> None:
        self._bytes_received += len(data)
        self._invoke_callback(self.on_data_received, endpoint, data)

    def _fire_exception(self, endpoint: Endpoint, exc: BaseException) -> None:
        logger.warning(f"{self.name}: {format_endpoint(endpoint)} {type(exc).__name__}: {exc}")
        self._invoke_callback(self.on_exception, endpoint, exc)

    def _invoke_callback(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception(f"{self.name}: event handler failed")

    def get_statistics(self) -> dict:
        """
        Get transport statistics.

        Returns:
            dict: Byte counters and error counts
        """
        return {
            "name": self.name,
            "state": self._state.name,
            "bytes_sent": self._bytes_sent,
            "bytes_received": self._bytes_received,
            "send_errors": self._send_errors,
            "receive_errors": self._receive_errors,
        }

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name} state={self._state.name}>"
