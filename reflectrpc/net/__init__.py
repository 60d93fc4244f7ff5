"""
ReflectRPC Network Transports

TCP and UDP clients/servers sharing one event model, message framing
and UDP server discovery.
"""

from .base import (
    BaseTransport,
    Endpoint,
    TransportState,
    format_endpoint,
    is_socket_alive,
)
from .tcp_server import TcpServer
from .tcp_client import TcpClient
from .udp_server import UdpServer
from .udp_client import UdpClient
from .framing import Framing, RawFraming, LengthPrefixFraming, get_framing
from .discovery import DiscoveryResponder, discover_server

__all__ = [
    "BaseTransport",
    "Endpoint",
    "TransportState",
    "format_endpoint",
    "is_socket_alive",
    "TcpServer",
    "TcpClient",
    "UdpServer",
    "UdpClient",
    "Framing",
    "RawFraming",
    "LengthPrefixFraming",
    "get_framing",
    "DiscoveryResponder",
    "discover_server",
]
