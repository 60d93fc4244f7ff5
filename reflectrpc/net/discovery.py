"""
ReflectRPC UDP Discovery

Locates an RPC server on the local network by name.

Protocol:
- Client broadcasts "DISCOVER:<serverName>" to the server port every
  500 ms until answered, cancelled or timed out
- Server replies "SERVER_INFO:<host>,<port>" to the sender
- If <host> is not an IP address the reply's source address is used
"""

import ipaddress
import logging
import queue
import threading
import time
from typing import Optional

from .base import Endpoint
from .udp_client import UdpClient
from .udp_server import UdpServer


logger = logging.getLogger(__name__)

DISCOVER_PREFIX = "DISCOVER:"
SERVER_INFO_PREFIX = "SERVER_INFO:"

# Broadcast repeat interval (seconds)
DISCOVERY_INTERVAL = 0.5

DEFAULT_BROADCAST_ADDRESS = "255.255.255.255"


def build_discover_request(server_name: str) -> bytes:
    return f"{DISCOVER_PREFIX}{server_name}".encode("utf-8")


def build_server_info(host: str, port: int) -> bytes:
    return f"{SERVER_INFO_PREFIX}{host},{port}".encode("utf-8")


def parse_server_info(data: bytes, source: Endpoint) -> Optional[Endpoint]:
    """
    Parse a SERVER_INFO reply.

    Args:
        data: Datagram payload
        source: Address the datagram came from

    Returns:
        Server endpoint, or None if the datagram is not a valid reply
    """
    try:
        text = data.decode("utf-8").strip()
    except UnicodeDecodeError:
        return None

    if not text.startswith(SERVER_INFO_PREFIX):
        return None

    fields = text[len(SERVER_INFO_PREFIX):].split(",")
    if len(fields) < 2:
        return None

    try:
        port = int(fields[-1])
    except ValueError:
        return None
    if not 0 < port < 65536:
        return None

    host = fields[0].strip()
    try:
        ipaddress.ip_address(host)
    except ValueError:
        host = source[0]

    return (host, port)


class DiscoveryResponder:
    """
    Answers discovery broadcasts for one named server.

    Usage:
        responder = DiscoveryResponder("demo", 2023)
        responder.start()
    """

    def __init__(
        self,
        server_name: str,
        port: int,
        host: str = "0.0.0.0",
        advertise_host: Optional[str] = None,
    ):
        """
        Args:
            server_name: Name matched against DISCOVER requests
            port: UDP port to listen on; also the advertised TCP port
            host: Local address to bind
            advertise_host: Address put in replies (default: server name,
                so clients fall back to the reply's source address)
        """
        self.server_name = server_name
        self.port = port
        self.advertise_host = advertise_host or server_name
        self._udp = UdpServer(host, port, name=f"discovery-{server_name}", broadcast=True)
        self._udp.on_data_received = self._handle_request
        self._requests = 0

    @property
    def is_running(self) -> bool:
        return self._udp.is_running

    def start(self) -> None:
        self._udp.start()

    def stop(self) -> None:
        self._udp.stop()

    def _handle_request(self, endpoint: Endpoint, data: bytes) -> None:
        if data.strip() != build_discover_request(self.server_name):
            return
        self._requests += 1
        logger.debug(f"Discovery request for {self.server_name} from {endpoint[0]}:{endpoint[1]}")
        self._udp.send_bytes(build_server_info(self.advertise_host, self.port), endpoint)

    def get_stats(self) -> dict:
        return {
            "server_name": self.server_name,
            "port": self.port,
            "requests": self._requests,
        }


def discover_server(
    server_name: str,
    port: int,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
    interval: float = DISCOVERY_INTERVAL,
    broadcast_address: str = DEFAULT_BROADCAST_ADDRESS,
) -> Optional[Endpoint]:
    """
    Broadcast for a named server until it answers.

    Args:
        server_name: Name of the server to find
        port: Discovery (and server) port
        timeout: Give up after this many seconds (None = never)
        cancel: Event that aborts the search when set
        interval: Seconds between broadcasts
        broadcast_address: Destination address for requests

    Returns:
        Server endpoint, or None if cancelled or timed out
    """
    replies: "queue.Queue[Endpoint]" = queue.Queue()

    def on_data(endpoint: Endpoint, data: bytes) -> None:
        found = parse_server_info(data, endpoint)
        if found:
            replies.put(found)

    client = UdpClient(name="discovery-client", broadcast=True)
    client.on_data_received = on_data
    client.open()

    request = build_discover_request(server_name)
    deadline = None if timeout is None else time.monotonic() + timeout

    logger.info(f"Discovering server '{server_name}' on udp port {port}")
    try:
        while cancel is None or not cancel.is_set():
            client.send_bytes(request, (broadcast_address, port))

            wait = interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                wait = min(wait, remaining)

            try:
                found = replies.get(timeout=wait)
            except queue.Empty:
                continue

            logger.info(f"Discovered server '{server_name}' at {found[0]}:{found[1]}")
            return found
    finally:
        client.close()

    return None
