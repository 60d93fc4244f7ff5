"""
ReflectRPC Server and Clients
"""

from .server import RPCServer
from .client import RPCClient
from .reliable import ReliableRPCClient

__all__ = [
    "RPCServer",
    "RPCClient",
    "ReliableRPCClient",
]
