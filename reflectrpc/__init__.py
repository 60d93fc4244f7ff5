"""
ReflectRPC - Reflection-based Remote Procedure Calls

Invoke named methods on objects registered with a server from a remote
client, over a plain-text XML message format carried by TCP.

This package contains:
- net/       : TCP/UDP transports, message framing and UDP discovery
- protocol/  : InvokeMessage / InvokeResult wire model and type names
- dispatch/  : Method resolution, argument coercion and invocation
- rpc/       : RPC server and clients

Copyright (c) 2026 SPARK Project
License: Open Source (see LICENSE)
"""

__version__ = "0.1.0"
__author__ = "SPARK Project"

# Core constants
PROTOCOL_VERSION = 1
BUFFER_SIZE = 10240  # bytes, client receive buffer
DEFAULT_PORT = 2023

from .errors import (
    RPCError,
    TransportError,
    ProtocolError,
    ConversionError,
    ResolutionError,
    ObjectNotFoundError,
    MethodDeniedError,
    MethodNotFoundError,
    AmbiguousMethodError,
    RemoteInvokeError,
)
from .protocol import InvokeMessage, InvokeResult, InvokeStatusCode
from .dispatch import remote_method
from .rpc import RPCServer, RPCClient, ReliableRPCClient

__all__ = [
    "__version__",
    "PROTOCOL_VERSION",
    "BUFFER_SIZE",
    "DEFAULT_PORT",
    "RPCError",
    "TransportError",
    "ProtocolError",
    "ConversionError",
    "ResolutionError",
    "ObjectNotFoundError",
    "MethodDeniedError",
    "MethodNotFoundError",
    "AmbiguousMethodError",
    "RemoteInvokeError",
    "InvokeMessage",
    "InvokeResult",
    "InvokeStatusCode",
    "remote_method",
    "RPCServer",
    "RPCClient",
    "ReliableRPCClient",
]
