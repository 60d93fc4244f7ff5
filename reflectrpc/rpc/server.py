"""
ReflectRPC Server

TCP server that invokes methods of registered objects on request.

Protocol:
- InvokeMessage in, InvokeResult out, on the same connection
- One request is answered before the next one is read (no pipelining)
- Malformed requests get a FAILED result; the connection stays open
- The server never sends unsolicited data

Features:
- Raw (compatible) or length-prefixed framing
- Denylist of object.method patterns
- Optional UDP discovery responder on the same port number
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Union

from .. import DEFAULT_PORT
from ..coercion import TypeConverter
from ..dispatch import DispatchContext, Invoker, MethodResolver
from ..errors import ProtocolError, ResolutionError
from ..net import DiscoveryResponder, Endpoint, Framing, TcpServer, format_endpoint, get_framing
from ..net.framing import FrameDecoder
from ..protocol import InvokeMessage, InvokeResult


logger = logging.getLogger(__name__)

DEFAULT_SERVER_NAME = "ReflectRPC"


class RPCServer:
    """
    Reflection-based RPC server.

    Usage:
        server = RPCServer(port=2023, name="demo")
        server.register_object("Calc", Calculator())
        server.start()
        ...
        server.stop()

    Objects and extensions can only be registered while the server is
    stopped.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        name: str = DEFAULT_SERVER_NAME,
        *,
        framing: Union[str, Framing] = "raw",
        method_filters: Optional[List[str]] = None,
        dispatch_context: Optional[DispatchContext] = None,
        converter: Optional[TypeConverter] = None,
        discovery: bool = False,
        advertise_host: Optional[str] = None,
    ):
        """
        Initialize RPC server.

        Args:
            host: Local address to bind
            port: TCP port (0 picks an ephemeral port)
            name: Server name, answered to discovery requests
            framing: "raw", "length" or a Framing instance
            method_filters: Denylist patterns (default: *.Dispose, *.Close, *.close)
            dispatch_context: Context invocations run on (default: a new one)
            converter: Argument converter (default: no fallback hook)
            discovery: Answer UDP discovery broadcasts
            advertise_host: Address announced in discovery replies
        """
        self.name = name
        self.framing = get_framing(framing) if isinstance(framing, str) else framing

        self._transport = TcpServer(host, port, name=f"rpc-{name}")
        self._transport.on_connected = self._on_connected
        self._transport.on_disconnected = self._on_disconnected
        self._transport.on_data_received = self._on_data_received
        self._transport.on_exception = self._on_exception

        self._resolver = MethodResolver(method_filters)
        self._invoker = Invoker(dispatch_context, converter)

        # Per-connection frame decoders
        self._decoders: Dict[Endpoint, FrameDecoder] = {}
        self._lock = threading.Lock()

        self._discovery_enabled = discovery
        self._advertise_host = advertise_host
        self._discovery: Optional[DiscoveryResponder] = None

        self.on_client_connected: Optional[Callable[[Endpoint], None]] = None
        self.on_client_disconnected: Optional[Callable[[Endpoint], None]] = None

        # Statistics
        self._requests = 0
        self._parse_errors = 0

    @property
    def host(self) -> str:
        return self._transport.host

    @property
    def port(self) -> int:
        """Bound TCP port (the ephemeral port once started)."""
        return self._transport.port

    @property
    def is_running(self) -> bool:
        return self._transport.is_running

    @property
    def clients(self) -> List[Endpoint]:
        return self._transport.clients

    @property
    def method_filters(self) -> List[str]:
        """Denylist patterns; may be edited while stopped."""
        return self._resolver.method_filters

    @property
    def resolver(self) -> MethodResolver:
        return self._resolver

    @property
    def dispatch_context(self) -> DispatchContext:
        return self._invoker.context

    def register_object(self, name: str, obj: Any) -> None:
        """
        Expose an object (or a class, for its static methods).

        Raises:
            RuntimeError: If the server is running
            ValueError: If the name is invalid or already registered
        """
        self._ensure_stopped()
        self._resolver.register_object(name, obj)

    def unregister_object(self, name: str) -> bool:
        self._ensure_stopped()
        return self._resolver.unregister_object(name)

    def register_extension(self, func: Callable, name: Optional[str] = None) -> None:
        """
        Expose a free function as a method of matching objects.

        Raises:
            RuntimeError: If the server is running
            ValueError: If the function's first parameter has no type annotation
        """
        self._ensure_stopped()
        self._resolver.register_extension(func, name)

    def start(self) -> None:
        """
        Start the dispatch context, listener and discovery responder.

        Raises:
            OSError: If a port cannot be bound
        """
        if self.is_running:
            return

        self._invoker.context.start()
        self._transport.start()

        if self._discovery_enabled:
            self._discovery = DiscoveryResponder(
                self.name,
                self._transport.port,
                host=self._transport.host,
                advertise_host=self._advertise_host,
            )
            try:
                self._discovery.start()
            except OSError:
                self._transport.stop()
                self._discovery = None
                raise

        logger.info(
            f"RPC server '{self.name}' started on {self.host}:{self.port} "
            f"(framing={self.framing.name}, objects={len(self._resolver.object_names)})"
        )

    def stop(self) -> None:
        """Stop listening, close all connections and the dispatch context."""
        if self._discovery:
            self._discovery.stop()
            self._discovery = None

        self._transport.stop()
        self._invoker.context.stop()

        with self._lock:
            self._decoders.clear()
        logger.info(f"RPC server '{self.name}' stopped")

    def call_method(self, message: Union[InvokeMessage, str, bytes]) -> InvokeResult:
        """
        Parse (if needed), resolve and invoke one message.

        Used for every network request; can also be called locally.

        Returns:
            InvokeResult; failures are reported in it, never raised
        """
        self._requests += 1

        if not isinstance(message, InvokeMessage):
            if message is None or not message or not str(message).strip():
                return InvokeResult.failed("", "Invoke Message is null or empty")
            try:
                message = InvokeMessage.parse(message)
            except ProtocolError as e:
                self._parse_errors += 1
                logger.warning(f"Invoke Message format error: {e}")
                return InvokeResult.failed("", f"Invoke Message format error: {e}")

        label = message.object_method
        try:
            handle = self._resolver.resolve(
                message.object_name, message.method_name, message.parameters
            )
        except ResolutionError as e:
            logger.warning(f"Resolve '{label}' failed: {e}")
            return InvokeResult.failed(label, e.message)

        logger.debug(f"Invoke {label} ({len(message.parameters)} parameters)")
        return self._invoker.invoke(handle, message.parameters, synchronous=not message.asynchronous)

    def _on_connected(self, endpoint: Endpoint) -> None:
        with self._lock:
            self._decoders[endpoint] = self.framing.decoder()
        logger.info(f"Client connected: {format_endpoint(endpoint)}")
        if self.on_client_connected:
            self.on_client_connected(endpoint)

    def _on_disconnected(self, endpoint: Endpoint) -> None:
        with self._lock:
            self._decoders.pop(endpoint, None)
        logger.info(f"Client disconnected: {format_endpoint(endpoint)}")
        if self.on_client_disconnected:
            self.on_client_disconnected(endpoint)

    def _on_exception(self, endpoint: Endpoint, exc: BaseException) -> None:
        logger.debug(f"Transport error {format_endpoint(endpoint)}: {exc}")

    def _on_data_received(self, endpoint: Endpoint, data: bytes) -> None:
        """Runs on the connection's read thread: answers before the next read."""
        with self._lock:
            decoder = self._decoders.get(endpoint)
        if decoder is None:
            return

        try:
            payloads = decoder.feed(data)
        except ProtocolError as e:
            decoder.reset()
            self._parse_errors += 1
            self._send_result(endpoint, InvokeResult.failed("", f"Invoke Message format error: {e}"))
            return

        for payload in payloads:
            self._send_result(endpoint, self.call_method(payload))

    def _send_result(self, endpoint: Endpoint, result: InvokeResult) -> None:
        try:
            data = self.framing.encode(result.to_bytes())
        except ProtocolError as e:
            logger.error(f"Cannot encode result of '{result.object_method}': {e}")
            data = self.framing.encode(
                InvokeResult.failed(result.object_method, str(e)).to_bytes()
            )

        if not self._transport.send_bytes(data, endpoint):
            logger.warning(f"Result of '{result.object_method}' not sent to {format_endpoint(endpoint)}")

    def _ensure_stopped(self) -> None:
        if self.is_running:
            raise RuntimeError("Objects can only be registered while the server is stopped")

    def get_statistics(self) -> dict:
        return {
            "name": self.name,
            "running": self.is_running,
            "framing": self.framing.name,
            "requests": self._requests,
            "parse_errors": self._parse_errors,
            "transport": self._transport.get_statistics(),
            "resolver": self._resolver.get_stats(),
            "invoker": self._invoker.get_stats(),
            "dispatch": self._invoker.context.get_stats(),
        }

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    def __repr__(self) -> str:
        return f"<RPCServer name={self.name} port={self.port} running={self.is_running}>"
