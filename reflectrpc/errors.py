"""
ReflectRPC Exceptions

All errors raised by this package derive from RPCError. Failures that
happen while serving a request never escape the server: they are turned
into an InvokeResult with a Failed status instead.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .protocol.result import InvokeResult


class RPCError(Exception):
    """Base class for reflectrpc errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TransportError(RPCError):
    """Socket level failure (connect, send, receive)."""
    pass


class ProtocolError(RPCError):
    """Malformed or incomplete wire message."""
    pass


class ConversionError(RPCError):
    """A raw parameter could not be converted to the declared type."""
    pass


class ResolutionError(RPCError):
    """Method resolution failed for an object/method pair."""

    def __init__(self, message: str, object_name: str = "", method_name: str = ""):
        super().__init__(message)
        self.object_name = object_name
        self.method_name = method_name


class ObjectNotFoundError(ResolutionError):
    """No object is registered under the requested name."""
    pass


class MethodDeniedError(ResolutionError):
    """The object/method pair matches a denylist filter."""
    pass


class MethodNotFoundError(ResolutionError):
    """No candidate matched the name, arity and argument shapes."""
    pass


class AmbiguousMethodError(ResolutionError):
    """More than one candidate survived shape narrowing."""

    def __init__(self, message: str, object_name: str = "", method_name: str = "", count: int = 0):
        super().__init__(message, object_name, method_name)
        self.count = count


class RemoteInvokeError(RPCError):
    """
    Raised by clients configured with raise_on_error when the server
    answers with a non-success status.
    """

    def __init__(self, result: "InvokeResult", message: Optional[str] = None):
        super().__init__(message or result.exception_message or result.status_code.name)
        self.result = result
