"""
ReflectRPC Dispatch Engine

Method resolution, argument coercion and invocation on a single-threaded
dispatch context.
"""

from .resolver import (
    DEFAULT_METHOD_FILTERS,
    MethodHandle,
    MethodResolver,
    remote_method,
)
from .context import DispatchContext
from .invoker import Invoker

__all__ = [
    "DEFAULT_METHOD_FILTERS",
    "MethodHandle",
    "MethodResolver",
    "remote_method",
    "DispatchContext",
    "Invoker",
]
