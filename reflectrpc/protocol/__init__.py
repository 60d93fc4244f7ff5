"""
ReflectRPC Wire Protocol

InvokeMessage / InvokeResult XML encoding and wire type names.
"""

from .message import InvokeMessage, NAME_PATTERN, is_valid_name
from .result import InvokeResult, InvokeStatusCode
from .params import split_parameters
from .types import (
    format_value,
    parse_value,
    register_type,
    resolve_type,
    type_name,
    type_name_of,
)

__all__ = [
    "InvokeMessage",
    "InvokeResult",
    "InvokeStatusCode",
    "NAME_PATTERN",
    "is_valid_name",
    "split_parameters",
    "format_value",
    "parse_value",
    "register_type",
    "resolve_type",
    "type_name",
    "type_name_of",
]
