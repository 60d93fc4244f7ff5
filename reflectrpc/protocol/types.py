"""
ReflectRPC Wire Type Names

Maps Python types to the type names carried in Type attributes and back.

Scalar names follow the .NET framework names so messages interoperate
with peers that use them (System.Int32, System.Double, ...). Arrays are
"<element>[]" and carry comma-separated values. Types without a
well-known name use "<module>.<qualname>" and resolve only if they were
registered with register_type().
"""

import enum
import threading
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..coercion import (
    array_element_type,
    convert,
    is_array_type,
    is_plain_class,
    unwrap_optional,
)
from ..errors import ProtocolError


ARRAY_SUFFIX = "[]"

# Name used for values without a more specific type
OBJECT_TYPE_NAME = "System.Object"

# Canonical wire name for each built-in type
TYPE_NAMES: Dict[Any, str] = {
    bool: "System.Boolean",
    int: "System.Int32",
    float: "System.Double",
    Decimal: "System.Decimal",
    str: "System.String",
    bytes: "System.Byte[]",
    object: OBJECT_TYPE_NAME,
}

# Every accepted wire name -> Python type
WIRE_TYPES: Dict[str, Any] = {
    "System.Boolean": bool,
    "System.Byte": int,
    "System.SByte": int,
    "System.Int16": int,
    "System.UInt16": int,
    "System.Int32": int,
    "System.UInt32": int,
    "System.Int64": int,
    "System.UInt64": int,
    "System.Single": float,
    "System.Double": float,
    "System.Decimal": Decimal,
    "System.String": str,
    "System.Char": str,
    OBJECT_TYPE_NAME: object,
    # Python spellings
    "bool": bool,
    "int": int,
    "float": float,
    "decimal": Decimal,
    "str": str,
}

_registry_lock = threading.Lock()


def register_type(tp: type, name: Optional[str] = None) -> str:
    """
    Make a custom type (typically an Enum) resolvable from the wire.

    Args:
        tp: Type to register
        name: Wire name (default: <module>.<qualname>)

    Returns:
        The wire name
    """
    wire_name = name or qualified_name(tp)
    with _registry_lock:
        WIRE_TYPES[wire_name] = tp
        TYPE_NAMES.setdefault(tp, wire_name)
    return wire_name


def qualified_name(tp: Any) -> str:
    module = getattr(tp, "__module__", "")
    qualname = getattr(tp, "__qualname__", None) or getattr(tp, "__name__", str(tp))
    if module in ("", "builtins"):
        return qualname
    return f"{module}.{qualname}"


def type_name(tp: Any) -> str:
    """
    Wire name for a Python type or annotation.

    list[int] -> "System.Int32[]", bytes -> "System.Byte[]".
    """
    tp = unwrap_optional(tp)
    if tp in TYPE_NAMES:
        return TYPE_NAMES[tp]
    if is_array_type(tp):
        element = array_element_type(tp)
        if element is Any:
            return OBJECT_TYPE_NAME + ARRAY_SUFFIX
        return type_name(element) + ARRAY_SUFFIX
    if is_plain_class(tp):
        return qualified_name(tp)
    return OBJECT_TYPE_NAME


def type_name_of(value: Any) -> str:
    """
    Wire name for a runtime value.

    A list or tuple is named after its elements when they all share one
    type, otherwise it is an object array.
    """
    if isinstance(value, (list, tuple)):
        element_types = {type(item) for item in value}
        if len(element_types) == 1:
            return type_name(element_types.pop()) + ARRAY_SUFFIX
        return OBJECT_TYPE_NAME + ARRAY_SUFFIX
    return type_name(type(value))


def resolve_type(name: Optional[str]) -> Optional[Any]:
    """
    Python type for a wire name.

    Returns:
        The type (List[T] for arrays), or None if the name is unknown
    """
    if not name:
        return None
    name = name.strip()
    if name in WIRE_TYPES:
        return WIRE_TYPES[name]
    if name.endswith(ARRAY_SUFFIX):
        element = resolve_type(name[:-len(ARRAY_SUFFIX)])
        if element is None:
            return None
        return List[element]
    return None


def format_value(value: Any) -> str:
    """
    Render a value as wire text.

    bool -> "True"/"False", enum -> member name, array -> "a,b,c",
    bytes -> comma-separated byte values, None -> "".
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, enum.Enum):
        return value.name
    if isinstance(value, (bytes, bytearray)):
        return ",".join(str(b) for b in value)
    if isinstance(value, (list, tuple)):
        return ",".join(format_value(item) for item in value)
    return str(value)


def parse_value(text: Optional[str], name: Optional[str]) -> Any:
    """
    Decode wire text using its type name.

    Unknown or missing type names leave the raw string for later
    coercion against the parameter's declared type.

    Raises:
        ProtocolError: If the text does not parse as the named type
    """
    if text is None:
        return None

    tp = resolve_type(name)
    if tp is None:
        return text

    if tp is str:
        return text
    if is_array_type(tp) and text == "":
        return []

    result = convert(text, tp)
    if not result.ok:
        raise ProtocolError(f"Invalid {name} value: {result.error}")
    return result.value
