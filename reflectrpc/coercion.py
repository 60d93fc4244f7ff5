"""
ReflectRPC Type Coercion

Converts raw wire values (mostly strings) to the parameter types a
target method declares.

Rules, in priority order:
1. None, blank or "null" -> the target's zero value
2. Already the target type -> unchanged
3. bool: "true"/"false", else "1"/"T" are True and anything else False
4. Enum: member name (case-insensitive) or member value
5. int/float/Decimal: base prefixes 0B, O, 0D, 0X; "_" and spaces
   ignored; a "." only parses for floating targets
6. Arrays (list[T], tuple[T, ...], Sequence[T], bytes): element-wise, a
   string source is split on ","
7. Generic constructor call, then the fallback hook, else failure

Conversion never raises: the outcome is reported in a Conversion.
"""

import collections.abc
import enum
import inspect
import typing
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, NamedTuple, Optional, Tuple


class Conversion(NamedTuple):
    """Outcome of a conversion."""
    value: Any
    ok: bool
    error: str = ""


# Hook tried before giving up: (value, target) -> Conversion
FallbackConverter = Callable[[Any, Any], Conversion]

# Scalar types treated as value types during overload narrowing
VALUE_TYPES = (bool, int, float, Decimal)

# Byte strings are arrays of System.Byte on the wire
BYTE_ARRAYS = (bytes, bytearray)

ARRAY_ORIGINS = (
    list,
    tuple,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
)

# Number base prefixes after upper-casing
BASE_PREFIXES = (
    ("0B", 2),
    ("0O", 8),
    ("O", 8),
    ("0D", 10),
    ("0X", 16),
)


def unwrap_optional(target: Any) -> Any:
    """Optional[T] -> T; anything else unchanged."""
    if typing.get_origin(target) is typing.Union:
        args = [a for a in typing.get_args(target) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return target


def is_plain_class(target: Any) -> bool:
    """A real class, not a parameterized generic like list[int]."""
    return inspect.isclass(target) and typing.get_origin(target) is None


def is_unconstrained(target: Any) -> bool:
    """True if a declared type accepts any value."""
    return target in (None, Any, object, inspect.Parameter.empty)


def is_array_type(target: Any) -> bool:
    target = unwrap_optional(target)
    if target in (list, tuple) or target in BYTE_ARRAYS:
        return True
    return typing.get_origin(target) in ARRAY_ORIGINS


def array_element_type(target: Any) -> Any:
    """Element type of an array annotation (Any if unparameterized)."""
    if unwrap_optional(target) in BYTE_ARRAYS:
        return int
    args = typing.get_args(unwrap_optional(target))
    if not args:
        return Any
    return args[0]


def is_enum_type(target: Any) -> bool:
    return is_plain_class(target) and issubclass(target, enum.Enum)


def is_value_type(target: Any) -> bool:
    """Scalar value types: bool, int, float, Decimal and enums."""
    target = unwrap_optional(target)
    if is_enum_type(target):
        return True
    return is_plain_class(target) and issubclass(target, VALUE_TYPES)


def zero_value(target: Any) -> Any:
    """
    Default value for a type.

    Numbers are zero, bool is False, an enum is its member with value 0
    (if any); everything else, including str and arrays, is None.
    """
    target = unwrap_optional(target)
    if is_enum_type(target):
        try:
            return target(0)
        except ValueError:
            return None
    if target is bool:
        return False
    if target is Decimal:
        return Decimal(0)
    if target in (int, float):
        return target(0)
    return None


def is_null_text(value: Any) -> bool:
    """True for None, blank strings and "null" in any case or spacing."""
    if value is None:
        return True
    if isinstance(value, str):
        compact = value.replace(" ", "").strip()
        return compact == "" or compact.lower() == "null"
    return False


def split_number(text: str) -> Tuple[str, int]:
    """
    Normalize a number string and detect its base.

    Upper-cases, removes spaces and underscores, and strips a base
    prefix. A leading sign is kept in front of the digits.

    Returns:
        (signed digits, base)
    """
    text = text.upper().replace(" ", "").replace("_", "")

    sign = ""
    if text[:1] in ("+", "-"):
        sign, text = text[0], text[1:]

    for prefix, base in BASE_PREFIXES:
        if text.startswith(prefix) and len(text) > len(prefix):
            return sign + text[len(prefix):], base

    return sign + text, 10


def parse_int(text: str) -> int:
    """
    Parse an integer string with optional base prefix.

    Raises:
        ValueError: On malformed input or a fractional value
    """
    digits, base = split_number(text)
    if "." in digits:
        raise ValueError(f"'{text}' is not an integer")
    return int(digits, base)


def parse_float(text: str) -> float:
    digits, base = split_number(text)
    if base != 10:
        return float(int(digits, base))
    return float(digits)


def parse_decimal(text: str) -> Decimal:
    digits, base = split_number(text)
    if base != 10:
        return Decimal(int(digits, base))
    try:
        return Decimal(digits)
    except InvalidOperation:
        raise ValueError(f"'{text}' is not a decimal") from None


def parse_bool(value: Any) -> bool:
    """Strict true/false parse, then "1"/"T" as True, else False."""
    if isinstance(value, str):
        text = value.strip().lower()
        if text == "true":
            return True
        if text == "false":
            return False
        return value.replace(" ", "").upper() in ("1", "T")
    return bool(value)


class TypeConverter:
    """
    Converts raw values to declared parameter types.

    Usage:
        converter = TypeConverter()
        result = converter.convert("0x1F", int)
        if result.ok:
            print(result.value)  # 31
    """

    def __init__(self, fallback: Optional[FallbackConverter] = None):
        """
        Args:
            fallback: Hook tried when no built-in rule applies
        """
        self.fallback = fallback

    def convert(self, value: Any, target: Any) -> Conversion:
        """
        Convert value to target.

        Args:
            value: Raw value (usually a string from the wire)
            target: Declared type

        Returns:
            Conversion with ok=False and a reason on failure
        """
        target = unwrap_optional(target)

        if is_unconstrained(target):
            return Conversion(value, True)

        if is_null_text(value):
            return Conversion(zero_value(target), True)

        if is_plain_class(target) and self._is_instance(value, target):
            return Conversion(value, True)

        try:
            if target is bool:
                return Conversion(parse_bool(value), True)
            if is_enum_type(target):
                return self._convert_enum(value, target)
            if target in (int, float, Decimal):
                return self._convert_number(value, target)
            if is_array_type(target):
                return self._convert_array(value, target)
            if target is str:
                return Conversion(str(value), True)
            if is_plain_class(target):
                return Conversion(target(value), True)
        except Exception as e:
            error = f"Cannot convert {value!r} to {self._name(target)}: {e}"
        else:
            error = f"No conversion from {type(value).__name__} to {self._name(target)}"

        if self.fallback is not None:
            return self.fallback(value, target)

        return Conversion(None, False, error)

    def _is_instance(self, value: Any, target: type) -> bool:
        # bool is an int subclass but not an int argument
        if isinstance(value, bool) and target is not bool:
            return False
        return isinstance(value, target)

    def _convert_enum(self, value: Any, target: type) -> Conversion:
        if isinstance(value, str):
            text = value.strip()
            try:
                return Conversion(target(parse_int(text)), True)
            except ValueError:
                pass
            for member in target:
                if member.name.lower() == text.lower():
                    return Conversion(member, True)
            raise ValueError(f"'{value}' is not a member of {target.__name__}")
        return Conversion(target(value), True)

    def _convert_number(self, value: Any, target: type) -> Conversion:
        if isinstance(value, str):
            if target is int:
                return Conversion(parse_int(value), True)
            if target is float:
                return Conversion(parse_float(value), True)
            return Conversion(parse_decimal(value), True)

        if isinstance(value, bool):
            return Conversion(target(int(value)), True)
        if target is int and isinstance(value, (float, Decimal)):
            if value != int(value):
                raise ValueError(f"{value} is not an integer")
            return Conversion(int(value), True)
        if target is Decimal and isinstance(value, float):
            return Conversion(Decimal(str(value)), True)
        return Conversion(target(value), True)

    def _convert_array(self, value: Any, target: Any) -> Conversion:
        if isinstance(value, str):
            items = value.split(",")
        elif isinstance(value, (list, tuple) + BYTE_ARRAYS):
            items = list(value)
        else:
            raise TypeError(f"{type(value).__name__} is not an array")

        element_type = array_element_type(target)
        converted = []
        for index, item in enumerate(items):
            if isinstance(item, str):
                item = item.strip()
            result = self.convert(item, element_type)
            if not result.ok:
                return Conversion(None, False, f"Element {index}: {result.error}")
            converted.append(result.value)

        origin = typing.get_origin(target) or target
        if origin in BYTE_ARRAYS:
            return Conversion(origin(converted), True)
        if origin is tuple:
            return Conversion(tuple(converted), True)
        return Conversion(converted, True)

    @staticmethod
    def _name(target: Any) -> str:
        return getattr(target, "__name__", None) or str(target)


_default_converter = TypeConverter()


def convert(value: Any, target: Any) -> Conversion:
    """Convert with the default converter (no fallback hook)."""
    return _default_converter.convert(value, target)
