"""
ReflectRPC Method Resolution

Maps (object name, method name, arguments) to exactly one callable.

Candidates:
- Public methods of a registered instance (a registered class exposes
  its static and class methods only)
- Methods renamed or overloaded with @remote_method("Name")
- Extension functions whose first parameter is annotated with a type
  the registered object is an instance of

Resolution:
1. Denylist patterns ("*.Dispose", "Calc.Reset") reject first
2. Candidates with the right name and arity are collected
3. A lone candidate resolves as is; an overload set is narrowed by
   argument shape (array vs scalar)
4. Exactly one survivor resolves; none or several is an error

Only unambiguous-by-arity results are cached, so a shape-dependent
overload choice is never reused for a call with different shapes.
Argument conversion errors for a lone candidate surface at invocation.
"""

import enum
import fnmatch
import functools
import inspect
import logging
import threading
import typing
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..coercion import (
    is_array_type,
    is_plain_class,
    is_unconstrained,
    is_value_type,
)
from ..errors import (
    AmbiguousMethodError,
    MethodDeniedError,
    MethodNotFoundError,
    ObjectNotFoundError,
)
from ..protocol.message import is_valid_name


logger = logging.getLogger(__name__)

# Attribute set by @remote_method
REMOTE_NAME_ATTR = "__remote_name__"

# Denylist applied when none is given
DEFAULT_METHOD_FILTERS = ("*.Dispose", "*.Close", "*.close")

# Arguments a scalar value type parameter accepts
SCALAR_ARGUMENTS = (str, bool, int, float, Decimal, enum.Enum)

# Arguments that count as arrays during narrowing
ARRAY_ARGUMENTS = (list, tuple, bytes, bytearray)

CacheKey = Tuple[str, str, int]


def remote_method(name: Optional[str] = None):
    """
    Expose a method under an explicit RPC name.

    Several methods may share one name to form an overload set:

        class Display:
            @remote_method("Show")
            def show_text(self, text: str): ...

            @remote_method("Show")
            def show_lines(self, lines: List[str]): ...

    Also usable bare (@remote_method), keeping the method's own name;
    this exposes underscore methods as well.
    """
    if callable(name):
        func = name
        setattr(func, REMOTE_NAME_ATTR, func.__name__)
        return func

    def decorator(func):
        target = func.__func__ if isinstance(func, (staticmethod, classmethod)) else func
        setattr(target, REMOTE_NAME_ATTR, name or target.__name__)
        return func

    return decorator


def _declared_types(func: Callable) -> Tuple[List[Any], Any]:
    """
    Positional parameter annotations and return annotation of a callable.

    Returns:
        (parameter types, return type); unannotated entries are
        inspect.Parameter.empty

    Raises:
        TypeError: If the callable takes *args, **kwargs or required
            keyword-only parameters
    """
    signature = inspect.signature(func)
    try:
        hints = typing.get_type_hints(func)
    except Exception:
        # Unresolvable forward references: use raw annotations
        hints = {}

    types = []
    for param in signature.parameters.values():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            raise TypeError(f"{func.__qualname__} has variadic parameters")
        if param.kind == param.KEYWORD_ONLY:
            if param.default is param.empty:
                raise TypeError(f"{func.__qualname__} has required keyword-only parameters")
            continue
        types.append(hints.get(param.name, param.annotation))

    return_type = hints.get("return", signature.return_annotation)
    return types, return_type


@dataclass(frozen=True)
class MethodHandle:
    """A resolved, directly callable method."""
    object_name: str
    name: str
    func: Callable = field(compare=False)
    parameter_types: Tuple[Any, ...] = ()
    return_type: Any = inspect.Parameter.empty
    is_extension: bool = False

    @property
    def arity(self) -> int:
        return len(self.parameter_types)

    @property
    def object_method(self) -> str:
        return f"{self.object_name}.{self.name}"

    def call(self, args: Sequence[Any]) -> Any:
        return self.func(*args)

    def accepts_shapes(self, args: Sequence[Any]) -> bool:
        """
        Shape compatibility, position by position.

        A parameter is an array iff its argument is a list, tuple or bytes, and a
        scalar value type parameter takes only scalars or strings. None
        matches any parameter.
        """
        for declared, arg in zip(self.parameter_types, args):
            if arg is None or is_unconstrained(declared):
                continue
            arg_is_array = isinstance(arg, ARRAY_ARGUMENTS)
            if is_array_type(declared) != arg_is_array:
                return False
            if is_value_type(declared) and not isinstance(arg, SCALAR_ARGUMENTS):
                return False
        return True

    def __repr__(self) -> str:
        kind = "extension" if self.is_extension else "method"
        return f"<MethodHandle {self.object_method}/{self.arity} {kind}>"


@dataclass(frozen=True)
class Extension:
    """Free function callable on instances of a type."""
    name: str
    target_type: type
    func: Callable
    parameter_types: Tuple[Any, ...]
    return_type: Any


class MethodResolver:
    """
    Registered object table, denylist and resolution cache.

    Objects and extensions are registered before serving starts and are
    read without locking afterwards; the cache is guarded by a lock.

    Usage:
        resolver = MethodResolver()
        resolver.register_object("Calc", Calculator())
        handle = resolver.resolve("Calc", "Add", ["2", "3"])
        handle.call([2, 3])
    """

    def __init__(self, method_filters: Optional[Sequence[str]] = None):
        """
        Args:
            method_filters: Denylist patterns "<object>.<method>" where
                the object may be "*" (default: *.Dispose, *.Close, *.close)
        """
        self.method_filters: List[str] = list(
            DEFAULT_METHOD_FILTERS if method_filters is None else method_filters
        )

        self._objects: Dict[str, Any] = {}
        self._methods: Dict[str, Dict[str, List[MethodHandle]]] = {}
        self._extensions: Dict[str, List[Extension]] = {}

        self._cache: Dict[CacheKey, MethodHandle] = {}
        self._cache_lock = threading.Lock()

        self._cache_hits = 0
        self._cache_misses = 0

    @property
    def object_names(self) -> List[str]:
        return list(self._objects.keys())

    def get_object(self, name: str) -> Any:
        """
        Raises:
            ObjectNotFoundError: If nothing is registered under name
        """
        try:
            return self._objects[name]
        except KeyError:
            raise ObjectNotFoundError(f"Object '{name}' not found", name) from None

    def register_object(self, name: str, obj: Any) -> None:
        """
        Register an instance (or a class, for its static methods).

        Raises:
            ValueError: If the name is invalid, already taken, or obj is
                a plain value (None, number, string)
        """
        if not is_valid_name(name):
            raise ValueError(f"Invalid object name: {name!r}")
        if name in self._objects:
            raise ValueError(f"Object '{name}' is already registered")
        if obj is None or isinstance(obj, (bool, int, float, complex, str, bytes)):
            raise ValueError(f"Object '{name}' must not be a plain value")

        self._objects[name] = obj
        self._methods[name] = self._collect_methods(name, obj)
        self.clear_cache()

        count = sum(len(handles) for handles in self._methods[name].values())
        logger.debug(f"Registered object '{name}' ({type(obj).__name__}, {count} methods)")

    def unregister_object(self, name: str) -> bool:
        if name not in self._objects:
            return False
        del self._objects[name]
        del self._methods[name]
        self.clear_cache()
        return True

    def register_extension(self, func: Callable, name: Optional[str] = None) -> None:
        """
        Register a free function as a method of every registered object
        that is an instance of its first parameter's annotated type.

        Raises:
            ValueError: If the function has no annotated first parameter
        """
        try:
            types, return_type = _declared_types(func)
        except TypeError as e:
            raise ValueError(str(e)) from e

        if not types or is_unconstrained(types[0]) or not is_plain_class(types[0]):
            raise ValueError(
                f"Extension {func.__qualname__} needs a type-annotated first parameter"
            )

        rpc_name = name or getattr(func, REMOTE_NAME_ATTR, None) or func.__name__
        extension = Extension(
            name=rpc_name,
            target_type=types[0],
            func=func,
            parameter_types=tuple(types[1:]),
            return_type=return_type,
        )
        self._extensions.setdefault(rpc_name, []).append(extension)
        self.clear_cache()
        logger.debug(f"Registered extension '{rpc_name}' for {types[0].__name__}")

    def is_denied(self, object_name: str, method_name: str) -> bool:
        """True if object.method matches a denylist pattern."""
        label = f"{object_name}.{method_name}"
        return any(fnmatch.fnmatchcase(label, pattern) for pattern in self.method_filters)

    def candidates(self, object_name: str, method_name: str, arg_count: int) -> List[MethodHandle]:
        """Methods and extensions with the given name and arity."""
        obj = self.get_object(object_name)

        found = [
            handle
            for handle in self._methods[object_name].get(method_name, [])
            if handle.arity == arg_count
        ]

        for extension in self._extensions.get(method_name, []):
            if len(extension.parameter_types) != arg_count:
                continue
            if not isinstance(obj, extension.target_type):
                continue
            found.append(MethodHandle(
                object_name=object_name,
                name=method_name,
                func=functools.partial(extension.func, obj),
                parameter_types=extension.parameter_types,
                return_type=extension.return_type,
                is_extension=True,
            ))

        return found

    def resolve(self, object_name: str, method_name: str, args: Sequence[Any]) -> MethodHandle:
        """
        Resolve a call to one method.

        Raises:
            MethodDeniedError: If the method matches the denylist
            ObjectNotFoundError: If the object is not registered
            MethodNotFoundError: If no candidate fits
            AmbiguousMethodError: If several candidates fit
        """
        label = f"{object_name}.{method_name}"
        if self.is_denied(object_name, method_name):
            raise MethodDeniedError(
                f"Object method '{label}' is not allowed to be invoked",
                object_name, method_name,
            )

        self.get_object(object_name)

        key: CacheKey = (object_name, method_name, len(args))
        with self._cache_lock:
            cached = self._cache.get(key)
        if cached is not None:
            self._cache_hits += 1
            return cached
        self._cache_misses += 1

        candidates = self.candidates(object_name, method_name, len(args))
        if not candidates:
            raise MethodNotFoundError(
                f"Object method '{label}' with {len(args)} parameter(s) not found",
                object_name, method_name,
            )

        if len(candidates) == 1:
            handle = candidates[0]
            with self._cache_lock:
                self._cache[key] = handle
            return handle

        survivors = [handle for handle in candidates if handle.accepts_shapes(args)]
        if not survivors:
            raise MethodNotFoundError(
                f"Object method '{label}' does not accept the given arguments",
                object_name, method_name,
            )
        if len(survivors) > 1:
            raise AmbiguousMethodError(
                f"Object '{object_name}' has {len(survivors)} methods named '{method_name}' "
                f"matching {len(args)} parameter(s)",
                object_name, method_name, len(survivors),
            )

        return survivors[0]

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def _collect_methods(self, object_name: str, obj: Any) -> Dict[str, List[MethodHandle]]:
        """Build the method table of an object at registration time."""
        is_class = inspect.isclass(obj)
        owner = obj if is_class else type(obj)
        table: Dict[str, List[MethodHandle]] = {}

        for attr in dir(owner):
            try:
                raw = inspect.getattr_static(owner, attr)
            except AttributeError:
                continue

            if isinstance(raw, (staticmethod, classmethod)):
                func = raw.__func__
            elif inspect.isfunction(raw) and not is_class:
                func = raw
            else:
                continue

            rpc_name = getattr(func, REMOTE_NAME_ATTR, None)
            if rpc_name is None:
                if attr.startswith("_"):
                    continue
                rpc_name = attr

            bound = getattr(obj, attr)
            try:
                types, return_type = _declared_types(bound)
            except TypeError as e:
                logger.debug(f"Skipping {object_name}.{attr}: {e}")
                continue
            except ValueError:
                # No signature available
                continue

            table.setdefault(rpc_name, []).append(MethodHandle(
                object_name=object_name,
                name=rpc_name,
                func=bound,
                parameter_types=tuple(types),
                return_type=return_type,
            ))

        return table

    def get_stats(self) -> dict:
        with self._cache_lock:
            cache_size = len(self._cache)
        return {
            "objects": len(self._objects),
            "extensions": sum(len(items) for items in self._extensions.values()),
            "cache_size": cache_size,
            "cache_hits": self._cache_hits,
            "cache_misses": self._cache_misses,
        }
