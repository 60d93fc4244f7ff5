"""
ReflectRPC Invoker

Coerces arguments and runs a resolved method on a dispatch context,
always producing an InvokeResult.
"""

import logging
from typing import Any, List, Optional, Sequence

from ..coercion import TypeConverter, is_unconstrained
from ..errors import ConversionError
from ..protocol.result import InvokeResult
from ..protocol.types import type_name, type_name_of
from .context import DispatchContext
from .resolver import MethodHandle


logger = logging.getLogger(__name__)


def _returns_nothing(return_type: Any) -> bool:
    return return_type is None or return_type is type(None)


class Invoker:
    """
    Argument coercion plus invocation.

    Usage:
        invoker = Invoker(DispatchContext(), TypeConverter())
        result = invoker.invoke(handle, ["2", "3"])
    """

    def __init__(
        self,
        context: Optional[DispatchContext] = None,
        converter: Optional[TypeConverter] = None,
    ):
        self.context = context or DispatchContext()
        self.converter = converter or TypeConverter()

        self._invocations = 0
        self._failures = 0

    def coerce_arguments(self, handle: MethodHandle, args: Sequence[Any]) -> List[Any]:
        """
        Convert arguments to the handle's declared parameter types.

        Raises:
            ConversionError: If any argument does not convert
        """
        converted = []
        for index, (declared, arg) in enumerate(zip(handle.parameter_types, args)):
            result = self.converter.convert(arg, declared)
            if not result.ok:
                raise ConversionError(
                    f"Parameter {index} of '{handle.object_method}': {result.error}"
                )
            converted.append(result.value)
        return converted

    def invoke(self, handle: MethodHandle, args: Sequence[Any], synchronous: bool = True) -> InvokeResult:
        """
        Invoke a resolved method.

        Args:
            handle: Resolved method
            args: Raw arguments
            synchronous: Wait for the method and report its return value;
                otherwise post it and report SUCCESS immediately

        Returns:
            InvokeResult; never raises for failures of the target
        """
        label = handle.object_method
        self._invocations += 1

        try:
            converted = self.coerce_arguments(handle, args)
        except ConversionError as e:
            self._failures += 1
            logger.warning(f"Conversion failed: {e}")
            return InvokeResult.failed(label, f"Parameter conversion failed: {e}")

        if not synchronous:
            self.context.post(handle.call, converted)
            return InvokeResult.success(label)

        try:
            value = self.context.send(handle.call, converted)
        except Exception as e:
            self._failures += 1
            logger.error(f"Invoke '{label}' failed: {type(e).__name__}: {e}")
            return InvokeResult.failed(label, f"Invoke '{label}' failed: {type(e).__name__}: {e}")

        return self._make_result(handle, value)

    def _make_result(self, handle: MethodHandle, value: Any) -> InvokeResult:
        label = handle.object_method
        declared = handle.return_type

        if _returns_nothing(declared):
            return InvokeResult.success(label)

        if is_unconstrained(declared):
            if value is None:
                return InvokeResult.success(label)
            return InvokeResult.success_return(label, value, type_name_of(value))

        return InvokeResult.success_return(label, value, type_name(declared))

    def get_stats(self) -> dict:
        return {
            "invocations": self._invocations,
            "failures": self._failures,
        }
