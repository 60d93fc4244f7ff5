"""
Unit tests for method resolution and invocation.

Tests cover:
- Object registry
- Denylist filters
- Arity and shape based overload selection
- Ambiguity detection
- Extension methods and class-registered objects
- Resolution cache
- Invoker results and failures
"""

import threading
from typing import List

import pytest

from reflectrpc import remote_method
from reflectrpc.dispatch import DispatchContext, Invoker, MethodResolver
from reflectrpc.errors import (
    AmbiguousMethodError,
    MethodDeniedError,
    MethodNotFoundError,
    ObjectNotFoundError,
)
from reflectrpc.protocol import InvokeStatusCode

from conftest import Calculator, MathUtils, double_total


class Untyped:
    def Run(self, a):
        return a

    @remote_method("Run")
    def run_other(self, b):
        return b


class Greeter:
    def Hello(self, name: str, times: int = 1) -> str:
        return " ".join([f"hello {name}"] * times)

    def _hidden(self) -> None:
        pass

    @remote_method
    def _exposed(self) -> str:
        return "exposed"

    def Variadic(self, *args) -> None:
        pass


@pytest.fixture
def resolver(calculator):
    resolver = MethodResolver()
    resolver.register_object("Calc", calculator)
    return resolver


class TestRegistry:
    """Tests for object registration."""

    def test_register_and_lookup(self, resolver, calculator):
        assert resolver.object_names == ["Calc"]
        assert resolver.get_object("Calc") is calculator

    def test_unknown_object(self, resolver):
        with pytest.raises(ObjectNotFoundError, match="Object 'Nope' not found"):
            resolver.resolve("Nope", "Add", ["1", "2"])

    def test_duplicate_name(self, resolver):
        with pytest.raises(ValueError):
            resolver.register_object("Calc", Calculator())

    @pytest.mark.parametrize("name,obj", [
        ("Bad Name", Calculator()),
        ("Value", 42),
        ("Text", "hello"),
        ("Nothing", None),
    ])
    def test_rejected_registrations(self, name, obj):
        with pytest.raises(ValueError):
            MethodResolver().register_object(name, obj)

    def test_unregister(self, resolver):
        assert resolver.unregister_object("Calc")
        assert not resolver.unregister_object("Calc")
        with pytest.raises(ObjectNotFoundError):
            resolver.resolve("Calc", "Add", ["1", "2"])


class TestDenylist:
    """Tests for method filters."""

    def test_default_filters(self, resolver):
        with pytest.raises(MethodDeniedError, match="not allowed to be invoked"):
            resolver.resolve("Calc", "Dispose", [])

    def test_denied_before_object_lookup(self, resolver):
        with pytest.raises(MethodDeniedError):
            resolver.resolve("Missing", "Close", [])

    def test_custom_filters(self, calculator):
        resolver = MethodResolver(["Calc.Add"])
        resolver.register_object("Calc", calculator)

        with pytest.raises(MethodDeniedError):
            resolver.resolve("Calc", "Add", ["1", "2"])
        assert resolver.resolve("Calc", "Dispose", []).name == "Dispose"

    def test_filters_are_case_sensitive(self, resolver):
        assert resolver.is_denied("Calc", "close")
        assert not resolver.is_denied("Calc", "CLOSE")


class TestResolution:
    """Tests for overload selection."""

    def test_by_name_and_arity(self, resolver):
        handle = resolver.resolve("Calc", "Add", ["2", "3"])

        assert handle.object_method == "Calc.Add"
        assert handle.parameter_types == (int, int)
        assert handle.return_type is int

    def test_wrong_arity(self, resolver):
        with pytest.raises(MethodNotFoundError, match="with 3 parameter"):
            resolver.resolve("Calc", "Add", ["1", "2", "3"])

    def test_unknown_method(self, resolver):
        with pytest.raises(MethodNotFoundError):
            resolver.resolve("Calc", "Multiply", ["1", "2"])

    def test_scalar_overload(self, resolver):
        handle = resolver.resolve("Calc", "Show", ["hi"])
        assert handle.call(["hi"]) == "text:hi"

    def test_array_overload(self, resolver):
        handle = resolver.resolve("Calc", "Show", [["a", "b"]])
        assert handle.call([["a", "b"]]) == "lines:2"

    def test_lone_candidate_is_not_narrowed(self, resolver):
        handle = resolver.resolve("Calc", "Sum", ["1,2,3"])
        assert handle.parameter_types == (List[int],)

        handle = resolver.resolve("Calc", "Add", [["1"], "2"])
        assert handle.name == "Add"

    def test_overload_rejects_mismatched_shapes(self):
        class Meter:
            @remote_method("Set")
            def set_level(self, level: int) -> None:
                pass

            @remote_method("Set")
            def set_levels(self, levels: List[int]) -> None:
                pass

        resolver = MethodResolver()
        resolver.register_object("Meter", Meter())

        with pytest.raises(MethodNotFoundError, match="does not accept"):
            resolver.resolve("Meter", "Set", [{"level": 1}])

    def test_bytes_argument_selects_byte_array_overload(self):
        class Port:
            @remote_method("Send")
            def send_bytes(self, data: bytes) -> int:
                return len(data)

            @remote_method("Send")
            def send_text(self, text: str) -> int:
                return -1

        resolver = MethodResolver()
        resolver.register_object("Port", Port())

        handle = resolver.resolve("Port", "Send", [b"\x01\x02"])
        assert handle.parameter_types == (bytes,)
        assert resolver.resolve("Port", "Send", ["abc"]).parameter_types == (str,)

    def test_none_matches_any_shape(self, resolver):
        with pytest.raises(AmbiguousMethodError):
            resolver.resolve("Calc", "Show", [None])

    def test_ambiguous_untyped_overloads(self):
        resolver = MethodResolver()
        resolver.register_object("U", Untyped())

        with pytest.raises(AmbiguousMethodError) as exc_info:
            resolver.resolve("U", "Run", ["x"])
        assert exc_info.value.count == 2

    def test_keyword_default_counts_as_positional(self):
        resolver = MethodResolver()
        resolver.register_object("G", Greeter())

        assert resolver.resolve("G", "Hello", ["bob", "2"]).arity == 2
        with pytest.raises(MethodNotFoundError):
            resolver.resolve("G", "Hello", ["bob"])

    def test_private_and_variadic_methods(self):
        resolver = MethodResolver()
        resolver.register_object("G", Greeter())

        with pytest.raises(MethodNotFoundError):
            resolver.resolve("G", "_hidden", [])
        with pytest.raises(MethodNotFoundError):
            resolver.resolve("G", "Variadic", [])
        assert resolver.resolve("G", "_exposed", []).call([]) == "exposed"

    def test_class_exposes_static_methods(self):
        resolver = MethodResolver()
        resolver.register_object("Math", MathUtils)

        assert resolver.resolve("Math", "Square", ["4"]).call([4]) == 16
        assert resolver.resolve("Math", "Name", []).call([]) == "MathUtils"
        with pytest.raises(MethodNotFoundError):
            resolver.resolve("Math", "Instance", [])


class TestExtensions:
    """Tests for extension methods."""

    def test_extension_resolves(self, resolver, calculator):
        resolver.register_extension(double_total, "DoubleTotal")
        calculator.total = 21

        handle = resolver.resolve("Calc", "DoubleTotal", ["2"])
        assert handle.is_extension
        assert handle.parameter_types == (int,)
        assert handle.call([2]) == 42

    def test_extension_for_other_type(self):
        resolver = MethodResolver()
        resolver.register_object("G", Greeter())
        resolver.register_extension(double_total)

        with pytest.raises(MethodNotFoundError):
            resolver.resolve("G", "double_total", ["2"])

    def test_extension_needs_annotation(self, resolver):
        def untyped(obj, x):
            return x

        with pytest.raises(ValueError):
            resolver.register_extension(untyped)

    def test_extension_competes_with_methods(self, resolver):
        def Add(calc: Calculator, a: int, b: int) -> int:
            return 0

        resolver.register_extension(Add)
        with pytest.raises(AmbiguousMethodError):
            resolver.resolve("Calc", "Add", ["1", "2"])


class TestCache:
    """Tests for the resolution cache."""

    def test_unambiguous_result_cached(self, resolver):
        first = resolver.resolve("Calc", "Add", ["1", "2"])
        second = resolver.resolve("Calc", "Add", ["3", "4"])

        assert first is second
        stats = resolver.get_stats()
        assert stats["cache_size"] == 1
        assert stats["cache_hits"] == 1

    def test_overload_set_not_cached(self, resolver):
        resolver.resolve("Calc", "Show", ["hi"])
        handle = resolver.resolve("Calc", "Show", [["a"]])

        assert handle.parameter_types == (List[str],)
        assert resolver.get_stats()["cache_size"] == 0

    def test_cached_handle_reused_for_any_shape(self, resolver):
        first = resolver.resolve("Calc", "Sum", ["1,2"])
        second = resolver.resolve("Calc", "Sum", [[1, 2]])

        assert first is second
        assert resolver.get_stats()["cache_hits"] == 1

    def test_registration_clears_cache(self, resolver):
        resolver.resolve("Calc", "Add", ["1", "2"])
        resolver.register_object("Other", Calculator())
        assert resolver.get_stats()["cache_size"] == 0


class TestInvoker:
    """Tests for argument coercion and invocation."""

    @pytest.fixture
    def invoker(self):
        context = DispatchContext("test-dispatch")
        context.start()
        yield Invoker(context)
        context.stop()

    def test_success_and_return(self, resolver, invoker):
        result = invoker.invoke(resolver.resolve("Calc", "Add", ["0x10", "0b1"]), ["0x10", "0b1"])

        assert result.status_code == InvokeStatusCode.SUCCESS_AND_RETURN
        assert result.return_value == 17
        assert result.return_type == "System.Int32"

    def test_none_return_is_success(self, resolver, invoker, calculator):
        result = invoker.invoke(resolver.resolve("Calc", "Accumulate", ["5"]), ["5"])

        assert result.status_code == InvokeStatusCode.SUCCESS
        assert calculator.total == 5

    def test_unannotated_return(self, resolver, invoker):
        handle = resolver.resolve("Calc", "Echo", ["x"])

        assert invoker.invoke(handle, ["x"]).return_type == "System.String"
        assert invoker.invoke(handle, [None]).status_code == InvokeStatusCode.SUCCESS

    def test_conversion_failure(self, resolver, invoker):
        args = ["x", "1"]
        result = invoker.invoke(resolver.resolve("Calc", "Add", args), args)

        assert result.status_code == InvokeStatusCode.FAILED
        assert result.exception_message.startswith("Parameter conversion failed")

    def test_comma_separated_array_argument(self, resolver, invoker):
        args = ["1,2,3"]
        result = invoker.invoke(resolver.resolve("Calc", "Sum", args), args)

        assert result.status_code == InvokeStatusCode.SUCCESS_AND_RETURN
        assert result.return_value == 6

    def test_array_for_scalar_parameter_fails_conversion(self, resolver, invoker):
        args = [["1"], "2"]
        result = invoker.invoke(resolver.resolve("Calc", "Add", args), args)

        assert result.status_code == InvokeStatusCode.FAILED
        assert result.exception_message.startswith("Parameter conversion failed")

    def test_byte_list_to_bytes_parameter(self, resolver, invoker, calculator):
        args = [[1, 2, 3]]
        result = invoker.invoke(resolver.resolve("Calc", "Write", args), args)

        assert result.return_value == 3
        assert calculator.last_bytes == b"\x01\x02\x03"

    def test_target_exception(self, resolver, invoker):
        result = invoker.invoke(resolver.resolve("Calc", "Fail", []), [])

        assert result.status_code == InvokeStatusCode.FAILED
        assert result.exception_message == "Invoke 'Calc.Fail' failed: ValueError: boom"
        assert invoker.get_stats()["failures"] == 1

    def test_posted_call(self, resolver, invoker, calculator):
        result = invoker.invoke(resolver.resolve("Calc", "Notify", ["0"]), ["0"], synchronous=False)

        assert result.status_code == InvokeStatusCode.SUCCESS
        assert calculator.notified.wait(5.0)

    def test_calls_run_on_dispatch_thread(self, invoker):
        seen = []

        class Probe:
            def Where(self) -> None:
                seen.append(threading.current_thread().name)

        resolver = MethodResolver()
        resolver.register_object("Probe", Probe())
        invoker.invoke(resolver.resolve("Probe", "Where", []), [])

        assert seen == ["test-dispatch"]
