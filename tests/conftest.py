"""
Pytest configuration and shared fixtures for ReflectRPC tests.

Provides sample objects to expose, free ports and running servers on
the loopback interface.
"""

import socket
import threading
import time
from enum import Enum
from typing import List

import pytest

from reflectrpc import RPCServer, remote_method


# =============================================================================
# Sample Objects
# =============================================================================


class Color(Enum):
    RED = 0
    GREEN = 1
    BLUE = 2


class Calculator:
    """Object exposed in most end-to-end tests."""

    def __init__(self):
        self.total = 0
        self.notified = threading.Event()
        self.last_color = None
        self.last_bytes = None
        self.events = []

    def Add(self, a: int, b: int) -> int:
        return a + b

    def Divide(self, a: float, b: float) -> float:
        return a / b

    def Sum(self, values: List[int]) -> int:
        return sum(values)

    def Accumulate(self, amount: int) -> None:
        self.total += amount

    def Notify(self, delay: float) -> None:
        time.sleep(delay)
        self.notified.set()

    def Paint(self, color: Color) -> str:
        self.last_color = color
        return color.name

    def Echo(self, value):
        return value

    def Range(self, count: int) -> List[int]:
        return list(range(count))

    def Slow(self, seconds: float) -> str:
        time.sleep(seconds)
        return "done"

    def Record(self, label: str, seconds: float) -> str:
        self.events.append(("start", label))
        time.sleep(seconds)
        self.events.append(("end", label))
        return label

    def Write(self, data: bytes) -> int:
        self.last_bytes = data
        return len(data)

    def Fail(self) -> None:
        raise ValueError("boom")

    def Dispose(self) -> None:
        self.total = -1

    @remote_method("Show")
    def show_text(self, text: str) -> str:
        return f"text:{text}"

    @remote_method("Show")
    def show_lines(self, lines: List[str]) -> str:
        return f"lines:{len(lines)}"


class MathUtils:
    """Class registered by type, exposing static methods only."""

    @staticmethod
    def Square(x: int) -> int:
        return x * x

    @classmethod
    def Name(cls) -> str:
        return cls.__name__

    def Instance(self) -> str:
        return "instance"


def double_total(calc: Calculator, factor: int) -> int:
    """Extension method for Calculator."""
    return calc.total * factor


# =============================================================================
# Network Fixtures
# =============================================================================


def find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll predicate until it is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def free_port() -> int:
    """A TCP port that was free a moment ago."""
    return find_free_port()


@pytest.fixture
def calculator() -> Calculator:
    return Calculator()


@pytest.fixture
def server(calculator):
    """
    Running raw-framing server on 127.0.0.1 with Calc and Math exposed.

    Yields:
        Started RPCServer (stopped on teardown).
    """
    rpc_server = RPCServer(host="127.0.0.1", port=0, name="test")
    rpc_server.register_object("Calc", calculator)
    rpc_server.register_object("Math", MathUtils)
    rpc_server.start()
    yield rpc_server
    rpc_server.stop()


@pytest.fixture
def length_server(calculator):
    """Running length-prefix framing server."""
    rpc_server = RPCServer(host="127.0.0.1", port=0, name="framed", framing="length")
    rpc_server.register_object("Calc", calculator)
    rpc_server.start()
    yield rpc_server
    rpc_server.stop()


@pytest.fixture
def raw_socket(server):
    """Plain TCP socket connected to the server fixture."""
    sock = socket.create_connection(("127.0.0.1", server.port), timeout=5.0)
    yield sock
    sock.close()
