"""
ReflectRPC Dispatch Context

Single-threaded execution context for invoking registered objects.

All invocations made through one context run on its worker thread, one
at a time, so registered objects never see concurrent calls even when
several connections are served at once.

- send(): run and wait for the result (exceptions are re-raised)
- post(): queue and return immediately (exceptions are logged)
"""

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable, Optional, Tuple


logger = logging.getLogger(__name__)

# Work item: (function, args, future or None for posted calls)
WorkItem = Tuple[Callable[..., Any], tuple, Optional[Future]]

_STOP = object()


class DispatchContext:
    """
    Worker thread with a FIFO work queue.

    Usage:
        context = DispatchContext()
        context.start()
        value = context.send(obj.method, 1, 2)
        context.post(obj.notify, "event")
        context.stop()
    """

    def __init__(self, name: str = "rpc-dispatch"):
        self.name = name
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._running = False

        # Statistics
        self._sent = 0
        self._posted = 0
        self._errors = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the worker thread."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._thread = threading.Thread(
                target=self._worker_loop,
                daemon=True,
                name=self.name,
            )
            self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop after the already queued work has run.

        Args:
            timeout: Seconds to wait for the worker thread
        """
        with self._lock:
            if not self._running:
                return
            self._running = False
            thread = self._thread
            self._thread = None

        self._queue.put(_STOP)
        if thread and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def on_context_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def send(self, func: Callable[..., Any], *args: Any) -> Any:
        """
        Run func(*args) on the worker thread and wait for it.

        Called from the worker thread itself, runs inline.

        Returns:
            The function's return value

        Raises:
            Whatever func raises
        """
        self._sent += 1
        if self.on_context_thread():
            return func(*args)

        if not self._running:
            self.start()

        future: Future = Future()
        self._queue.put((func, args, future))
        return future.result()

    def post(self, func: Callable[..., Any], *args: Any) -> None:
        """Queue func(*args) without waiting; its result is discarded."""
        self._posted += 1
        if not self._running:
            self.start()
        self._queue.put((func, args, None))

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break

            func, args, future = item
            if future is not None and not future.set_running_or_notify_cancel():
                continue

            try:
                result = func(*args)
            except Exception as e:
                self._errors += 1
                if future is not None:
                    future.set_exception(e)
                else:
                    logger.exception(f"{self.name}: posted call {getattr(func, '__qualname__', func)} failed")
                continue

            if future is not None:
                future.set_result(result)

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "running": self._running,
            "sent": self._sent,
            "posted": self._posted,
            "errors": self._errors,
            "pending": self._queue.qsize(),
        }
