"""Thread helpers for pool tests.

Blocking acquires run in background threads; tests synchronise on pool
introspection (waiting() counts) rather than sleeps so that arrival order
is deterministic.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll predicate until it is true, failing the test after timeout."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError(f"Condition not met within {timeout}s")
        time.sleep(0.001)


class CallInThread(threading.Thread):
    """Run a callable in a daemon thread and capture its outcome."""

    def __init__(self, fn: Callable[[], Any], name: str | None = None) -> None:
        super().__init__(name=name, daemon=True)
        self._fn = fn
        self.result: Any = None
        self.error: BaseException | None = None

    def run(self) -> None:
        try:
            self.result = self._fn()
        except BaseException as e:
            self.error = e

    def outcome(self, timeout: float = 5.0) -> Any:
        """Join and return the result, re-raising any captured error."""
        self.join(timeout)
        if self.is_alive():
            raise AssertionError(f"Thread {self.name} did not finish within {timeout}s")
        if self.error is not None:
            raise self.error
        return self.result


def start_waiter(fn: Callable[[], Any], waiting: Callable[[], int], name: str | None = None) -> CallInThread:
    """Start fn in a thread and return once it has parked in the waiter queue."""
    before = waiting()
    thread = CallInThread(fn, name=name)
    thread.start()
    wait_until(lambda: waiting() > before or not thread.is_alive())
    return thread
