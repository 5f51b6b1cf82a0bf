# src/boundpool/pooling/cancellation.py
"""Cancellation token for threaded acquires.

A CancelToken lets one thread abandon a blocking acquire made by another,
e.g. when the request that owns it is dropped. asyncio callers do not need
it: task cancellation plays the same role in AsyncResourcePool.
"""

from __future__ import annotations

from collections.abc import Callable
from threading import Lock


class CancelToken:
    """Thread-safe, one-shot cancellation signal.

    Usage:
        token = CancelToken()

        # Worker thread
        try:
            conn = pool.acquire(cancel_token=token)
        except AcquireCancelled:
            return

        # Controlling thread
        token.cancel()
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._cancelled = False
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_id = 0

    @property
    def cancelled(self) -> bool:
        """True once cancel() has been called (thread-safe)."""
        with self._lock:
            return self._cancelled

    def cancel(self) -> None:
        """Fire the token (thread-safe, idempotent).

        Registered callbacks run once, in registration order, outside the
        token's lock.
        """
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback to run when the token fires.

        If the token has already fired, the callback runs immediately.

        Args:
            callback: Zero-argument callable

        Returns:
            Function that unregisters the callback (no-op after firing)
        """
        with self._lock:
            if not self._cancelled:
                callback_id = self._next_id
                self._next_id += 1
                self._callbacks[callback_id] = callback

                def _remove() -> None:
                    with self._lock:
                        self._callbacks.pop(callback_id, None)

                return _remove

        callback()
        return lambda: None
