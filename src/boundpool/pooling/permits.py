# src/boundpool/pooling/permits.py
"""Counting limiter for fungible permits.

The semaphore-counter variant of the pool: when the limited thing has no
identity (a worker slot, a share of an API quota), a counter replaces the
free set. Waiting, hand-off, close and cancellation behave exactly as in
ResourcePool, and unlike threading.Semaphore, waiters are served strictly
in arrival order and an unmatched release is an error.
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from threading import Lock
from types import TracebackType
from typing import TYPE_CHECKING, Any

import structlog

from boundpool.pooling.errors import (
    AcquireCancelled,
    DoubleRelease,
    InvalidArgument,
    PoolClosed,
    PoolExhausted,
)
from boundpool.pooling.waiters import WaiterQueue

if TYPE_CHECKING:
    from boundpool.pooling.cancellation import CancelToken

logger = structlog.get_logger(__name__)


class PermitLimiter:
    """Thread-safe FIFO counting limiter.

    Usage:
        limiter = PermitLimiter(4, name="openai")

        with limiter.permit(timeout=30):
            call_api()

        @limited(limiter)
        def fetch(url: str) -> bytes:
            ...
    """

    def __init__(self, permits: int, *, name: str = "limiter", max_waiters: int | None = None) -> None:
        """Initialize limiter.

        Args:
            permits: Maximum concurrent holders (must be >= 1)
            name: Identifier used in logs and errors
            max_waiters: Optional bound on queued acquirers

        Raises:
            InvalidArgument: If permits or max_waiters is not positive
        """
        if permits <= 0:
            raise InvalidArgument(name, f"permits must be positive, got {permits}")
        if max_waiters is not None and max_waiters <= 0:
            raise InvalidArgument(name, f"max_waiters must be positive, got {max_waiters}")

        self.name = name
        self._permits = permits
        self._max_waiters = max_waiters
        self._available = permits
        self._waiters: WaiterQueue[None] = WaiterQueue()
        self._lock = Lock()
        self._closed = False

        # Statistics for audit trail
        self._acquires = 0
        self._handoffs = 0
        self._timeouts = 0
        self._cancellations = 0
        self._max_outstanding = 0

    @property
    def permits(self) -> int:
        """Configured concurrency ceiling."""
        return self._permits

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def available(self) -> int:
        with self._lock:
            return self._available

    def outstanding(self) -> int:
        with self._lock:
            return self._permits - self._available

    def waiting(self) -> int:
        with self._lock:
            return len(self._waiters)

    def _take_locked(self) -> None:
        self._acquires += 1
        outstanding = self._permits - self._available
        if outstanding > self._max_outstanding:
            self._max_outstanding = outstanding

    def _release_locked(self, _: None = None) -> None:
        # A handed-off permit stays outstanding; only the holder changes
        if self._waiters.hand_off(None):
            self._handoffs += 1
            self._acquires += 1
        else:
            self._available += 1

    def try_acquire(self) -> bool:
        """Take a permit without blocking.

        Returns:
            True if a permit was taken, False if none is free

        Raises:
            PoolClosed: If the limiter is closed
        """
        with self._lock:
            if self._closed:
                raise PoolClosed(self.name)
            if self._available == 0:
                return False
            self._available -= 1
            self._take_locked()
            return True

    def acquire(self, timeout: float | None = None, cancel_token: CancelToken | None = None) -> None:
        """Take a permit, blocking in FIFO order while none is free.

        Raises:
            PoolClosed: If the limiter is closed, or closes while waiting
            PoolExhausted: If max_waiters callers are already queued
            AcquireCancelled: If cancel_token fires while waiting
            AcquireTimeout: If timeout elapses while waiting
        """
        with self._lock:
            if self._closed:
                raise PoolClosed(self.name)
            if cancel_token is not None and cancel_token.cancelled:
                self._cancellations += 1
                raise AcquireCancelled(self.name)
            if self._available > 0:
                self._available -= 1
                self._take_locked()
                return
            if self._max_waiters is not None and len(self._waiters) >= self._max_waiters:
                raise PoolExhausted(self.name, self._max_waiters)
            waiter = self._waiters.enqueue()

        try:
            self._waiters.wait(
                waiter,
                self._lock,
                pool_name=self.name,
                timeout=timeout,
                cancel_token=cancel_token,
                reroute=self._release_locked,
            )
        except TimeoutError:
            with self._lock:
                self._timeouts += 1
            raise
        except AcquireCancelled:
            with self._lock:
                self._cancellations += 1
            raise

    def release(self) -> None:
        """Give back one permit. Never blocks.

        Raises:
            DoubleRelease: If no permit is outstanding
        """
        with self._lock:
            if self._available == self._permits:
                logger.warning("Release without a matching acquire", limiter=self.name)
                raise DoubleRelease(self.name)
            self._release_locked()

    @contextmanager
    def permit(self, timeout: float | None = None, cancel_token: CancelToken | None = None) -> Iterator[None]:
        """Hold one permit for the duration of the block."""
        self.acquire(timeout=timeout, cancel_token=cancel_token)
        try:
            yield
        finally:
            self.release()

    def close(self) -> None:
        """Close the limiter (idempotent); parked acquirers fail with PoolClosed."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            woken = self._waiters.close_all()
        logger.info("Permit limiter closed", limiter=self.name, waiters_failed=woken)

    def get_stats(self) -> dict[str, Any]:
        """Get limiter statistics for audit trail (thread-safe)."""
        with self._lock:
            return {
                "permits": self._permits,
                "available": self._available,
                "outstanding": self._permits - self._available,
                "waiting": len(self._waiters),
                "acquires": self._acquires,
                "handoffs": self._handoffs,
                "timeouts": self._timeouts,
                "cancellations": self._cancellations,
                "max_outstanding": self._max_outstanding,
            }

    def __enter__(self) -> PermitLimiter:
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager."""
        self.close()


def limited[**P, T](
    limiter: PermitLimiter, *, timeout: float | None = None
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator that runs the wrapped function while holding one permit.

    The permit is released on every exit path; the function's result or
    exception is passed through unchanged.
    """

    def decorator(fn: Callable[P, T]) -> Callable[P, T]:
        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            with limiter.permit(timeout=timeout):
                return fn(*args, **kwargs)

        return wrapper

    return decorator
