# src/boundpool/pooling/waiters.py
"""FIFO waiter queue with direct hand-off for threaded pools.

Each parked acquirer owns a Waiter with its own single-shot Event, so any
number of callers can be pending at once and each is woken exactly once.
Releases hand the value straight to the oldest waiter instead of freeing
it, so a late arrival can never overtake a parked one.

Hand-off race policy:
    The outcome of a wait is decided when the waiter re-takes the pool lock
    after waking. If by then it has timed out or its cancel token has fired,
    cancellation wins: a value already handed to it is re-routed through
    the owner's release path (next waiter, or back to the free set) and the
    caller gets the cancellation error. Nothing is lost, and nothing is
    returned to a caller that stopped waiting.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from threading import Event, Lock

from boundpool.pooling.cancellation import CancelToken
from boundpool.pooling.errors import AcquireCancelled, AcquireTimeout, PoolClosed


@dataclass(eq=False)
class Waiter[T]:
    """A parked acquire request.

    Attributes:
        event: Single-shot wake-up signal
        granted: True once a value has been handed to this waiter
        value: The handed-off value (meaningful only when granted)
        closed: True if the owner closed while this waiter was queued
    """

    event: Event = field(default_factory=Event)
    granted: bool = False
    value: T | None = None
    closed: bool = False


class WaiterQueue[T]:
    """Ordered queue of waiters.

    Not thread-safe on its own: every method except wait() must be called
    while holding the owning pool's lock. wait() must be called WITHOUT it.
    """

    def __init__(self) -> None:
        self._waiters: deque[Waiter[T]] = deque()

    def __len__(self) -> int:
        return len(self._waiters)

    def enqueue(self) -> Waiter[T]:
        """Append a new waiter at the tail (newest position)."""
        waiter: Waiter[T] = Waiter()
        self._waiters.append(waiter)
        return waiter

    def hand_off(self, value: T) -> bool:
        """Deliver value to the oldest waiter.

        Returns:
            True if a waiter took the value, False if the queue was empty
        """
        if not self._waiters:
            return False
        waiter = self._waiters.popleft()
        waiter.value = value
        waiter.granted = True
        waiter.event.set()
        return True

    def discard(self, waiter: Waiter[T]) -> None:
        """Remove a waiter that stopped waiting before being served."""
        if waiter in self._waiters:
            self._waiters.remove(waiter)

    def close_all(self) -> int:
        """Wake every queued waiter with the closed flag set.

        Returns:
            Number of waiters woken
        """
        count = len(self._waiters)
        while self._waiters:
            waiter = self._waiters.popleft()
            waiter.closed = True
            waiter.event.set()
        return count

    def wait(
        self,
        waiter: Waiter[T],
        lock: Lock,
        *,
        pool_name: str,
        timeout: float | None,
        cancel_token: CancelToken | None,
        reroute: Callable[[T], None],
    ) -> T:
        """Block until the waiter is served, closed, cancelled or timed out.

        Args:
            waiter: Waiter returned by enqueue()
            lock: The owning pool's lock (must NOT be held by the caller)
            pool_name: Name used in raised errors
            timeout: Seconds to wait, or None to wait forever
            cancel_token: Optional token that abandons the wait when fired
            reroute: Owner's release path, called with the lock held when a
                value reached a waiter that has already given up

        Returns:
            The handed-off value

        Raises:
            PoolClosed: Owner closed while the waiter was queued
            AcquireCancelled: cancel_token fired
            AcquireTimeout: timeout elapsed
        """
        unregister = cancel_token.add_callback(waiter.event.set) if cancel_token is not None else None
        try:
            signalled = waiter.event.wait(timeout)
        finally:
            if unregister is not None:
                unregister()

        with lock:
            cancelled = cancel_token is not None and cancel_token.cancelled
            if waiter.granted:
                if signalled and not cancelled:
                    return waiter.value  # type: ignore[return-value]
                reroute(waiter.value)  # type: ignore[arg-type]
            else:
                self.discard(waiter)

            if waiter.closed:
                raise PoolClosed(pool_name)
            if cancelled:
                raise AcquireCancelled(pool_name)
            raise AcquireTimeout(pool_name, timeout if timeout is not None else 0.0)
