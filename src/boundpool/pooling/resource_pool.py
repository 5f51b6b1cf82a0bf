# src/boundpool/pooling/resource_pool.py
"""Thread-safe pool over a fixed set of interchangeable resources.

Callers borrow a resource with acquire() and give it back with release().
At most N resources (the construction size) are checked out at any time;
excess callers park in a FIFO waiter queue and are handed a resource
directly when one is released.

The pool never creates, inspects or destroys resources. Those are the
collaborator's job (an HTTP client, a database connection, a worker slot).
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from threading import Lock
from types import TracebackType
from typing import TYPE_CHECKING, Any

import structlog

from boundpool.pooling.errors import (
    AcquireCancelled,
    DoubleRelease,
    ForeignResource,
    InvalidArgument,
    PoolClosed,
    PoolExhausted,
)
from boundpool.pooling.waiters import WaiterQueue

if TYPE_CHECKING:
    from boundpool.core.config import PoolSettings
    from boundpool.pooling.cancellation import CancelToken

logger = structlog.get_logger(__name__)


class ResourcePool[R]:
    """Bounded pool of resources with FIFO hand-off.

    Resources are matched on release by identity, so unhashable values
    work and the same object may not be passed twice.

    Usage:
        pool = ResourcePool([conn_a, conn_b], name="db")

        conn = pool.acquire(timeout=5.0)
        try:
            conn.execute("SELECT 1")
        finally:
            pool.release(conn)

        # Or, with release guaranteed on every exit path
        with pool.checkout() as conn:
            conn.execute("SELECT 1")

        pool.close()
    """

    def __init__(
        self,
        resources: Iterable[R],
        *,
        name: str = "pool",
        max_waiters: int | None = None,
        acquire_timeout: float | None = None,
    ) -> None:
        """Initialize pool with its fixed resource set.

        Args:
            resources: Non-empty collection of distinct resources
            name: Identifier used in logs and errors
            max_waiters: Optional bound on queued acquirers
            acquire_timeout: Default wait used by executors from wrap() when
                they are not given their own acquire_timeout

        Raises:
            InvalidArgument: If resources is empty or contains an object twice,
                or max_waiters or acquire_timeout is not positive.
        """
        items = list(resources)
        if not items:
            raise InvalidArgument(name, "requires at least one resource")

        members = {id(resource): resource for resource in items}
        if len(members) != len(items):
            raise InvalidArgument(name, "the same resource object was supplied more than once")

        if max_waiters is not None and max_waiters <= 0:
            raise InvalidArgument(name, f"max_waiters must be positive, got {max_waiters}")
        if acquire_timeout is not None and acquire_timeout <= 0:
            raise InvalidArgument(name, f"acquire_timeout must be positive, got {acquire_timeout}")

        self.name = name
        self._max_waiters = max_waiters
        self.acquire_timeout = acquire_timeout
        self._members: dict[int, R] = members
        self._free: deque[R] = deque(items)
        self._checked_out: set[int] = set()
        self._waiters: WaiterQueue[R] = WaiterQueue()
        self._lock = Lock()
        self._closed = False

        # Statistics for audit trail
        self._acquires = 0
        self._releases = 0
        self._handoffs = 0
        self._timeouts = 0
        self._cancellations = 0
        self._reroutes = 0
        self._max_outstanding = 0
        self._max_waiting = 0

    @classmethod
    def from_settings(cls, resources: Iterable[R], settings: PoolSettings) -> ResourcePool[R]:
        """Build a pool from validated settings.

        The settings' acquire timeout becomes the pool's acquire_timeout,
        the default wait for executors built with wrap().
        """
        return cls(
            resources,
            name=settings.name,
            max_waiters=settings.max_waiters,
            acquire_timeout=settings.acquire_timeout_seconds,
        )

    @property
    def closed(self) -> bool:
        """True once close() has been called."""
        with self._lock:
            return self._closed

    def size(self) -> int:
        """Total number of resources (the concurrency ceiling)."""
        return len(self._members)

    def available(self) -> int:
        """Number of free resources (may be stale once read)."""
        with self._lock:
            return len(self._free)

    def outstanding(self) -> int:
        """Number of checked-out resources (may be stale once read)."""
        with self._lock:
            return len(self._checked_out)

    def waiting(self) -> int:
        """Number of parked acquirers (may be stale once read)."""
        with self._lock:
            return len(self._waiters)

    def _checkout_locked(self, resource: R) -> None:
        """Mark resource as held (must hold _lock)."""
        self._checked_out.add(id(resource))
        self._acquires += 1
        if len(self._checked_out) > self._max_outstanding:
            self._max_outstanding = len(self._checked_out)

    def _release_locked(self, resource: R) -> None:
        """Return resource to the oldest waiter or the free set (must hold _lock).

        Checking the queue and handing off happen in the same critical
        section, so no acquirer can grab the resource between the release
        and the intended waiter's wake-up.
        """
        self._checked_out.discard(id(resource))
        self._releases += 1
        if self._waiters.hand_off(resource):
            self._checkout_locked(resource)
            self._handoffs += 1
            logger.debug("Resource handed off to waiter", pool=self.name, waiting=len(self._waiters))
        else:
            self._free.append(resource)

    def _reroute_locked(self, resource: R) -> None:
        """Pass on a resource delivered to a waiter that has stopped waiting."""
        self._reroutes += 1
        logger.warning("Re-routing resource delivered to an abandoned waiter", pool=self.name)
        self._release_locked(resource)

    def try_acquire(self) -> R | None:
        """Take a free resource without blocking.

        Returns:
            A resource, or None if none is free

        Raises:
            PoolClosed: If the pool is closed
        """
        with self._lock:
            if self._closed:
                raise PoolClosed(self.name)
            if not self._free:
                return None
            resource = self._free.popleft()
            self._checkout_locked(resource)
            return resource

    def acquire(self, timeout: float | None = None, cancel_token: CancelToken | None = None) -> R:
        """Acquire a resource, blocking while none is free.

        Args:
            timeout: Maximum seconds to wait, or None to wait indefinitely
            cancel_token: Optional token that abandons the wait when fired

        Returns:
            A resource held exclusively by the caller until release()

        Raises:
            PoolClosed: If the pool is closed, or closes while waiting
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

            if self._free:
                resource = self._free.popleft()
                self._checkout_locked(resource)
                return resource

            if self._max_waiters is not None and len(self._waiters) >= self._max_waiters:
                raise PoolExhausted(self.name, self._max_waiters)

            waiter = self._waiters.enqueue()
            if len(self._waiters) > self._max_waiting:
                self._max_waiting = len(self._waiters)
            logger.debug("Waiting for resource", pool=self.name, position=len(self._waiters))

        try:
            return self._waiters.wait(
                waiter,
                self._lock,
                pool_name=self.name,
                timeout=timeout,
                cancel_token=cancel_token,
                reroute=self._reroute_locked,
            )
        except TimeoutError:
            with self._lock:
                self._timeouts += 1
            raise
        except AcquireCancelled:
            with self._lock:
                self._cancellations += 1
            raise

    def release(self, resource: R) -> None:
        """Return a checked-out resource. Never blocks.

        If callers are waiting, the resource goes directly to the oldest
        one. Releasing is still allowed after close() so in-flight
        checkouts can drain.

        A release is matched by identity only. Once a resource has been
        handed to a new holder, a stale second release by its previous holder
        looks identical to the new holder's release and is accepted; use
        checkout() or wrap() so each acquire is released exactly once.

        Raises:
            ForeignResource: If the resource was never owned by this pool
            DoubleRelease: If the resource is not currently checked out
        """
        with self._lock:
            key = id(resource)
            if self._members.get(key) is not resource:
                logger.warning("Release of foreign resource", pool=self.name)
                raise ForeignResource(self.name, resource)
            if key not in self._checked_out:
                logger.warning("Release of resource that is not checked out", pool=self.name)
                raise DoubleRelease(self.name, resource)
            self._release_locked(resource)

    @contextmanager
    def checkout(self, timeout: float | None = None, cancel_token: CancelToken | None = None) -> Iterator[R]:
        """Scoped acquisition: release exactly once on every exit path.

        Usage:
            with pool.checkout(timeout=1.0) as conn:
                conn.execute(...)
        """
        resource = self.acquire(timeout=timeout, cancel_token=cancel_token)
        try:
            yield resource
        finally:
            self.release(resource)

    def close(self) -> None:
        """Close the pool (idempotent).

        Queued acquirers are woken with PoolClosed and future acquires fail
        with PoolClosed. Checked-out resources may still be released.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            woken = self._waiters.close_all()

        logger.info("Resource pool closed", pool=self.name, waiters_failed=woken, **self.get_stats()["pool_stats"])

    def get_stats(self) -> dict[str, Any]:
        """Get pool statistics for audit trail (thread-safe).

        Returns:
            Dict with pool_config (name, size, max_waiters, acquire_timeout) and pool_stats
            (acquires, releases, handoffs, timeouts, cancellations, reroutes,
            max_outstanding, max_waiting, available, outstanding, waiting)
        """
        with self._lock:
            return {
                "pool_config": {
                    "name": self.name,
                    "size": len(self._members),
                    "max_waiters": self._max_waiters,
                    "acquire_timeout": self.acquire_timeout,
                },
                "pool_stats": {
                    "acquires": self._acquires,
                    "releases": self._releases,
                    "handoffs": self._handoffs,
                    "timeouts": self._timeouts,
                    "cancellations": self._cancellations,
                    "reroutes": self._reroutes,
                    "max_outstanding": self._max_outstanding,
                    "max_waiting": self._max_waiting,
                    "available": len(self._free),
                    "outstanding": len(self._checked_out),
                    "waiting": len(self._waiters),
                },
            }

    def __enter__(self) -> ResourcePool[R]:
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager (closes the pool)."""
        self.close()
