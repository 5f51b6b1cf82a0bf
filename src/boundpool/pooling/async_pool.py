# src/boundpool/pooling/async_pool.py
"""asyncio pool over a fixed set of interchangeable resources.

Same contract as ResourcePool for a cooperative, single-threaded scheduler:
the only suspension point is acquire() when nothing is free. Synchronous
methods never yield to the loop, so no lock is needed.

Each parked acquirer owns its own Future. release() resolves the oldest
live one directly (hand-off), skipping futures whose tasks were cancelled
before they could be served.

Cancellation is plain asyncio task cancellation. When a task is cancelled
after its future was already resolved but before it resumed, cancellation
wins: the delivered resource is re-released to the next waiter and
CancelledError propagates.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from types import TracebackType
from typing import TYPE_CHECKING, Any

import structlog

from boundpool.pooling.errors import (
    AcquireTimeout,
    DoubleRelease,
    ForeignResource,
    InvalidArgument,
    PoolClosed,
    PoolExhausted,
)

if TYPE_CHECKING:
    from boundpool.core.config import PoolSettings

logger = structlog.get_logger(__name__)


class AsyncResourcePool[R]:
    """Bounded asyncio pool of resources with FIFO hand-off.

    Usage:
        pool = AsyncResourcePool([client_a, client_b], name="http")

        async with pool.checkout(timeout=5.0) as client:
            await client.get("/health")

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
        self._waiters: deque[asyncio.Future[R]] = deque()
        self._closed = False

        self._acquires = 0
        self._releases = 0
        self._handoffs = 0
        self._timeouts = 0
        self._cancellations = 0
        self._reroutes = 0
        self._max_outstanding = 0
        self._max_waiting = 0

    @classmethod
    def from_settings(cls, resources: Iterable[R], settings: PoolSettings) -> AsyncResourcePool[R]:
        """Build a pool from validated settings."""
        return cls(
            resources,
            name=settings.name,
            max_waiters=settings.max_waiters,
            acquire_timeout=settings.acquire_timeout_seconds,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def size(self) -> int:
        return len(self._members)

    def available(self) -> int:
        return len(self._free)

    def outstanding(self) -> int:
        return len(self._checked_out)

    def waiting(self) -> int:
        """Number of parked acquirers that can still be served."""
        return sum(1 for fut in self._waiters if not fut.done())

    def _checkout(self, resource: R) -> None:
        self._checked_out.add(id(resource))
        self._acquires += 1
        if len(self._checked_out) > self._max_outstanding:
            self._max_outstanding = len(self._checked_out)

    def _return(self, resource: R) -> None:
        """Hand resource to the oldest live waiter, else free it."""
        self._checked_out.discard(id(resource))
        self._releases += 1
        while self._waiters:
            fut = self._waiters.popleft()
            if fut.done():
                # Task was cancelled while parked; its slot passes on
                continue
            self._checkout(resource)
            self._handoffs += 1
            fut.set_result(resource)
            logger.debug("Resource handed off to waiter", pool=self.name, waiting=len(self._waiters))
            return
        self._free.append(resource)

    def _abandon(self, fut: asyncio.Future[R]) -> None:
        """Clean up after a waiter that stopped waiting."""
        if fut.done() and not fut.cancelled() and fut.exception() is None:
            self._reroutes += 1
            logger.warning("Re-routing resource delivered to an abandoned waiter", pool=self.name)
            self._return(fut.result())
        elif fut in self._waiters:
            self._waiters.remove(fut)

    def try_acquire(self) -> R | None:
        """Take a free resource without suspending.

        Raises:
            PoolClosed: If the pool is closed
        """
        if self._closed:
            raise PoolClosed(self.name)
        if not self._free:
            return None
        resource = self._free.popleft()
        self._checkout(resource)
        return resource

    async def acquire(self, timeout: float | None = None) -> R:
        """Acquire a resource, suspending while none is free.

        Args:
            timeout: Maximum seconds to wait, or None to wait indefinitely

        Returns:
            A resource held exclusively by the caller until release()

        Raises:
            PoolClosed: If the pool is closed, or closes while waiting
            PoolExhausted: If max_waiters callers are already queued
            AcquireTimeout: If timeout elapses while waiting
            asyncio.CancelledError: If the calling task is cancelled while waiting
        """
        if self._closed:
            raise PoolClosed(self.name)

        if self._free:
            resource = self._free.popleft()
            self._checkout(resource)
            return resource

        if self._max_waiters is not None and self.waiting() >= self._max_waiters:
            raise PoolExhausted(self.name, self._max_waiters)

        fut: asyncio.Future[R] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        if len(self._waiters) > self._max_waiting:
            self._max_waiting = len(self._waiters)
        logger.debug("Waiting for resource", pool=self.name, position=len(self._waiters))

        try:
            async with asyncio.timeout(timeout):
                return await fut
        except TimeoutError:
            self._abandon(fut)
            self._timeouts += 1
            raise AcquireTimeout(self.name, timeout if timeout is not None else 0.0) from None
        except asyncio.CancelledError:
            self._abandon(fut)
            self._cancellations += 1
            raise

    def release(self, resource: R) -> None:
        """Return a checked-out resource. Never suspends.

        A release is matched by identity only. Once a resource has been
        handed to a new holder, a stale second release by its previous holder
        looks identical to the new holder's release and is accepted; use
        checkout() or wrap() so each acquire is released exactly once.

        Raises:
            ForeignResource: If the resource was never owned by this pool
            DoubleRelease: If the resource is not currently checked out
        """
        key = id(resource)
        if self._members.get(key) is not resource:
            logger.warning("Release of foreign resource", pool=self.name)
            raise ForeignResource(self.name, resource)
        if key not in self._checked_out:
            logger.warning("Release of resource that is not checked out", pool=self.name)
            raise DoubleRelease(self.name, resource)
        self._return(resource)

    @asynccontextmanager
    async def checkout(self, timeout: float | None = None) -> AsyncIterator[R]:
        """Scoped acquisition: release exactly once on every exit path."""
        resource = await self.acquire(timeout=timeout)
        try:
            yield resource
        finally:
            self.release(resource)

    def close(self) -> None:
        """Close the pool (idempotent).

        Parked acquirers fail with PoolClosed; checked-out resources may
        still be released.
        """
        if self._closed:
            return
        self._closed = True
        woken = 0
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_exception(PoolClosed(self.name))
                woken += 1
        logger.info("Resource pool closed", pool=self.name, waiters_failed=woken, **self.get_stats()["pool_stats"])

    def get_stats(self) -> dict[str, Any]:
        """Get pool statistics for audit trail.

        Same shape as ResourcePool.get_stats().
        """
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
                "waiting": self.waiting(),
            },
        }

    async def __aenter__(self) -> AsyncResourcePool[R]:
        """Enter async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit async context manager (closes the pool)."""
        self.close()
