# src/boundpool/pooling/errors.py
"""Error taxonomy for bounded-concurrency pools.

Pool errors describe the pool's own bookkeeping. They are distinct from
failures raised by work units, which pass through every pool and executor
unchanged.

Hierarchy:
- PoolError
  - PoolClosed: acquire against a closed pool (queued or new)
  - InvalidArgument: bad construction arguments (also a ValueError)
  - PoolExhausted: waiter queue is at max_waiters
  - ReleaseError: release programming errors (also a RuntimeError)
    - DoubleRelease
    - ForeignResource
  - AcquireCancelled: the waiter's cancel token fired
    - AcquireTimeout: the waiter's timeout elapsed (also a TimeoutError)
"""

from __future__ import annotations


class PoolError(Exception):
    """Base class for all pool errors.

    Attributes:
        pool_name: Name of the pool or limiter that raised the error
    """

    def __init__(self, pool_name: str, message: str) -> None:
        self.pool_name = pool_name
        super().__init__(f"Pool '{pool_name}': {message}")


class PoolClosed(PoolError):
    """Raised to every queued and future acquirer once the pool is closed.

    The pool never retries. Callers that want to continue must acquire
    from a new pool.
    """

    def __init__(self, pool_name: str) -> None:
        super().__init__(pool_name, "pool is closed")


class InvalidArgument(PoolError, ValueError):
    """Raised when a pool or limiter is constructed with invalid arguments."""


class PoolExhausted(PoolError):
    """Raised when the waiter queue already holds max_waiters waiters.

    Attributes:
        max_waiters: Configured queue bound
    """

    def __init__(self, pool_name: str, max_waiters: int) -> None:
        self.max_waiters = max_waiters
        super().__init__(pool_name, f"waiter queue is full ({max_waiters} waiting)")


class ReleaseError(PoolError, RuntimeError):
    """Base class for release programming errors.

    These are surfaced immediately rather than tolerated, since ignoring
    them would corrupt the free count.
    """


class DoubleRelease(ReleaseError):
    """Raised when a resource or permit is released while not checked out."""

    def __init__(self, pool_name: str, resource: object = None) -> None:
        self.resource = resource
        if resource is None:
            message = "release without a matching acquire"
        else:
            message = f"resource {resource!r} is not checked out"
        super().__init__(pool_name, message)


class ForeignResource(ReleaseError):
    """Raised when a value that was never owned by the pool is released."""

    def __init__(self, pool_name: str, resource: object) -> None:
        self.resource = resource
        super().__init__(pool_name, f"resource {resource!r} does not belong to this pool")


class AcquireCancelled(PoolError):
    """Raised when a waiting acquire is cancelled through its cancel token.

    Distinct from PoolClosed so callers can tell "stopped waiting" apart
    from "pool shut down".
    """

    def __init__(self, pool_name: str, message: str = "acquire was cancelled while waiting") -> None:
        super().__init__(pool_name, message)


class AcquireTimeout(AcquireCancelled, TimeoutError):
    """Raised when a waiting acquire exceeds its timeout.

    Attributes:
        timeout: Timeout in seconds that elapsed
    """

    def __init__(self, pool_name: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(pool_name, f"no resource became available within {timeout}s")
