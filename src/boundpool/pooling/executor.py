# src/boundpool/pooling/executor.py
"""Limited executors: run work units while holding a pooled resource.

wrap(pool, work) turns a work function taking a resource into a callable
that acquires a resource, runs the work with it, and releases it on every
exit path. Concurrency control and error semantics stay decoupled: the
executor never catches, wraps or retries failures of the work itself.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, overload

from boundpool.pooling.async_pool import AsyncResourcePool
from boundpool.pooling.resource_pool import ResourcePool

if TYPE_CHECKING:
    from boundpool.pooling.cancellation import CancelToken


class LimitedExecutor[R, T]:
    """Callable that runs a work unit with a resource checked out of a pool.

    Usage:
        def fetch(client: HttpClient, url: str) -> bytes:
            return client.get(url)

        limited_fetch = wrap(pool, fetch, acquire_timeout=10.0)
        body = limited_fetch("https://example.com")

        # Concurrency-limited batch, results in submission order
        bodies = limited_fetch.map(urls)
    """

    def __init__(
        self,
        pool: ResourcePool[R],
        work: Callable[..., T],
        *,
        acquire_timeout: float | None = None,
    ) -> None:
        """Initialize executor.

        Args:
            pool: Pool to draw resources from
            work: Function called as work(resource, *args, **kwargs)
            acquire_timeout: Maximum seconds to wait for a resource per call
                (default: the pool's acquire_timeout)
        """
        self._pool = pool
        self._work = work
        self._acquire_timeout = acquire_timeout

    @property
    def pool(self) -> ResourcePool[R]:
        return self._pool

    @property
    def acquire_timeout(self) -> float | None:
        """Effective per-call wait: the executor's own, else the pool's."""
        if self._acquire_timeout is not None:
            return self._acquire_timeout
        return self._pool.acquire_timeout

    def __call__(self, *args: Any, **kwargs: Any) -> T:
        """Acquire, run work, release.

        All arguments go to the work function unchanged. Use call() to
        make the acquire cancellable.

        Raises:
            PoolClosed, AcquireTimeout: Acquire failed; work was never invoked
            Exception: Whatever the work raised, unchanged
        """
        return self.call(None, *args, **kwargs)

    def call(self, cancel_token: CancelToken | None, /, *args: Any, **kwargs: Any) -> T:
        """Like __call__, with a token that abandons the wait for a resource.

        Usage:
            token = CancelToken()
            body = limited_fetch.call(token, "https://example.com")

        Raises:
            AcquireCancelled: cancel_token fired before a resource was
                delivered; work was never invoked
        """
        with self._pool.checkout(timeout=self.acquire_timeout, cancel_token=cancel_token) as resource:
            return self._work(resource, *args, **kwargs)

    def map(self, items: Iterable[Any], *, max_workers: int | None = None) -> list[T]:
        """Run the work once per item on a thread pool.

        At most pool.size() items run at once, whatever max_workers is.
        Results come back in submission order. The first failure (in
        submission order) is raised after the batch finishes.

        Args:
            items: One positional argument per call
            max_workers: Thread count (default: pool size)

        Returns:
            Results in submission order

        Raises:
            ValueError: If max_workers is not positive
        """
        items = list(items)
        if not items:
            return []
        workers = self._pool.size() if max_workers is None else max_workers
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"{self._pool.name}-worker") as threads:
            futures = [threads.submit(self, item) for item in items]
        return [future.result() for future in futures]


class AsyncLimitedExecutor[R, T]:
    """Coroutine counterpart of LimitedExecutor for AsyncResourcePool.

    Usage:
        async def fetch(client: AsyncClient, url: str) -> bytes:
            return (await client.get(url)).content

        limited_fetch = wrap(async_pool, fetch)
        body = await limited_fetch("https://example.com")
        bodies = await limited_fetch.gather(urls)
    """

    def __init__(
        self,
        pool: AsyncResourcePool[R],
        work: Callable[..., Awaitable[T]],
        *,
        acquire_timeout: float | None = None,
    ) -> None:
        self._pool = pool
        self._work = work
        self._acquire_timeout = acquire_timeout

    @property
    def pool(self) -> AsyncResourcePool[R]:
        return self._pool

    @property
    def acquire_timeout(self) -> float | None:
        if self._acquire_timeout is not None:
            return self._acquire_timeout
        return self._pool.acquire_timeout

    async def __call__(self, *args: Any, **kwargs: Any) -> T:
        """Acquire, await work, release (also on task cancellation)."""
        async with self._pool.checkout(timeout=self.acquire_timeout) as resource:
            return await self._work(resource, *args, **kwargs)

    async def gather(self, items: Iterable[Any]) -> list[T]:
        """Run the work once per item concurrently, results in submission order.

        If any call fails, the remaining calls are cancelled (releasing
        their resources) and the failures propagate as an ExceptionGroup.
        """
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(self(item)) for item in items]
        return [task.result() for task in tasks]


@overload
def wrap[R, T](
    pool: AsyncResourcePool[R],
    work: Callable[..., Awaitable[T]],
    *,
    acquire_timeout: float | None = None,
) -> AsyncLimitedExecutor[R, T]: ...


@overload
def wrap[R, T](
    pool: ResourcePool[R],
    work: Callable[..., T],
    *,
    acquire_timeout: float | None = None,
) -> LimitedExecutor[R, T]: ...


def wrap(
    pool: ResourcePool[Any] | AsyncResourcePool[Any],
    work: Callable[..., Any],
    *,
    acquire_timeout: float | None = None,
) -> LimitedExecutor[Any, Any] | AsyncLimitedExecutor[Any, Any]:
    """Wrap a work function so each call runs with a pooled resource.

    Args:
        pool: ResourcePool (threaded) or AsyncResourcePool (asyncio)
        work: Called as work(resource, *args, **kwargs); must be a coroutine
            function when pool is an AsyncResourcePool
        acquire_timeout: Maximum seconds to wait for a resource per call
            (default: the pool's acquire_timeout)

    Returns:
        LimitedExecutor or AsyncLimitedExecutor matching the pool type
    """
    if isinstance(pool, AsyncResourcePool):
        return AsyncLimitedExecutor(pool, work, acquire_timeout=acquire_timeout)
    return LimitedExecutor(pool, work, acquire_timeout=acquire_timeout)
