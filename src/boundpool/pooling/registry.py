# src/boundpool/pooling/registry.py
"""Registry for managing named permit limiters."""

from __future__ import annotations

import threading
from types import TracebackType
from typing import TYPE_CHECKING

import structlog

from boundpool.pooling.errors import PoolClosed
from boundpool.pooling.permits import PermitLimiter

if TYPE_CHECKING:
    from boundpool.core.config import BoundPoolSettings

logger = structlog.get_logger(__name__)


class LimiterRegistry:
    """Registry that manages one PermitLimiter per service.

    Creates limiters on demand based on configuration.
    Reuses limiter instances for the same service.
    Thread-safe for concurrent access.

    Example:
        settings = load_settings(Path("boundpool.yaml"))
        registry = LimiterRegistry(settings)

        # In external call code:
        with registry.get_limiter("openai").permit():
            response = call_openai()

        # Clean up when done
        registry.close()
    """

    def __init__(self, settings: BoundPoolSettings) -> None:
        """Initialize registry with limiter configuration.

        Args:
            settings: Validated settings (from load_settings())
        """
        self._settings = settings
        self._limiters: dict[str, PermitLimiter] = {}
        self._lock = threading.Lock()
        self._closed = False

    def get_limiter(self, service_name: str) -> PermitLimiter:
        """Get or create the limiter for a service.

        Thread-safe: multiple threads can call this concurrently and all
        receive the same instance.

        Raises:
            PoolClosed: If the registry has been closed
        """
        with self._lock:
            if self._closed:
                raise PoolClosed(service_name)
            if service_name not in self._limiters:
                service_settings = self._settings.get_limiter_settings(service_name)
                self._limiters[service_name] = PermitLimiter(
                    service_settings.permits,
                    name=service_name,
                    max_waiters=service_settings.max_waiters,
                )
                logger.debug("Created permit limiter", service=service_name, permits=service_settings.permits)

            return self._limiters[service_name]

    def acquire_timeout(self, service_name: str) -> float | None:
        """Configured acquire timeout for a service (None waits forever)."""
        return self._settings.get_limiter_settings(service_name).acquire_timeout_seconds

    def close(self) -> None:
        """Close all limiters and release resources (idempotent)."""
        with self._lock:
            self._closed = True
            limiters = list(self._limiters.values())
            self._limiters.clear()

        for limiter in limiters:
            limiter.close()

    def __enter__(self) -> LimiterRegistry:
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
