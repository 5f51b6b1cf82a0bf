# src/boundpool/pooling/__init__.py
"""Bounded-concurrency pools, limiters and limited executors."""

from boundpool.pooling.async_pool import AsyncResourcePool
from boundpool.pooling.cancellation import CancelToken
from boundpool.pooling.errors import (
    AcquireCancelled,
    AcquireTimeout,
    DoubleRelease,
    ForeignResource,
    InvalidArgument,
    PoolClosed,
    PoolError,
    PoolExhausted,
    ReleaseError,
)
from boundpool.pooling.executor import AsyncLimitedExecutor, LimitedExecutor, wrap
from boundpool.pooling.permits import PermitLimiter, limited
from boundpool.pooling.registry import LimiterRegistry
from boundpool.pooling.resource_pool import ResourcePool

__all__ = [
    "AcquireCancelled",
    "AcquireTimeout",
    "AsyncLimitedExecutor",
    "AsyncResourcePool",
    "CancelToken",
    "DoubleRelease",
    "ForeignResource",
    "InvalidArgument",
    "LimitedExecutor",
    "LimiterRegistry",
    "PermitLimiter",
    "PoolClosed",
    "PoolError",
    "PoolExhausted",
    "ReleaseError",
    "ResourcePool",
    "limited",
    "wrap",
]
