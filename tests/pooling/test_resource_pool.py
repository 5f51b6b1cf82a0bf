"""Tests for the threaded ResourcePool."""

from __future__ import annotations

import threading
import time

import pytest

from boundpool.pooling import (
    AcquireCancelled,
    AcquireTimeout,
    CancelToken,
    DoubleRelease,
    ForeignResource,
    InvalidArgument,
    PoolClosed,
    PoolError,
    PoolExhausted,
    ResourcePool,
)
from tests.helpers.concurrency import CallInThread, start_waiter, wait_until


class Handle:
    """Opaque test resource with identity semantics."""

    def __init__(self, label: str) -> None:
        self.label = label

    def __repr__(self) -> str:
        return f"Handle({self.label})"


class TestResourcePoolConstruction:
    """Tests for pool construction and validation."""

    def test_rejects_empty_resources(self) -> None:
        """Empty resource collection is rejected."""
        with pytest.raises(InvalidArgument, match="at least one resource"):
            ResourcePool([])

    def test_invalid_argument_is_value_error(self) -> None:
        """InvalidArgument can be caught as ValueError."""
        with pytest.raises(ValueError):
            ResourcePool([], name="db")

    def test_rejects_duplicate_object(self) -> None:
        """The same object cannot be pooled twice."""
        handle = Handle("a")
        with pytest.raises(InvalidArgument, match="more than once"):
            ResourcePool([handle, handle])

    def test_accepts_equal_but_distinct_objects(self) -> None:
        """Distinct objects that compare equal are separate resources."""
        pool = ResourcePool([[], []])
        assert pool.size() == 2

    def test_accepts_unhashable_resources(self) -> None:
        """Resources are matched by identity, so dicts work."""
        conn = {"dsn": "sqlite://"}
        pool = ResourcePool([conn])
        assert pool.acquire() is conn

    def test_rejects_non_positive_max_waiters(self) -> None:
        """max_waiters must be positive."""
        with pytest.raises(InvalidArgument, match="max_waiters"):
            ResourcePool([1], max_waiters=0)

    def test_accepts_any_iterable(self) -> None:
        """Resources can come from a generator."""
        pool = ResourcePool(Handle(str(i)) for i in range(3))
        assert pool.size() == 3
        assert pool.available() == 3

    def test_error_carries_pool_name(self) -> None:
        """Errors carry the pool name."""
        with pytest.raises(InvalidArgument) as exc_info:
            ResourcePool([], name="warehouse")
        assert exc_info.value.pool_name == "warehouse"
        assert "warehouse" in str(exc_info.value)


class TestAcquireRelease:
    """Tests for the non-contended acquire/release path."""

    def test_acquire_returns_free_resource_immediately(self) -> None:
        """acquire() returns at once when a resource is free."""
        a, b = Handle("a"), Handle("b")
        pool = ResourcePool([a, b])

        start = time.monotonic()
        first = pool.acquire()
        assert time.monotonic() - start < 0.1

        assert first in (a, b)
        assert pool.available() == 1
        assert pool.outstanding() == 1

    def test_acquires_are_distinct(self) -> None:
        """N acquires on a pool of N return N distinct resources."""
        handles = [Handle(str(i)) for i in range(4)]
        pool = ResourcePool(handles)

        acquired = [pool.acquire() for _ in range(4)]

        assert {id(h) for h in acquired} == {id(h) for h in handles}
        assert pool.available() == 0

    def test_try_acquire_returns_none_when_exhausted(self) -> None:
        """try_acquire() does not block."""
        pool = ResourcePool([Handle("a")])
        assert pool.try_acquire() is not None
        assert pool.try_acquire() is None

    def test_release_returns_resource_to_free_set(self) -> None:
        """release() makes the resource available again."""
        pool = ResourcePool([Handle("a")])
        handle = pool.acquire()

        pool.release(handle)

        assert pool.available() == 1
        assert pool.outstanding() == 0
        assert pool.acquire() is handle

    def test_release_foreign_resource_raises(self) -> None:
        """Releasing a value the pool never owned is an error."""
        pool = ResourcePool([Handle("a")])
        pool.acquire()

        with pytest.raises(ForeignResource):
            pool.release(Handle("a"))

        assert pool.available() == 0

    def test_release_equal_but_foreign_resource_raises(self) -> None:
        """Equality is not enough; the released object must be the pooled one."""
        pool = ResourcePool([[1]])
        pool.acquire()

        with pytest.raises(ForeignResource):
            pool.release([1])

    def test_double_release_raises_and_does_not_inflate_free_count(self) -> None:
        """Second release of the same checkout raises DoubleRelease."""
        pool = ResourcePool([Handle("a"), Handle("b")])
        handle = pool.acquire()
        assert pool.available() == 1

        pool.release(handle)
        with pytest.raises(DoubleRelease):
            pool.release(handle)

        assert pool.available() == 2
        assert pool.outstanding() == 0

    def test_stale_release_after_reacquire_is_matched_by_identity(self) -> None:
        """Once re-acquired, a stale release counts as the new holder's."""
        pool = ResourcePool([Handle("a")])
        first = pool.acquire()
        pool.release(first)
        second = pool.acquire()
        assert second is first

        # Previous holder releases again; indistinguishable from the new holder
        pool.release(first)
        assert pool.available() == 1

        with pytest.raises(DoubleRelease):
            pool.release(second)

    def test_checkout_releases_each_acquire_once(self) -> None:
        """checkout() never leaves a second release to the caller."""
        pool = ResourcePool([Handle("a")])
        with pool.checkout() as first:
            pass
        with pool.checkout() as second:
            assert second is first
            assert pool.outstanding() == 1
        stats = pool.get_stats()["pool_stats"]
        assert stats["acquires"] == stats["releases"] == 2

    def test_release_errors_are_pool_errors(self) -> None:
        """Release programming errors share the PoolError base."""
        pool = ResourcePool([Handle("a")])
        with pytest.raises(PoolError):
            pool.release(Handle("x"))
        with pytest.raises(RuntimeError):
            pool.release(Handle("x"))

    def test_free_plus_outstanding_equals_size(self) -> None:
        """available + outstanding == size through a sequence of operations."""
        pool = ResourcePool([Handle(str(i)) for i in range(3)])
        held = []
        for _ in range(3):
            held.append(pool.acquire())
            assert pool.available() + pool.outstanding() == pool.size()
        for handle in held:
            pool.release(handle)
            assert pool.available() + pool.outstanding() == pool.size()


class TestWaiting:
    """Tests for blocking acquires and hand-off."""

    def test_blocked_acquire_receives_released_resource(self) -> None:
        """A parked acquirer is handed the released resource."""
        handle = Handle("a")
        pool = ResourcePool([handle])
        pool.acquire()

        waiter = start_waiter(pool.acquire, pool.waiting)
        assert pool.waiting() == 1

        pool.release(handle)

        assert waiter.outcome() is handle
        assert pool.outstanding() == 1
        assert pool.get_stats()["pool_stats"]["handoffs"] == 1

    def test_waiters_are_served_in_arrival_order(self) -> None:
        """Earlier waiters are served before later ones."""
        handle = Handle("a")
        pool = ResourcePool([handle])
        pool.acquire()
        served: list[str] = []

        def worker(label: str) -> None:
            resource = pool.acquire()
            served.append(label)
            pool.release(resource)

        threads = [start_waiter(lambda label=label: worker(label), pool.waiting) for label in ("first", "second", "third")]
        assert pool.waiting() == 3

        pool.release(handle)
        for thread in threads:
            thread.outcome()

        assert served == ["first", "second", "third"]

    def test_release_hands_off_instead_of_freeing(self) -> None:
        """A newcomer cannot steal a resource released to a parked waiter."""
        handle = Handle("a")
        pool = ResourcePool([handle])
        pool.acquire()
        waiter = start_waiter(pool.acquire, pool.waiting)

        pool.release(handle)

        # The resource went straight to the waiter, never to the free set
        assert pool.try_acquire() is None
        assert waiter.outcome() is handle

    def test_acquire_timeout(self) -> None:
        """acquire() raises AcquireTimeout when nothing is released in time."""
        pool = ResourcePool([Handle("a")])
        pool.acquire()

        with pytest.raises(AcquireTimeout) as exc_info:
            pool.acquire(timeout=0.05)

        assert exc_info.value.timeout == 0.05
        assert isinstance(exc_info.value, TimeoutError)
        assert pool.waiting() == 0
        assert pool.get_stats()["pool_stats"]["timeouts"] == 1

    def test_timed_out_waiter_does_not_consume_resource(self) -> None:
        """After a timeout the next release goes to the free set."""
        handle = Handle("a")
        pool = ResourcePool([handle])
        pool.acquire()

        with pytest.raises(AcquireTimeout):
            pool.acquire(timeout=0.01)

        pool.release(handle)
        assert pool.available() == 1

    def test_max_waiters_rejects_excess_acquirers(self) -> None:
        """PoolExhausted once max_waiters callers are queued."""
        handle = Handle("a")
        pool = ResourcePool([handle], max_waiters=1)
        pool.acquire()
        waiter = start_waiter(pool.acquire, pool.waiting)

        with pytest.raises(PoolExhausted) as exc_info:
            pool.acquire()
        assert exc_info.value.max_waiters == 1

        pool.release(handle)
        assert waiter.outcome() is handle


class TestCancellation:
    """Tests for cancel tokens and the hand-off race."""

    def test_pre_cancelled_token_fails_without_taking_resource(self) -> None:
        """A token that already fired fails fast even when resources are free."""
        pool = ResourcePool([Handle("a")])
        token = CancelToken()
        token.cancel()

        with pytest.raises(AcquireCancelled):
            pool.acquire(cancel_token=token)

        assert pool.available() == 1

    def test_cancelled_waiter_is_removed_and_next_waiter_served(self) -> None:
        """Pool [A], two queued callers, cancel the first: the second gets A."""
        a = Handle("A")
        pool = ResourcePool([a])
        pool.acquire()
        token = CancelToken()

        first = start_waiter(lambda: pool.acquire(cancel_token=token), pool.waiting, name="first")
        second = start_waiter(pool.acquire, pool.waiting, name="second")
        assert pool.waiting() == 2

        token.cancel()
        with pytest.raises(AcquireCancelled):
            first.outcome()
        assert pool.waiting() == 1

        pool.release(a)
        assert second.outcome() is a

    def test_cancellation_is_not_pool_closed(self) -> None:
        """Cancellation is distinguishable from shutdown."""
        pool = ResourcePool([Handle("a")])
        pool.acquire()
        token = CancelToken()
        waiter = start_waiter(lambda: pool.acquire(cancel_token=token), pool.waiting)

        token.cancel()

        with pytest.raises(AcquireCancelled) as exc_info:
            waiter.outcome()
        assert not isinstance(exc_info.value, PoolClosed)
        assert not isinstance(exc_info.value, AcquireTimeout)

    def test_resource_delivered_to_cancelled_waiter_is_rerouted(self) -> None:
        """Cancel-vs-hand-off race: the delivered resource passes to the next waiter."""
        a = Handle("A")
        pool = ResourcePool([a])
        pool.acquire()
        token = CancelToken()

        first = start_waiter(lambda: pool.acquire(cancel_token=token), pool.waiting, name="first")
        second = start_waiter(pool.acquire, pool.waiting, name="second")

        # Holding the pool lock forces both events to land before the
        # first waiter can inspect its state.
        with pool._lock:
            token.cancel()
            pool._release_locked(a)

        with pytest.raises(AcquireCancelled):
            first.outcome()
        assert second.outcome() is a

        stats = pool.get_stats()["pool_stats"]
        assert stats["reroutes"] == 1
        assert stats["outstanding"] == 1
        assert stats["available"] == 0

    def test_rerouted_resource_returns_to_free_set_without_waiters(self) -> None:
        """With no one else waiting a rerouted resource is freed, not lost."""
        a = Handle("A")
        pool = ResourcePool([a])
        pool.acquire()
        token = CancelToken()
        first = start_waiter(lambda: pool.acquire(cancel_token=token), pool.waiting)

        with pool._lock:
            token.cancel()
            pool._release_locked(a)

        with pytest.raises(AcquireCancelled):
            first.outcome()
        assert pool.available() == 1
        assert pool.outstanding() == 0


class TestClose:
    """Tests for close() and draining."""

    def test_close_fails_queued_waiters(self) -> None:
        """Queued acquirers fail with PoolClosed instead of hanging."""
        pool = ResourcePool([Handle("a")])
        pool.acquire()
        waiters = [start_waiter(pool.acquire, pool.waiting) for _ in range(3)]

        pool.close()

        for waiter in waiters:
            with pytest.raises(PoolClosed):
                waiter.outcome(timeout=2.0)
        assert pool.waiting() == 0

    def test_acquire_after_close_fails(self) -> None:
        """New acquires fail even when resources are free."""
        pool = ResourcePool([Handle("a")])
        pool.close()

        assert pool.closed is True
        with pytest.raises(PoolClosed):
            pool.acquire()
        with pytest.raises(PoolClosed):
            pool.try_acquire()

    def test_release_after_close_drains(self) -> None:
        """In-flight checkouts may still be released after close."""
        handle = Handle("a")
        pool = ResourcePool([handle])
        pool.acquire()
        pool.close()

        pool.release(handle)

        assert pool.available() == 1
        assert pool.outstanding() == 0

    def test_close_is_idempotent(self) -> None:
        """Closing twice is harmless."""
        pool = ResourcePool([Handle("a")])
        pool.close()
        pool.close()
        assert pool.closed is True

    def test_context_manager_closes(self) -> None:
        """Leaving the with-block closes the pool."""
        with ResourcePool([Handle("a")]) as pool:
            assert pool.closed is False
        assert pool.closed is True


class TestCheckout:
    """Tests for scoped acquisition."""

    def test_checkout_releases_on_success(self) -> None:
        """Resource returns to the pool after the block."""
        handle = Handle("a")
        pool = ResourcePool([handle])

        with pool.checkout() as resource:
            assert resource is handle
            assert pool.available() == 0

        assert pool.available() == 1

    def test_checkout_releases_on_error_and_propagates(self) -> None:
        """Exceptions propagate unchanged and the resource is still released."""
        pool = ResourcePool([Handle("a")])
        boom = KeyError("boom")

        with pytest.raises(KeyError) as exc_info, pool.checkout():
            raise boom

        assert exc_info.value is boom
        assert pool.available() == 1
        stats = pool.get_stats()["pool_stats"]
        assert stats["acquires"] == stats["releases"] == 1

    def test_checkout_acquire_failure_skips_body(self) -> None:
        """If acquire fails the body never runs."""
        pool = ResourcePool([Handle("a")])
        pool.close()
        ran = False

        with pytest.raises(PoolClosed), pool.checkout():
            ran = True

        assert ran is False


class TestScenarios:
    """End-to-end concurrency scenarios."""

    def test_two_resources_five_units(self) -> None:
        """Pool [1, 2], 5 units: at most 2 in use, queued units run in arrival order."""
        pool = ResourcePool([1, 2])
        finish = [threading.Event() for _ in range(5)]
        lock = threading.Lock()
        in_use = 0
        peak = 0
        order: list[int] = []

        def unit(index: int) -> None:
            nonlocal in_use, peak
            with pool.checkout() as resource:
                assert resource in (1, 2)
                with lock:
                    in_use += 1
                    peak = max(peak, in_use)
                    order.append(index)
                finish[index].wait(5.0)
                with lock:
                    in_use -= 1

        threads = [CallInThread(lambda i=i: unit(i)) for i in range(2)]
        for thread in threads:
            thread.start()
        wait_until(lambda: pool.outstanding() == 2)

        for i in range(2, 5):
            threads.append(start_waiter(lambda i=i: unit(i), pool.waiting))
        assert pool.waiting() == 3

        # Finish one unit at a time; each release must serve the oldest waiter
        for done, expected_started in ((0, 3), (1, 4), (2, 5)):
            finish[done].set()
            wait_until(lambda n=expected_started: len(order) == n)
            assert peak <= 2

        for event in finish:
            event.set()
        for thread in threads:
            thread.outcome()

        assert peak <= 2
        assert sorted(order[:2]) == [0, 1]
        assert order[2:] == [2, 3, 4]
        assert pool.available() == 2

    @pytest.mark.slow
    def test_no_resource_held_twice_under_contention(self) -> None:
        """Many threads never see the same resource concurrently."""
        handles = [Handle(str(i)) for i in range(3)]
        pool = ResourcePool(handles)
        held: set[int] = set()
        lock = threading.Lock()
        violations: list[str] = []

        def unit() -> None:
            for _ in range(20):
                with pool.checkout() as resource:
                    with lock:
                        if id(resource) in held:
                            violations.append(resource.label)
                        held.add(id(resource))
                        if len(held) > 3:
                            violations.append("over-limit")
                    time.sleep(0.0005)
                    with lock:
                        held.discard(id(resource))

        threads = [CallInThread(unit) for _ in range(12)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.outcome(timeout=30.0)

        assert violations == []
        stats = pool.get_stats()["pool_stats"]
        assert stats["max_outstanding"] <= 3
        assert stats["acquires"] == stats["releases"] == 240
        assert pool.available() == 3
