"""
SnipShare — Lease Pool & Debouncer Unit Tests
=============================================

What we test:
    ✅ Tokens are minted, reused from the idle set and never exceed the max
    ✅ A full pool blocks acquire(); one release wakes exactly one waiter
    ✅ acquire() times out with LeaseTimeoutError and is cancellable
    ✅ Idle eviction respects the min_idle watermark
    ✅ prewarm() tops up to min_idle; close() fails waiters
    ✅ A nested lease in the same task reuses the outer token
    ✅ Debouncer delivers only the last value of a burst
"""

import asyncio

import pytest

from snipshare.exceptions import LeaseTimeoutError
from snipshare.services.debounce import Debouncer
from snipshare.services.pool import LeasePool


class TestLeasePoolAcquire:
    """Checkout and reuse of tokens."""

    @pytest.mark.asyncio
    async def test_mints_sequential_tokens(self):
        pool = LeasePool(max_leases=3, min_idle=0, idle_timeout=10, acquire_timeout=1)
        tokens = [await pool.acquire() for _ in range(3)]
        assert tokens == [1, 2, 3]
        assert pool.stats.active == 3
        assert pool.stats.total == 3

    @pytest.mark.asyncio
    async def test_reuses_idle_token(self):
        pool = LeasePool(max_leases=3, min_idle=0, idle_timeout=10, acquire_timeout=1)
        token = await pool.acquire()
        await pool.release(token)
        assert pool.stats.idle == 1

        again = await pool.acquire()
        assert again == token
        assert pool.stats.idle == 0
        assert pool.stats.total == 1
        await pool.close()

    @pytest.mark.asyncio
    async def test_release_unknown_token_raises(self):
        pool = LeasePool(max_leases=2, min_idle=0, idle_timeout=10, acquire_timeout=1)
        token = await pool.acquire()
        await pool.release(token)
        with pytest.raises(ValueError):
            await pool.release(token)
        with pytest.raises(ValueError):
            await pool.release(99)
        await pool.close()

    @pytest.mark.asyncio
    async def test_lease_context_manager_always_releases(self):
        pool = LeasePool(max_leases=1, min_idle=0, idle_timeout=10, acquire_timeout=1)
        with pytest.raises(RuntimeError):
            async with pool.lease():
                assert pool.stats.active == 1
                raise RuntimeError("boom")
        assert pool.stats.active == 0
        await pool.close()


class TestLeasePoolBlocking:
    """Behaviour at capacity."""

    @pytest.mark.asyncio
    async def test_never_exceeds_max_active(self):
        pool = LeasePool(max_leases=3, min_idle=0, idle_timeout=10, acquire_timeout=2)
        peak = 0

        async def worker():
            nonlocal peak
            async with pool.lease():
                peak = max(peak, pool.stats.active)
                await asyncio.sleep(0.01)

        await asyncio.gather(*(worker() for _ in range(12)))
        assert peak == 3
        assert pool.stats.active == 0
        await pool.close()

    @pytest.mark.asyncio
    async def test_release_wakes_exactly_one_waiter(self):
        pool = LeasePool(max_leases=1, min_idle=0, idle_timeout=10, acquire_timeout=2)
        held = await pool.acquire()

        waiters = [asyncio.create_task(pool.acquire()) for _ in range(2)]
        await asyncio.sleep(0.01)
        assert not any(w.done() for w in waiters)

        await pool.release(held)
        await asyncio.sleep(0.01)
        done = [w for w in waiters if w.done()]
        assert len(done) == 1
        assert pool.stats.active == 1

        await pool.release(done[0].result())
        await asyncio.sleep(0.01)
        assert all(w.done() for w in waiters)
        await pool.close()

    @pytest.mark.asyncio
    async def test_acquire_times_out(self):
        pool = LeasePool(max_leases=1, min_idle=0, idle_timeout=10, acquire_timeout=5)
        await pool.acquire()
        with pytest.raises(LeaseTimeoutError):
            await pool.acquire(timeout=0.02)
        assert pool.stats.active == 1
        await pool.close()

    @pytest.mark.asyncio
    async def test_acquire_is_cancellable(self):
        pool = LeasePool(max_leases=1, min_idle=0, idle_timeout=10, acquire_timeout=5)
        held = await pool.acquire()
        waiter = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0.01)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        await pool.release(held)
        assert await pool.acquire(timeout=0.1) == held
        await pool.close()

    @pytest.mark.asyncio
    async def test_close_fails_waiters(self):
        pool = LeasePool(max_leases=1, min_idle=0, idle_timeout=10, acquire_timeout=5)
        await pool.acquire()
        waiter = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0.01)
        await pool.close()
        with pytest.raises(LeaseTimeoutError):
            await waiter
        with pytest.raises(LeaseTimeoutError):
            await pool.acquire()


class TestLeasePoolIdle:
    """Eviction and the min_idle watermark."""

    @pytest.mark.asyncio
    async def test_evicts_down_to_min_idle(self):
        pool = LeasePool(max_leases=5, min_idle=2, idle_timeout=0.02, acquire_timeout=1)
        tokens = [await pool.acquire() for _ in range(4)]
        for token in tokens:
            await pool.release(token)
        assert pool.stats.idle == 4

        await asyncio.sleep(0.1)
        assert pool.stats.idle == 2
        await pool.close()

    @pytest.mark.asyncio
    async def test_reacquired_token_is_not_evicted(self):
        pool = LeasePool(max_leases=5, min_idle=0, idle_timeout=0.02, acquire_timeout=1)
        token = await pool.acquire()
        await pool.release(token)
        again = await pool.acquire()
        await asyncio.sleep(0.05)
        assert pool.stats.active == 1
        await pool.release(again)
        await pool.close()

    @pytest.mark.asyncio
    async def test_prewarm_is_idempotent(self):
        pool = LeasePool(max_leases=5, min_idle=3, idle_timeout=10, acquire_timeout=1)
        assert pool.prewarm() == 3
        assert pool.prewarm() == 0
        assert pool.stats.idle == 3
        assert await pool.acquire() == 1
        await pool.close()


class TestLeasePoolNesting:
    @pytest.mark.asyncio
    async def test_nested_lease_reuses_outer_token(self):
        pool = LeasePool(max_leases=1, min_idle=0, idle_timeout=10, acquire_timeout=0.2)
        async with pool.lease() as outer:
            async with pool.lease() as inner:
                assert inner == outer
                assert pool.stats.active == 1
            assert pool.stats.active == 1
        assert pool.stats.active == 0
        await pool.close()

    @pytest.mark.asyncio
    async def test_child_task_takes_its_own_lease(self):
        pool = LeasePool(max_leases=2, min_idle=0, idle_timeout=10, acquire_timeout=0.2)

        async def child():
            async with pool.lease() as token:
                return token, pool.stats.active

        async with pool.lease() as outer:
            token, active = await asyncio.create_task(child())

        assert token != outer
        assert active == 2
        assert pool.stats.active == 0
        await pool.close()

    @pytest.mark.asyncio
    async def test_child_task_still_waits_at_capacity(self):
        pool = LeasePool(max_leases=1, min_idle=0, idle_timeout=10, acquire_timeout=0.05)

        async def child():
            async with pool.lease():
                pass

        async with pool.lease():
            with pytest.raises(LeaseTimeoutError):
                await asyncio.create_task(child())
        await pool.close()


class TestDebouncer:
    @pytest.mark.asyncio
    async def test_only_last_value_is_delivered(self):
        seen = []
        debouncer = Debouncer(0.03, seen.append)
        debouncer.push("j")
        debouncer.push("ja")
        debouncer.push("java")
        await asyncio.sleep(0.01)
        assert seen == []
        await asyncio.sleep(0.05)
        assert seen == ["java"]
        assert not debouncer.pending

    @pytest.mark.asyncio
    async def test_flush_and_cancel(self):
        seen = []
        debouncer = Debouncer(10, seen.append)
        debouncer.push("go")
        debouncer.flush()
        assert seen == ["go"]

        debouncer.push("rust")
        debouncer.cancel()
        debouncer.flush()
        assert seen == ["go"]
