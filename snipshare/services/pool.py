"""
SnipShare — Lease Pool
======================

What:  Bounds how many callers use the shared backend client at once by
       handing out integer lease tokens.
How:   An asyncio.Condition guards the active/idle bookkeeping. acquire()
       waits on the condition while the active count is at the maximum;
       release() returns the token to the idle set and notifies exactly one
       waiter. Idle tokens above the minimum watermark are evicted after an
       idle timeout via loop.call_later().
Who:   Created by the application factory (one per process), used by the
       auth store, the feed aggregator and every form flow.

Important:
    A lease owns no resource. Every lease wraps the same BackendClient; the
    pool governs a counter only.

Nesting:
    lease() is re-entrant per task. A lease opened while the same task
    already holds one from this pool reuses the outer token, so code that
    holds a lease and triggers auth listeners (which lease again) cannot
    wait on itself. Tasks spawned inside a lease acquire their own.

Token lifecycle:
    mint/reuse ──acquire()──▶ ACTIVE ──release()──▶ IDLE ──timeout──▶ evicted
                                  ▲                   │     (only while
                                  └────acquire()──────┘      idle > min_idle)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncIterator, Dict, Optional, Set, Tuple

from pydantic import BaseModel

from snipshare.config import settings
from snipshare.exceptions import LeaseTimeoutError

logger = logging.getLogger(__name__)


class PoolStats(BaseModel):
    """Point-in-time counters of a LeasePool."""

    active: int
    idle: int
    total: int
    max_leases: int


class LeasePool:
    """
    Concurrency-limiting pool of opaque integer lease tokens.

    Usage:
        async with pool.lease():
            await backend.table("snippets").select("*").execute()
    """

    def __init__(
        self,
        max_leases: Optional[int] = None,
        min_idle: Optional[int] = None,
        idle_timeout: Optional[float] = None,
        acquire_timeout: Optional[float] = None,
    ):
        self.max_leases = max_leases or settings.pool_max_leases
        self.min_idle = settings.pool_min_idle if min_idle is None else min_idle
        self.idle_timeout = idle_timeout or settings.pool_idle_timeout
        self.acquire_timeout = acquire_timeout or settings.pool_acquire_timeout

        self._active: Set[int] = set()
        # Insertion-ordered: the oldest idle token is reused first
        self._idle: Dict[int, Optional[asyncio.TimerHandle]] = {}
        self._last_id = 0
        self._closed = False
        self._condition = asyncio.Condition()
        # (token, owning task) of the lease held in the current context
        self._held: ContextVar[Optional[Tuple[int, asyncio.Task]]] = ContextVar(
            f"lease_pool_{id(self)}", default=None
        )

    @property
    def stats(self) -> PoolStats:
        return PoolStats(
            active=len(self._active),
            idle=len(self._idle),
            total=self._last_id,
            max_leases=self.max_leases,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def prewarm(self) -> int:
        """
        Top the idle set up to the minimum watermark.

        Returns: number of tokens minted. Idempotent once the watermark is met.
        """
        added = 0
        while len(self._idle) < self.min_idle and not self._closed:
            self._last_id += 1
            self._idle[self._last_id] = None
            added += 1
        if added:
            logger.debug("Lease pool prewarmed with %d idle tokens", added)
        return added

    def _has_capacity(self) -> bool:
        return self._closed or len(self._active) < self.max_leases

    def _take_token(self) -> int:
        if self._idle:
            token = next(iter(self._idle))
            handle = self._idle.pop(token)
            if handle is not None:
                handle.cancel()
        else:
            self._last_id += 1
            token = self._last_id
        self._active.add(token)
        return token

    async def acquire(self, timeout: Optional[float] = None) -> int:
        """
        Check out a lease token, waiting while the pool is at capacity.

        Args:
            timeout: seconds to wait; defaults to the pool's acquire_timeout.

        Raises:
            LeaseTimeoutError: no lease freed up in time, or the pool closed.
        """
        wait_seconds = self.acquire_timeout if timeout is None else timeout
        async with self._condition:
            try:
                await asyncio.wait_for(
                    self._condition.wait_for(self._has_capacity), wait_seconds
                )
            except asyncio.TimeoutError as exc:
                logger.warning(
                    "Lease acquire timed out after %.1fs (active=%d)",
                    wait_seconds,
                    len(self._active),
                )
                raise LeaseTimeoutError(
                    context={"timeout": wait_seconds, "active": len(self._active)}
                ) from exc

            if self._closed:
                raise LeaseTimeoutError(
                    message="The server is shutting down. Please try again later.",
                    context={"closed": True},
                )
            return self._take_token()

    async def release(self, token: int) -> None:
        """
        Return a token to the idle set and wake one waiter.

        Raises:
            ValueError: the token is not currently checked out.
        """
        async with self._condition:
            if token not in self._active:
                raise ValueError(f"Lease {token} is not active")
            self._active.remove(token)
            if not self._closed:
                loop = asyncio.get_running_loop()
                self._idle[token] = loop.call_later(self.idle_timeout, self._evict, token)
            self._condition.notify(1)

    def _evict(self, token: int) -> None:
        if token not in self._idle:
            return
        if len(self._idle) > self.min_idle:
            del self._idle[token]
            logger.debug("Evicted idle lease %d (idle=%d)", token, len(self._idle))
        else:
            self._idle[token] = None

    @asynccontextmanager
    async def lease(self, timeout: Optional[float] = None) -> AsyncIterator[int]:
        """
        Hold a token for the duration of the block; always released.

        Inside a lease already held by the current task the outer token is
        yielded again and nothing is acquired or released.
        """
        task = asyncio.current_task()
        held = self._held.get()
        if held is not None and held[1] is task and held[0] in self._active:
            yield held[0]
            return

        token = await self.acquire(timeout)
        marker = self._held.set((token, task))
        try:
            yield token
        finally:
            self._held.reset(marker)
            await self.release(token)

    async def close(self) -> None:
        """Cancel eviction timers, drop idle tokens and fail every waiter."""
        async with self._condition:
            self._closed = True
            for handle in self._idle.values():
                if handle is not None:
                    handle.cancel()
            self._idle.clear()
            self._condition.notify_all()
        logger.info("Lease pool closed (active=%d)", len(self._active))
