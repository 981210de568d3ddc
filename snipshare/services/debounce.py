"""
SnipShare — Debouncer
=====================

What:  Collapses a burst of values into a single callback with the last one.
How:   Each push() cancels the pending timer and arms a new one with
       loop.call_later(); when the timer fires the callback runs once with
       the most recent value.
Who:   FeedView uses one per client session for search terms.
"""

import asyncio
import logging
from typing import Any, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Debouncer(Generic[T]):
    """
    Usage:
        debouncer = Debouncer(0.3, apply_search)
        debouncer.push("ja")
        debouncer.push("java")     # only "java" reaches apply_search
    """

    def __init__(self, delay: float, callback: Callable[[T], Any]):
        self.delay = delay
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending: Optional[T] = None
        self._has_pending = False

    @property
    def pending(self) -> bool:
        return self._has_pending

    def push(self, value: T) -> None:
        """Replace the pending value and restart the delay."""
        if self._handle is not None:
            self._handle.cancel()
        self._pending = value
        self._has_pending = True
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def flush(self) -> None:
        """Deliver the pending value now, if there is one."""
        if self._handle is not None:
            self._handle.cancel()
        self._fire()

    def cancel(self) -> None:
        """Drop the pending value without delivering it."""
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._pending = None
        self._has_pending = False

    def _fire(self) -> None:
        self._handle = None
        if not self._has_pending:
            return
        value = self._pending
        self._pending = None
        self._has_pending = False
        logger.debug("Debounced value delivered after %.3fs", self.delay)
        self._callback(value)
