#!/usr/bin/env python3
"""
Rate Limiter
============

Bounds outbound model calls two ways:

- a token bucket (``rate`` tokens per second, up to ``burst``) limits how
  often requests start;
- a slot count (``max_concurrency``) limits how many run at once.

Callers suspend until both are available or the admission timeout
elapses. Each admission yields a Permit whose concurrency slot is given
back exactly once, on every exit path.

All state sits behind one ``threading.Lock``, so a limiter may be shared
by event loops running in different threads. A freed slot is handed to
the oldest waiter and its loop is woken with ``call_soon_threadsafe``.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Deque, Optional

from monk_manager.agent.events import EngineEvents, EventBus
from monk_manager.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


class Permit:
    """Right to perform one rate-limited call. Release is idempotent."""

    def __init__(self, limiter: "RateLimiter"):
        self._limiter = limiter
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._limiter._release_slot()

    async def __aenter__(self) -> "Permit":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()


class _SlotWaiter:
    """A caller parked on its own loop until a slot is handed over."""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop
        self.future: asyncio.Future = loop.create_future()
        self.granted = False

    def wake(self) -> None:
        if not self.future.done():
            self.future.set_result(None)


class RateLimiter:
    def __init__(
        self,
        rate: float = 1.0,
        burst: int = 5,
        max_concurrency: int = 4,
        admission_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        event_bus: Optional[EventBus] = None,
    ):
        if rate <= 0 or burst <= 0 or max_concurrency <= 0:
            raise ValueError("rate, burst and max_concurrency must be positive")
        self.rate = rate
        self.burst = burst
        self.max_concurrency = max_concurrency
        self.admission_timeout = admission_timeout
        self._clock = clock
        self._sleep = sleep
        self._event_bus = event_bus

        # Everything below is only touched under _lock, never across an await.
        self._lock = threading.Lock()
        self._tokens = float(burst)
        self._last_refill = clock()
        self._in_flight = 0
        self._waiters: Deque[_SlotWaiter] = deque()

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def waiting(self) -> int:
        with self._lock:
            return len(self._waiters)

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    async def admit(self, timeout: Optional[float] = None) -> Permit:
        """
        Wait for a concurrency slot and a rate token.

        Raises:
            RateLimitExceededError: If admission is not possible within ``timeout``.
        """
        timeout = self.admission_timeout if timeout is None else timeout
        deadline = self._clock() + timeout

        await self._take_slot(timeout)
        try:
            await self._take_token(deadline)
        except BaseException:
            self._release_slot()
            raise
        return Permit(self)

    @asynccontextmanager
    async def acquire(self, timeout: Optional[float] = None) -> AsyncIterator[Permit]:
        """Scoped admission: the slot is released however the block exits."""
        permit = await self.admit(timeout)
        try:
            yield permit
        finally:
            permit.release()

    async def _take_slot(self, timeout: float) -> None:
        with self._lock:
            if self._in_flight < self.max_concurrency and not self._waiters:
                self._in_flight += 1
                return
            waiter = _SlotWaiter(asyncio.get_running_loop())
            self._waiters.append(waiter)

        try:
            async with asyncio.timeout(timeout):
                await asyncio.shield(waiter.future)
        except BaseException as exc:
            with self._lock:
                owned = waiter.granted
                if not owned:
                    self._waiters.remove(waiter)
            if owned:
                # The slot arrived as we gave up; pass it on.
                self._release_slot()
            if isinstance(exc, TimeoutError):
                raise RateLimitExceededError(
                    f"No request slot became free within {timeout:g}s "
                    f"({self.max_concurrency} requests already in flight)",
                    retry_after=timeout,
                ) from None
            raise

    def _release_slot(self) -> None:
        while True:
            with self._lock:
                if not self._waiters:
                    self._in_flight -= 1
                    return
                # Hand the slot over directly; _in_flight stays the same.
                waiter = self._waiters.popleft()
                waiter.granted = True
            try:
                waiter.loop.call_soon_threadsafe(waiter.wake)
                return
            except RuntimeError:
                # Waiter's loop is closed; offer the slot to the next one.
                with self._lock:
                    waiter.granted = False

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        self._last_refill = now

    async def _take_token(self, deadline: float) -> None:
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait = (1.0 - self._tokens) / self.rate

            remaining = deadline - self._clock()
            if wait > remaining:
                raise RateLimitExceededError(
                    f"Request rate limit of {self.rate:g}/s reached; "
                    f"next slot in {wait:.2f}s",
                    retry_after=round(wait, 2),
                )

            logger.debug("Rate limited, waiting %.2fs for a token", wait)
            if self._event_bus is not None:
                await self._event_bus.emit(
                    EngineEvents.RATE_LIMIT_WAIT.value, {"wait": wait}
                )
            await self._sleep(wait)
