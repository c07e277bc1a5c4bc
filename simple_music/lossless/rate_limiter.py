"""
Per-provider request pacing.

The cross-platform link service allows roughly ten requests a minute and
bans clients that burst. RateLimiter enforces two constraints per provider
key before a call is allowed:

    - at most `calls_per_window` calls inside any rolling
      `window_seconds` window
    - at least `min_interval_seconds` between two consecutive calls

Waiters for the same key are served in arrival order. The limiter never
raises; it only delays. HTTP 429 handling (back off, then acquire again)
belongs to the caller.

The clock and sleep functions are injectable so tests can drive time by
hand.

Usage:
    limiter = RateLimiter()
    await limiter.acquire_slot("song.link")
    response = await session.get(...)
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable


DEFAULT_CALLS_PER_WINDOW = 9
DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_MIN_INTERVAL_SECONDS = 7.0


@dataclass
class _ProviderWindow:
    """Call history and FIFO lock for one provider key."""
    timestamps: deque = field(default_factory=deque)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class RateLimiter:
    """
    Rolling-window plus minimum-spacing limiter.

    Attributes:
        calls_per_window: Maximum calls per rolling window.
        window_seconds: Window length in seconds.
        min_interval_seconds: Minimum gap between consecutive calls.
    """

    def __init__(
        self,
        calls_per_window: int = DEFAULT_CALLS_PER_WINDOW,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        min_interval_seconds: float = DEFAULT_MIN_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.calls_per_window = calls_per_window
        self.window_seconds = window_seconds
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._windows: dict[str, _ProviderWindow] = {}

    async def acquire_slot(self, provider_key: str) -> None:
        """
        Wait until a call to `provider_key` is allowed, then record it.

        asyncio.Lock wakes waiters in FIFO order, so concurrent callers are
        granted slots in the order they arrived.
        """
        window = self._windows.setdefault(provider_key, _ProviderWindow())

        async with window.lock:
            while True:
                delay = self._required_delay(window.timestamps, self._clock())
                if delay <= 0:
                    break
                await self._sleep(delay)
            window.timestamps.append(self._clock())

    def calls_in_window(self, provider_key: str) -> int:
        """Number of recorded calls still inside the rolling window."""
        window = self._windows.get(provider_key)
        if window is None:
            return 0
        now = self._clock()
        return sum(1 for t in window.timestamps if now - t < self.window_seconds)

    def _required_delay(self, timestamps: deque, now: float) -> float:
        # Drop calls that have left the window
        while timestamps and now - timestamps[0] >= self.window_seconds:
            timestamps.popleft()

        if not timestamps:
            return 0.0

        delay = self.min_interval_seconds - (now - timestamps[-1])
        if len(timestamps) >= self.calls_per_window:
            delay = max(delay, self.window_seconds - (now - timestamps[0]))
        return delay
