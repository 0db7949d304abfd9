"""
Outbound call throttling for quota-limited providers.

``RateLimitedCaller`` is meant to be built once per process and shared by every
session: it keeps a single last-call clock, so concurrent turns queue behind
each other instead of tripping the provider's free-tier limits.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    fn: Callable[..., T],
    *args: Any,
    attempts: int = 3,
    delay_s: float = 1.0,
    label: str = "call",
) -> T:
    """Run a blocking callable in a worker thread, retrying with a fixed delay.

    The last attempt's exception is re-raised unchanged.
    """
    attempts = max(1, int(attempts))
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.to_thread(fn, *args)
        except Exception as exc:
            if attempt >= attempts:
                raise
            logger.warning(
                "%s failed: attempt=%s/%s retry_in_s=%.2f error=%s",
                label,
                attempt,
                attempts,
                delay_s,
                exc,
            )
            await asyncio.sleep(delay_s)
    raise AssertionError("unreachable")


class RateLimitedCaller:
    def __init__(
        self,
        min_spacing_s: float = 6.5,
        attempts: int = 3,
        retry_delay_s: float = 1.2,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_spacing_s = max(0.0, float(min_spacing_s))
        self.attempts = max(1, int(attempts))
        self.retry_delay_s = max(0.0, float(retry_delay_s))
        self._clock = clock
        self._last_call: float | None = None

    @property
    def last_call(self) -> float | None:
        return self._last_call

    def _reserve_slot(self) -> float:
        # Claim the next slot before sleeping so overlapping callers line up
        # behind each other's intended invocation time, not their completion.
        now = self._clock()
        if self._last_call is None:
            slot = now
        else:
            slot = max(now, self._last_call + self.min_spacing_s)
        self._last_call = slot
        return slot - now

    async def call(self, fn: Callable[..., T], *args: Any, label: str = "provider call") -> T:
        wait = self._reserve_slot()
        if wait > 0:
            logger.info("%s throttled: wait_s=%.2f", label, wait)
            await asyncio.sleep(wait)
        return await call_with_retry(
            fn,
            *args,
            attempts=self.attempts,
            delay_s=self.retry_delay_s,
            label=label,
        )
