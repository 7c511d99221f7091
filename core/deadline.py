from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable


class Deadline:
    """A point on the monotonic clock that bounds every wait of a run."""

    def __init__(self, seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._at = clock() + max(0.0, seconds)

    @classmethod
    def after_ms(cls, ms: int, **kwargs) -> Deadline:
        return cls(ms / 1000.0, **kwargs)

    def remaining(self) -> float:
        return max(0.0, self._at - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self._at

    def remaining_ms(self, cap_ms: int | None = None) -> int:
        ms = int(self.remaining() * 1000)
        return ms if cap_ms is None else min(ms, cap_ms)

    def sub(self, seconds: float) -> Deadline:
        """A child deadline that never outlives this one."""
        child = Deadline(0.0, clock=self._clock)
        child._at = min(self._at, self._clock() + max(0.0, seconds))
        return child


async def wait_for_child_injection(
    count_fn: Callable[[], Awaitable[int]],
    baseline: int,
    deadline: Deadline,
    interval: float = 0.15,
) -> bool:
    """Poll ``count_fn`` until it exceeds ``baseline`` or ``deadline`` passes.

    Returns True when growth was observed. A failing count is read as no growth.
    """
    while not deadline.expired:
        await asyncio.sleep(min(interval, deadline.remaining()))
        try:
            count = await count_fn()
        except Exception:
            count = baseline
        if count > baseline:
            return True
    return False
