"""Retry policy shared by the readiness waiters."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable


@dataclass(frozen=True)
class RetryPolicy:
    """How long to pause between attempts and when to give up.

    ``max_attempts=None`` means retry until the awaiting task is cancelled.
    ``sleep`` is injectable so tests can run without real delays.
    """

    interval: float = 5.0
    backoff: float = 1.0
    max_interval: float | None = None
    max_attempts: int | None = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        delay = self.interval * (self.backoff ** (attempt - 1))
        if self.max_interval is not None:
            delay = min(delay, self.max_interval)
        return delay

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts is not None and attempt >= self.max_attempts

    async def pause(self, attempt: int) -> None:
        await self.sleep(self.delay(attempt))

    async def wait(self, seconds: float) -> None:
        await self.sleep(seconds)
