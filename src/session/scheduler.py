"""Timer scheduling and clock abstractions for the session layer."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional, Protocol


Clock = Callable[[], int]


def system_clock() -> int:
    """Return the current wall-clock time in epoch milliseconds."""

    return int(time.time() * 1000)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_seconds: float, callback: Callable[[], Any]) -> TimerHandle: ...


class AsyncioScheduler:
    """Schedule callbacks on an asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def call_later(self, delay_seconds: float, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(delay_seconds, 0.0), callback)
