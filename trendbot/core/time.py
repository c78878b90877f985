"""Clock helpers.

Components that track windows or deadlines take a ``clock`` callable so tests
can drive time explicitly instead of sleeping.
"""
import asyncio
import time
from typing import Awaitable, Callable

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


def monotonic() -> float:
    """Clock for windows and state machines."""
    return time.monotonic()


def wall_clock() -> float:
    """Clock for cache entries that may outlive the process."""
    return time.time()


async def sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)
