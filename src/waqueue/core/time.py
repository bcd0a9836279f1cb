from __future__ import annotations

"""
waqueue.core.time
=================

Clock abstractions:
- Clock Protocol for dependency injection.
- SystemClock: production default.
- ManualClock: deterministic time control for tests.

Persisted timestamps are timezone-aware UTC datetimes; durations are milliseconds.
"""

import asyncio
import time
from datetime import UTC, datetime, timedelta
from typing import Protocol

from .types import Millis, TimestampMs


class Clock(Protocol):
    """Minimal clock protocol used across the project."""

    def now_dt(self) -> datetime: ...
    def now_ms(self) -> TimestampMs: ...
    async def sleep_ms(self, ms: Millis) -> None: ...


class SystemClock:
    """Wall clock backed by system time."""

    def now_dt(self) -> datetime:
        return datetime.now(UTC)

    def now_ms(self) -> TimestampMs:
        return time.time_ns() // 1_000_000

    async def sleep_ms(self, ms: Millis) -> None:
        await asyncio.sleep(max(0.0, ms / 1000.0))


class ManualClock(SystemClock):
    """
    Controllable clock for tests.

    Time starts at `start` and moves only through `advance_ms` or `sleep_ms`.
    `sleep_ms` still yields to the event loop so background loops can interleave.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2024, 1, 1, 9, 0, tzinfo=UTC)

    def now_dt(self) -> datetime:
        return self._now

    def now_ms(self) -> TimestampMs:
        return int(self._now.timestamp() * 1000)

    def advance_ms(self, ms: Millis) -> datetime:
        self._now += timedelta(milliseconds=max(0, int(ms)))
        return self._now

    async def sleep_ms(self, ms: Millis) -> None:
        self.advance_ms(ms)
        await asyncio.sleep(0)


def after_ms(base: datetime, ms: Millis) -> datetime:
    """`base` shifted forward by `ms` milliseconds."""
    return base + timedelta(milliseconds=ms)
