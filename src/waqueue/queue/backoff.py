# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Retry policy: exponential backoff with additive jitter and a bounded attempt count.

    capped(attempts) = min(base_ms * 2**attempts, max_ms)
    delay(attempts)  = capped + U[0, jitter_pct * capped]

`attempts` is the count after the failing attempt has been added. Reaching
`max_attempts` is terminal.
"""

import random
from dataclasses import dataclass
from datetime import datetime

from ..core.config import QueueConfig
from ..core.time import after_ms
from ..core.utils import add_jitter_ms
from ..models import JobStatus


@dataclass(frozen=True)
class RetryDecision:
    status: JobStatus
    attempts: int
    next_attempt_at: datetime | None = None
    delay_ms: int | None = None

    @property
    def terminal(self) -> bool:
        return self.status is JobStatus.failed


class BackoffPolicy:
    def __init__(
        self,
        *,
        base_ms: int = 1000,
        max_ms: int = 3_600_000,
        max_attempts: int = 3,
        jitter_pct: float = 0.2,
        rng: random.Random | None = None,
    ) -> None:
        if base_ms <= 0:
            raise ValueError("base_ms must be positive")
        if max_ms < base_ms:
            raise ValueError("max_ms must be >= base_ms")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.base_ms = base_ms
        self.max_ms = max_ms
        self.max_attempts = max_attempts
        self.jitter_pct = jitter_pct
        self.rng = rng or random.Random()

    @classmethod
    def from_config(cls, cfg: QueueConfig, *, rng: random.Random | None = None) -> BackoffPolicy:
        return cls(
            base_ms=cfg.base_backoff_ms,
            max_ms=cfg.max_backoff_ms,
            max_attempts=cfg.max_attempts,
            jitter_pct=cfg.jitter_pct,
            rng=rng,
        )

    def base_delay_ms(self, attempts: int) -> int:
        """Delay before jitter, capped at `max_ms`. Deterministic in `attempts`."""
        # shift is bounded; max_ms is reached long before it
        return min(self.max_ms, self.base_ms << min(max(0, attempts), 63))

    def delay_ms(self, attempts: int) -> int:
        return add_jitter_ms(self.base_delay_ms(attempts), pct=self.jitter_pct, rng=self.rng)

    def on_failure(self, previous_attempts: int, *, now: datetime) -> RetryDecision:
        """Decide the next state for a job whose attempt number `previous_attempts + 1` just failed."""
        attempts = previous_attempts + 1
        if attempts >= self.max_attempts:
            return RetryDecision(status=JobStatus.failed, attempts=attempts)
        delay = self.delay_ms(attempts)
        return RetryDecision(
            status=JobStatus.retrying,
            attempts=attempts,
            next_attempt_at=after_ms(now, delay),
            delay_ms=delay,
        )
