# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Stuck-job reclaimer.

A worker that dies after claiming leaves its job in `processing` with a lease that
nobody will resolve. On its own schedule the reclaimer returns every such job whose
`lock_expires_at` has passed to `pending` with the lease cleared. `attempts` and
`next_attempt_at` are left untouched.

The reset is one `update_many` whose filter repeats the expiry condition, so a job that
was resolved (or re-claimed) between the scan and the write is not touched. A partial
failure is harmless: the next sweep picks up whatever is left.
"""

import asyncio

from ..core.config import QueueConfig
from ..core.log import get_logger
from ..core.time import Clock, SystemClock
from ..models import JobStatus
from ..storage.collections import queue_coll
from .lease import LEASE_CLEARED


class StuckJobReclaimer:
    def __init__(self, *, db, cfg: QueueConfig | None = None, clock: Clock | None = None) -> None:
        self.db = db
        self.cfg = cfg or QueueConfig.load()
        self.clock: Clock = clock or SystemClock()
        self._task: asyncio.Task | None = None
        self._running = False
        self.log = get_logger("reclaimer")

    # ---- lifecycle

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="waqueue-reclaimer")
        self._task.add_done_callback(self._on_loop_done)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            finally:
                self._task = None

    def _on_loop_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.log.error("reclaimer loop crashed", event="reclaim.task.crashed", exc_info=exc)

    async def _loop(self) -> None:
        try:
            while self._running:
                try:
                    await self.sweep_once()
                except Exception:
                    self.log.error("reclaim sweep failed", event="reclaim.failed", exc_info=True)
                await self.clock.sleep_ms(self.cfg.reclaim_interval_ms)
        except asyncio.CancelledError:
            return

    # ---- sweep

    async def sweep_once(self) -> int:
        """Reset expired leases; return how many jobs went back to `pending`."""
        now = self.clock.now_dt()
        stuck = {"status": JobStatus.processing.value, "lock_expires_at": {"$lt": now}}
        jobs = queue_coll(self.db, self.cfg)

        keys: list[str] = []
        async for d in jobs.find(stuck, {"_id": 1, "locked_by": 1, "lock_expires_at": 1}):
            keys.append(d["_id"])
            self.log.warning(
                "stuck job found, resetting to pending",
                event="reclaim.found",
                dedupe_key=d["_id"],
                locked_by=d.get("locked_by"),
                lock_expires_at=d.get("lock_expires_at"),
            )
        if not keys:
            self.log.debug("no stuck jobs", event="reclaim.none")
            return 0

        res = await jobs.update_many(
            {"_id": {"$in": keys}, **stuck},
            {"$set": {"status": JobStatus.pending.value, **LEASE_CLEARED}},
        )
        self.log.info("stuck jobs reset", event="reclaim.done", found=len(keys), reset=res.modified_count)
        return res.modified_count
