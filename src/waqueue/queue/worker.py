# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Delivery worker loop.

Each tick: select due jobs (pending/retrying, next_attempt_at <= now) ordered by
next_attempt_at, claim each through the LeaseManager, send, then resolve:

- success:              append log entry, delete job
- no destination:       push fallback, log as sent_via_fallback, delete job
- failure:              BackoffPolicy -> retrying (lease cleared) or failed (+ push fallback)

Many workers may run against the same store; exclusivity comes from the claim only.
Nothing raised while handling a job escapes a tick, and a failing tick (store down)
does not stop the loop.
"""

import asyncio
import logging
from typing import Any

from pymongo.errors import DuplicateKeyError

from ..core.config import QueueConfig
from ..core.log import get_logger, log_context, swallow
from ..core.time import Clock, SystemClock
from ..core.types import WorkerId
from ..core.utils import clip_error, new_worker_id
from ..delivery.push import NullPushNotifier, PushNotifier
from ..delivery.whatsapp import MessageSender
from ..models import CLAIMABLE_STATUSES, DeliveryLogEntry, LogStatus, MessageJob, PushPayload
from ..storage.collections import log_coll, queue_coll
from .backoff import BackoffPolicy
from .lease import LeaseManager


class DeliveryWorker:
    """Polls the queue and delivers claimed jobs through `sender`."""

    def __init__(
        self,
        *,
        db,
        sender: MessageSender,
        push: PushNotifier | None = None,
        cfg: QueueConfig | None = None,
        clock: Clock | None = None,
        backoff: BackoffPolicy | None = None,
        worker_id: WorkerId | None = None,
    ) -> None:
        self.db = db
        self.sender = sender
        self.push: PushNotifier = push or NullPushNotifier()
        self.cfg = cfg or QueueConfig.load()
        self.clock: Clock = clock or SystemClock()
        self.backoff = backoff or BackoffPolicy.from_config(self.cfg)
        self.worker_id = worker_id or new_worker_id()
        self.leases = LeaseManager(db=db, cfg=self.cfg, clock=self.clock)

        self._task: asyncio.Task | None = None
        self._running = False
        self.log = get_logger("worker")

    # ---- lifecycle

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"waqueue-{self.worker_id}")
        self._task.add_done_callback(self._on_loop_done)
        self.log.info(
            "worker started",
            event="worker.started",
            worker_id=self.worker_id,
            poll_ms=self.cfg.poll_interval_ms,
        )

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
        self.log.info("worker stopped", event="worker.stopped", worker_id=self.worker_id)

    def _on_loop_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.log.error("worker loop crashed", event="worker.task.crashed", worker_id=self.worker_id, exc_info=exc)

    # ---- loop

    async def _loop(self) -> None:
        with log_context(worker_id=self.worker_id):
            try:
                while self._running:
                    try:
                        await self.tick()
                    except Exception:
                        self.log.error("poll tick failed", event="worker.tick.failed", exc_info=True)
                    await self.clock.sleep_ms(self.cfg.poll_interval_ms)
            except asyncio.CancelledError:
                return

    async def _due_keys(self) -> list[str]:
        now = self.clock.now_dt()
        cur = (
            queue_coll(self.db, self.cfg)
            .find(
                {"status": {"$in": list(CLAIMABLE_STATUSES)}, "next_attempt_at": {"$lte": now}},
                {"_id": 1},
            )
            .sort([("next_attempt_at", 1)])
            .limit(self.cfg.batch_size)
        )
        return [d["_id"] async for d in cur]

    async def tick(self) -> int:
        """Run one poll; return how many jobs this worker claimed and resolved."""
        handled = 0
        for key in await self._due_keys():
            job = await self.leases.try_claim(key, worker_id=self.worker_id)
            if job is None:
                continue
            with log_context(dedupe_key=job.dedupe_key, attempt=job.attempts + 1):
                await self._process(job)
            handled += 1
        return handled

    # ---- job handling

    async def _process(self, job: MessageJob) -> None:
        if job.payload.destination is None:
            await self._resolve_via_fallback(job)
            return
        self.log.info("sending", event="job.sending", to=job.payload.destination)
        try:
            message_id = await self.sender.send(job.payload)
        except Exception as e:  # noqa: BLE001
            await self._on_send_fail(job, e)
            return
        await self._resolve(job, status=LogStatus.sent, provider_message_id=message_id)

    async def _resolve_via_fallback(self, job: MessageJob) -> None:
        if job.fallback_payload is None:
            self.log.warning("no destination and no fallback payload", event="job.fallback.missing")
        else:
            self.log.warning("no destination, routing to push fallback", event="job.fallback")
            await self._notify_fallback(job.fallback_payload)
        await self._resolve(job, status=LogStatus.sent_via_fallback)

    async def _resolve(self, job: MessageJob, *, status: LogStatus, provider_message_id: str | None = None) -> None:
        """Log-then-delete. The log `_id` is the dedupe key, so a repeated resolve logs once."""
        entry = DeliveryLogEntry.from_job(
            job,
            status=status,
            now=self.clock.now_dt(),
            worker_id=self.worker_id,
            provider_message_id=provider_message_id,
        )
        try:
            await log_coll(self.db, self.cfg).insert_one(entry.to_doc())
        except DuplicateKeyError:
            self.log.debug("already logged", event="job.log.duplicate")
        if await self.leases.delete_owned(job.dedupe_key, worker_id=self.worker_id):
            self.log.info("delivered", event="job.done", status=status.value)
        else:
            self.log.warning("lease lost before completion; job left to its new owner", event="job.lease.lost")

    async def _on_send_fail(self, job: MessageJob, err: Exception) -> None:
        error = clip_error(str(err) or type(err).__name__)
        decision = self.backoff.on_failure(job.attempts, now=self.clock.now_dt())
        fields: dict[str, Any] = {"status": decision.status.value, "attempts": decision.attempts, "last_error": error}
        if not decision.terminal:
            fields["next_attempt_at"] = decision.next_attempt_at

        if not await self.leases.release(job.dedupe_key, worker_id=self.worker_id, fields=fields):
            self.log.warning("lease lost before failure was recorded", event="job.lease.lost", error=error)
            return

        if decision.terminal:
            self.log.error(
                "delivery failed permanently",
                event="job.failed",
                attempts=decision.attempts,
                error=error,
            )
            if job.fallback_payload is not None:
                await self._notify_fallback(job.fallback_payload)
        else:
            self.log.warning(
                "delivery failed, retry scheduled",
                event="job.retry",
                attempts=decision.attempts,
                delay_ms=decision.delay_ms,
                error=error,
            )

    async def _notify_fallback(self, payload: PushPayload) -> None:
        with swallow(logger=self.log, code="job.fallback.push", msg="push fallback raised", level=logging.ERROR):
            await self.push.notify(payload)
