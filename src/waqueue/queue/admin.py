# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Operator helpers: inspect failed jobs, put one back in the queue, read delivery history.
"""

from ..core.config import QueueConfig
from ..core.log import get_logger
from ..core.time import Clock, SystemClock
from ..core.types import DedupeKey
from ..models import DeliveryLogEntry, JobStatus, MessageJob
from ..storage.collections import log_coll, queue_coll
from .lease import LEASE_CLEARED

log = get_logger("admin")


async def list_failed(db, cfg: QueueConfig, *, limit: int = 50) -> list[MessageJob]:
    cur = queue_coll(db, cfg).find({"status": JobStatus.failed.value}).sort([("created_at", -1)]).limit(limit)
    return [MessageJob.from_doc(d) async for d in cur]


async def requeue_failed(db, cfg: QueueConfig, dedupe_key: DedupeKey, *, clock: Clock | None = None) -> bool:
    """
    Reset a `failed` job to `pending` with a fresh attempt budget.
    `last_error` is kept for reference. Returns False if the key is not in `failed`.
    """
    now = (clock or SystemClock()).now_dt()
    res = await queue_coll(db, cfg).update_one(
        {"_id": dedupe_key, "status": JobStatus.failed.value},
        {"$set": {"status": JobStatus.pending.value, "attempts": 0, "next_attempt_at": now, **LEASE_CLEARED}},
    )
    ok = res.matched_count == 1
    if ok:
        log.info("failed job requeued", event="admin.requeue", dedupe_key=dedupe_key)
    else:
        log.warning("requeue skipped: job not in failed state", event="admin.requeue.skip", dedupe_key=dedupe_key)
    return ok


async def recent_logs(db, cfg: QueueConfig, *, limit: int = 50) -> list[DeliveryLogEntry]:
    cur = log_coll(db, cfg).find({}).sort([("processed_at", -1)]).limit(limit)
    return [DeliveryLogEntry.from_doc(d) async for d in cur]
