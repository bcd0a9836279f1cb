# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Lease manager (claim protocol).

Claiming is a single-document conditional write: the filter re-verifies that the job
is still claimable and the update installs the lease in the same atomic operation.
Under N concurrent claimers exactly one matches; the rest get None.

Every later transition made by the lease holder is guarded by
`status=processing AND locked_by=<worker>` so a worker whose lease was reclaimed
cannot overwrite the new owner's state.
"""

from collections.abc import Mapping
from typing import Any

from pymongo import ReturnDocument

from ..core.config import QueueConfig
from ..core.log import get_logger
from ..core.time import Clock, SystemClock, after_ms
from ..core.types import DedupeKey, Millis, WorkerId
from ..models import CLAIMABLE_STATUSES, JobStatus, MessageJob
from ..storage.collections import queue_coll

LEASE_CLEARED: dict[str, Any] = {"locked_by": None, "locked_at": None, "lock_expires_at": None}


class LeaseManager:
    def __init__(self, *, db, cfg: QueueConfig | None = None, clock: Clock | None = None) -> None:
        self.db = db
        self.cfg = cfg or QueueConfig.load()
        self.clock: Clock = clock or SystemClock()
        self.log = get_logger("lease")

    @property
    def jobs(self) -> Any:
        return queue_coll(self.db, self.cfg)

    async def try_claim(
        self, dedupe_key: DedupeKey, *, worker_id: WorkerId, lease_ms: Millis | None = None
    ) -> MessageJob | None:
        """
        Atomically move a claimable job to `processing` owned by `worker_id`.

        Returns the claimed job, or None when the job is gone, already owned, failed,
        or not yet due. None is the normal outcome of losing a race.
        """
        now = self.clock.now_dt()
        ttl = self.cfg.lease_ms if lease_ms is None else lease_ms
        doc = await self.jobs.find_one_and_update(
            {
                "_id": dedupe_key,
                "status": {"$in": list(CLAIMABLE_STATUSES)},
                "next_attempt_at": {"$lte": now},
            },
            {
                "$set": {
                    "status": JobStatus.processing.value,
                    "locked_by": worker_id,
                    "locked_at": now,
                    "lock_expires_at": after_ms(now, ttl),
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            self.log.debug("claim lost", event="lease.claim.lost", dedupe_key=dedupe_key, worker_id=worker_id)
            return None
        self.log.debug("claimed", event="lease.claim.ok", dedupe_key=dedupe_key, worker_id=worker_id)
        return MessageJob.from_doc(doc)

    @staticmethod
    def _owned(dedupe_key: DedupeKey, worker_id: WorkerId) -> dict[str, Any]:
        return {"_id": dedupe_key, "status": JobStatus.processing.value, "locked_by": worker_id}

    async def release(self, dedupe_key: DedupeKey, *, worker_id: WorkerId, fields: Mapping[str, Any]) -> bool:
        """Apply `fields` and clear the lease, only if `worker_id` still holds it."""
        res = await self.jobs.update_one(
            self._owned(dedupe_key, worker_id), {"$set": {**dict(fields), **LEASE_CLEARED}}
        )
        return res.matched_count == 1

    async def delete_owned(self, dedupe_key: DedupeKey, *, worker_id: WorkerId) -> bool:
        """Remove a resolved job, only if `worker_id` still holds its lease."""
        res = await self.jobs.delete_one(self._owned(dedupe_key, worker_id))
        return res.deleted_count == 1
