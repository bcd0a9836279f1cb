# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Idempotent enqueue.

The dedupe key is the document `_id`, so insertion is create-if-absent by
construction. A duplicate key is a no-op for the caller; every other store failure is
raised as EnqueueError so business triggers can tell "already queued" from "not queued".
"""

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pymongo.errors import DuplicateKeyError

from ..core.config import QueueConfig
from ..core.log import get_logger, log_context
from ..core.time import Clock, SystemClock
from ..errors import EnqueueError
from ..models import MessageJob, PushPayload, WhatsAppPayload
from ..storage.collections import log_coll, queue_coll


class EnqueueResult(str, Enum):
    enqueued = "enqueued"
    duplicate = "duplicate"


class EnqueueGate:
    """Accepts outbound messages into the queue, at most once per dedupe key."""

    def __init__(self, *, db, cfg: QueueConfig | None = None, clock: Clock | None = None) -> None:
        self.db = db
        self.cfg = cfg or QueueConfig.load()
        self.clock: Clock = clock or SystemClock()
        self.log = get_logger("enqueue")

    async def enqueue(
        self,
        dedupe_key: str,
        payload: WhatsAppPayload | Mapping[str, Any],
        fallback_payload: PushPayload | Mapping[str, Any] | None = None,
    ) -> EnqueueResult:
        """
        Insert a pending job keyed by `dedupe_key`.

        Returns EnqueueResult.duplicate when the key is already queued or was already
        delivered. Raises ValueError for an empty key and EnqueueError when the store fails.
        """
        if not dedupe_key or not dedupe_key.strip():
            raise ValueError("dedupe_key must be a non-empty string")

        wa = payload if isinstance(payload, WhatsAppPayload) else WhatsAppPayload.model_validate(payload)
        push: PushPayload | None
        if fallback_payload is None or isinstance(fallback_payload, PushPayload):
            push = fallback_payload
        else:
            push = PushPayload.model_validate(fallback_payload)

        job = MessageJob.new(dedupe_key, wa, push, now=self.clock.now_dt())

        with log_context(dedupe_key=dedupe_key):
            try:
                if await log_coll(self.db, self.cfg).find_one({"_id": dedupe_key}) is not None:
                    self.log.warning("already delivered, skipping", event="enqueue.duplicate", where="log")
                    return EnqueueResult.duplicate
                await queue_coll(self.db, self.cfg).insert_one(job.to_doc())
            except DuplicateKeyError:
                self.log.warning("already queued, skipping", event="enqueue.duplicate", where="queue")
                return EnqueueResult.duplicate
            except Exception as e:
                self.log.error("enqueue failed", event="enqueue.failed", exc_info=True)
                raise EnqueueError(dedupe_key, str(e)) from e

            self.log.info("enqueued", event="enqueue.ok", has_destination=wa.destination is not None)
            return EnqueueResult.enqueued
