# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Message store layout.

`db` is injected everywhere (a Motor database in production, an in-memory double in
tests). Components reach their collections through these accessors so collection
names stay configurable in one place.

Collections:
- queue: active jobs, `_id` = dedupe key
- log: append-only delivery history, `_id` = dedupe key
- devices: push tokens per (entity_type, entity_id)
"""

import logging
from typing import Any

from ..core.config import QueueConfig
from ..core.log import get_logger, swallow

log = get_logger("storage")


def queue_coll(db: Any, cfg: QueueConfig) -> Any:
    return db[cfg.queue_collection]


def log_coll(db: Any, cfg: QueueConfig) -> Any:
    return db[cfg.log_collection]


def devices_coll(db: Any, cfg: QueueConfig) -> Any:
    return db[cfg.devices_collection]


async def ensure_indexes(db: Any, cfg: QueueConfig) -> None:
    """Create the indexes the poll, reclaim and operator queries rely on. Failures are logged only."""
    with swallow(
        logger=log, code="idx.queue.status_next", msg="create index queue status_next failed", level=logging.WARNING
    ):
        await queue_coll(db, cfg).create_index(
            [("status", 1), ("next_attempt_at", 1)], name="ix_queue_status_next_attempt"
        )
    with swallow(
        logger=log, code="idx.queue.status_lock", msg="create index queue status_lock failed", level=logging.WARNING
    ):
        await queue_coll(db, cfg).create_index(
            [("status", 1), ("lock_expires_at", 1)], name="ix_queue_status_lock_expires"
        )
    with swallow(logger=log, code="idx.log.processed", msg="create index log processed_at failed", level=logging.WARNING):
        await log_coll(db, cfg).create_index([("processed_at", -1)], name="ix_log_processed_at")
    with swallow(logger=log, code="idx.devices.token", msg="create index devices token failed", level=logging.WARNING):
        await devices_coll(db, cfg).create_index(
            [("entity_type", 1), ("entity_id", 1), ("token", 1)], unique=True, name="uniq_devices_entity_token"
        )
    log.debug("indexes ensured", event="storage.indexes.ensured")
