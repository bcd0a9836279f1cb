# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Process-level wiring: N delivery workers plus one reclaimer over a shared store.

Workers in the same process share nothing but the `db` handle; each has its own
worker id and coordinates with every other worker (local or remote) through claims.
"""

import copy
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient

from .core.config import QueueConfig
from .core.log import bind_context, get_logger, swallow
from .core.time import Clock, SystemClock
from .delivery.push import PushNotifier
from .delivery.whatsapp import MessageSender
from .queue.reclaimer import StuckJobReclaimer
from .queue.worker import DeliveryWorker
from .storage.collections import ensure_indexes


@asynccontextmanager
async def open_database(cfg: QueueConfig) -> AsyncIterator[Any]:
    """Yield the Motor database named by `cfg`, closing the client on exit."""
    client = AsyncIOMotorClient(cfg.mongo_uri, tz_aware=True)
    try:
        yield client[cfg.mongo_db]
    finally:
        client.close()


class QueueService:
    """
    Runs `cfg.workers` delivery workers and one reclaimer against a shared database.

    Push fallbacks go through `push`. When it is omitted each worker uses a
    NullPushNotifier, which logs and drops them. To deliver fallbacks, pass a notifier
    bound to a provider transport:

        push = DevicePushNotifier(db=db, transport=fcm_transport, cfg=cfg)
        svc = QueueService(db=db, sender=sender, push=push, cfg=cfg)

    where `fcm_transport` implements `PushTransport.send_multicast`.
    """

    def __init__(
        self,
        *,
        db,
        sender: MessageSender,
        push: PushNotifier | None = None,
        cfg: QueueConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.db = db
        self.cfg = copy.deepcopy(cfg) if cfg is not None else QueueConfig.load()
        self.clock: Clock = clock or SystemClock()
        self.workers = [
            DeliveryWorker(db=db, sender=sender, push=push, cfg=self.cfg, clock=self.clock)
            for _ in range(self.cfg.workers)
        ]
        self.reclaimer = StuckJobReclaimer(db=db, cfg=self.cfg, clock=self.clock)
        self.log = get_logger("service")
        bind_context(role="service")

    async def start(self) -> None:
        await ensure_indexes(self.db, self.cfg)
        for w in self.workers:
            await w.start()
        await self.reclaimer.start()
        self.log.info(
            "service started",
            event="service.started",
            workers=[w.worker_id for w in self.workers],
            max_attempts=self.cfg.max_attempts,
            lease_ms=self.cfg.lease_ms,
        )

    async def stop(self) -> None:
        for w in self.workers:
            with swallow(logger=self.log, code="worker.stop", msg="worker stop failed", level=logging.ERROR, expected=False):
                await w.stop()
        with swallow(logger=self.log, code="reclaimer.stop", msg="reclaimer stop failed", level=logging.ERROR, expected=False):
            await self.reclaimer.stop()
        self.log.info("service stopped", event="service.stopped")
