# conftest.py
from __future__ import annotations

import os
import random

import pytest
import pytest_asyncio

from tests.helpers import InMemDB, RecordingPush, ScriptedSender
from waqueue.core.config import QueueConfig
from waqueue.core.log import (
    bind_context,
    configure_from_env,
    enable_stdout_logging,
)
from waqueue.core.time import ManualClock
from waqueue.queue import BackoffPolicy, DeliveryWorker, EnqueueGate, LeaseManager, StuckJobReclaimer


def pytest_configure(config):
    config.addinivalue_line("markers", "cfg(**overrides): per-test QueueConfig overrides")
    config.addinivalue_line("markers", "unit: fast tests against in-memory doubles")
    config.addinivalue_line("markers", "integration: several components wired together")


def pytest_addoption(parser):
    parser.addoption(
        "--log-json",
        action="store_true",
        default=False,
        help="Emit waqueue logs in JSON format during tests",
    )


@pytest.fixture(scope="session", autouse=True)
def _configure_waqueue_logging(request):
    configure_from_env()
    prefer_json = request.config.getoption("--log-json")
    if os.getenv("WAQUEUE_LOG_STDOUT", "").lower() not in ("1", "true", "yes", "on"):
        enable_stdout_logging(
            level="DEBUG",
            json_output=prefer_json,
            pretty=not prefer_json,
            route_errors_to_stderr=True,
        )
    bind_context(role="pytest")


# Production defaults with faster loops. Built directly, so environment variables are ignored.
_FAST_QUEUE = {
    "poll_interval_sec": 0.05,
    "lease_sec": 120,
    "reclaim_interval_sec": 0.05,
    "base_backoff_sec": 1.0,
    "max_attempts": 3,
}


@pytest.fixture
def inmemory_db():
    """Single injection point for DB."""
    return InMemDB()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def queue_cfg(request):
    m = request.node.get_closest_marker("cfg")
    overrides = dict(m.kwargs) if m else {}
    return QueueConfig(**{**_FAST_QUEUE, **overrides})


@pytest.fixture
def sender():
    return ScriptedSender()


@pytest.fixture
def push():
    return RecordingPush()


@pytest.fixture
def gate(inmemory_db, queue_cfg, clock):
    return EnqueueGate(db=inmemory_db, cfg=queue_cfg, clock=clock)


@pytest.fixture
def leases(inmemory_db, queue_cfg, clock):
    return LeaseManager(db=inmemory_db, cfg=queue_cfg, clock=clock)


@pytest.fixture
def reclaimer(inmemory_db, queue_cfg, clock):
    return StuckJobReclaimer(db=inmemory_db, cfg=queue_cfg, clock=clock)


@pytest.fixture
def worker_factory(inmemory_db, queue_cfg, clock, sender, push):
    """Build DeliveryWorkers sharing the db, clock and doubles; seeded backoff keeps delays reproducible."""

    def _make(worker_id: str = "w1", **kw) -> DeliveryWorker:
        params = {
            "db": inmemory_db,
            "sender": sender,
            "push": push,
            "cfg": queue_cfg,
            "clock": clock,
            "backoff": BackoffPolicy.from_config(queue_cfg, rng=random.Random(7)),
            "worker_id": worker_id,
        }
        params.update(kw)
        return DeliveryWorker(**params)

    return _make


@pytest.fixture
def worker(worker_factory):
    return worker_factory()


@pytest_asyncio.fixture
async def running_workers():
    """Collects started workers/reclaimers and stops them after the test."""
    started = []

    async def _start(*components):
        for c in components:
            await c.start()
            started.append(c)
        return components

    try:
        yield _start
    finally:
        for c in reversed(started):
            await c.stop()
