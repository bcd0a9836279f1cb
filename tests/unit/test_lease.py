import asyncio
from datetime import timedelta

import pytest

from waqueue.models import JobStatus

pytestmark = pytest.mark.unit


async def _seed(gate, key="k1"):
    await gate.enqueue(key, {"to": "972500000001", "body": "hello"})
    return key


@pytest.mark.asyncio
async def test_concurrent_claims_have_exactly_one_winner(gate, leases, inmemory_db, clock, queue_cfg):
    key = await _seed(gate)

    results = await asyncio.gather(*(leases.try_claim(key, worker_id=f"w{i}") for i in range(10)))
    winners = [(i, job) for i, job in enumerate(results) if job is not None]

    assert len(winners) == 1
    idx, job = winners[0]
    assert job.status == JobStatus.processing.value
    assert job.locked_by == f"w{idx}"

    doc = await inmemory_db.whatsapp_queue.find_one({"_id": key})
    assert doc["locked_by"] == f"w{idx}"
    assert doc["locked_at"] == clock.now_dt()
    assert doc["lock_expires_at"] == clock.now_dt() + timedelta(milliseconds=queue_cfg.lease_ms)


@pytest.mark.asyncio
async def test_claim_refuses_job_not_yet_due(gate, leases, inmemory_db, clock):
    key = await _seed(gate)
    await inmemory_db.whatsapp_queue.update_one(
        {"_id": key}, {"$set": {"status": "retrying", "next_attempt_at": clock.now_dt() + timedelta(seconds=2)}}
    )

    assert await leases.try_claim(key, worker_id="w1") is None

    clock.advance_ms(2000)
    job = await leases.try_claim(key, worker_id="w1")
    assert job is not None and job.locked_by == "w1"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["failed", "processing"])
async def test_claim_refuses_non_claimable_status(gate, leases, inmemory_db, status):
    key = await _seed(gate)
    await inmemory_db.whatsapp_queue.update_one({"_id": key}, {"$set": {"status": status}})

    assert await leases.try_claim(key, worker_id="w1") is None


@pytest.mark.asyncio
async def test_claim_missing_job_returns_none(leases):
    assert await leases.try_claim("nope", worker_id="w1") is None


@pytest.mark.asyncio
async def test_release_and_delete_require_ownership(gate, leases, inmemory_db):
    key = await _seed(gate)
    await leases.try_claim(key, worker_id="owner")

    assert await leases.release(key, worker_id="intruder", fields={"status": "failed"}) is False
    assert await leases.delete_owned(key, worker_id="intruder") is False
    doc = await inmemory_db.whatsapp_queue.find_one({"_id": key})
    assert doc["status"] == "processing" and doc["locked_by"] == "owner"

    assert await leases.release(key, worker_id="owner", fields={"status": "retrying", "attempts": 1}) is True
    doc = await inmemory_db.whatsapp_queue.find_one({"_id": key})
    assert doc["status"] == "retrying"
    assert doc["attempts"] == 1
    assert doc["locked_by"] is None and doc["locked_at"] is None and doc["lock_expires_at"] is None

    # released jobs are no longer owned by anyone
    assert await leases.delete_owned(key, worker_id="owner") is False


@pytest.mark.asyncio
async def test_delete_owned_removes_job(gate, leases, inmemory_db):
    key = await _seed(gate)
    await leases.try_claim(key, worker_id="owner")

    assert await leases.delete_owned(key, worker_id="owner") is True
    assert await inmemory_db.whatsapp_queue.find_one({"_id": key}) is None
