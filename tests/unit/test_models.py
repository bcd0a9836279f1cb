import pytest
from pydantic import ValidationError

from waqueue.core.time import ManualClock
from waqueue.models import DeliveryLogEntry, JobStatus, LogStatus, MessageJob, PushPayload, WhatsAppPayload

pytestmark = pytest.mark.unit


def test_job_document_uses_dedupe_key_as_id():
    now = ManualClock().now_dt()
    job = MessageJob.new("k1", WhatsAppPayload(to="972500000001", body="x"), None, now=now)

    doc = job.to_doc()
    assert doc["_id"] == "k1"
    assert "dedupe_key" not in doc
    assert doc["status"] == "pending"
    assert MessageJob.from_doc(doc) == job


def test_claimable_only_when_due_and_waiting():
    clock = ManualClock()
    job = MessageJob.new("k1", WhatsAppPayload(to="1", body="x"), None, now=clock.now_dt())
    assert job.is_claimable(clock.now_dt())

    assert not job.model_copy(update={"status": JobStatus.failed.value}).is_claimable(clock.now_dt())
    start = clock.now_dt()
    later = job.model_copy(update={"next_attempt_at": clock.advance_ms(1000)})
    assert not later.is_claimable(start)
    assert later.is_claimable(clock.now_dt())


def test_log_entry_carries_job_history():
    clock = ManualClock()
    job = MessageJob.new("k1", WhatsAppPayload(to="1", body="x"), None, now=clock.now_dt())
    job = job.model_copy(update={"attempts": 2, "last_error": "HTTP 500: x"})
    clock.advance_ms(5000)

    entry = DeliveryLogEntry.from_job(job, status=LogStatus.sent, now=clock.now_dt(), worker_id="w1")

    assert entry.status == "sent"
    assert entry.attempts == 2
    assert entry.last_error == "HTTP 500: x"
    assert entry.created_at == job.created_at
    assert entry.processed_at > entry.created_at


def test_empty_push_entity_rejected():
    with pytest.raises(ValidationError):
        PushPayload(entity_id="", title="t", body="b")


def test_unknown_store_fields_ignored():
    now = ManualClock().now_dt()
    doc = {**MessageJob.new("k1", WhatsAppPayload(), None, now=now).to_doc(), "legacy": True}
    assert MessageJob.from_doc(doc).dedupe_key == "k1"
