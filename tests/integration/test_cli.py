from contextlib import asynccontextmanager

import pytest
from click.testing import CliRunner
from pymongo.errors import ServerSelectionTimeoutError

from waqueue import cli
from waqueue.core.time import ManualClock
from waqueue.models import DeliveryLogEntry, LogStatus, MessageJob, WhatsAppPayload

pytestmark = pytest.mark.integration


@pytest.fixture
def runner(monkeypatch):
    for name in ("WHATSAPP_ACCESS_TOKEN", "WHATSAPP_PHONE_NUMBER_ID", "WAQUEUE_CONFIG", "WAQUEUE_LOG_STDOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(cli, "configure_from_env", lambda: None)
    return CliRunner()


@pytest.fixture
def cli_db(monkeypatch, inmemory_db):
    @asynccontextmanager
    async def _open(cfg):
        yield inmemory_db

    monkeypatch.setattr(cli, "open_database", _open)
    return inmemory_db


def _run(coro):
    import asyncio

    return asyncio.run(coro)


def test_send_test_enqueues_normalized_number(runner, cli_db):
    result = runner.invoke(cli.main, ["send-test", "050-123-4567", "--body", "ping"])

    assert result.exit_code == 0, result.output
    assert "enqueued: test_" in result.output
    assert result.output.strip().endswith("-> 972501234567")

    docs = list(cli_db.whatsapp_queue.rows.values())
    assert len(docs) == 1
    assert docs[0]["_id"].startswith("test_")
    assert docs[0]["payload"] == {"to": "972501234567", "body": "ping"}


def test_send_test_rejects_non_number(runner, cli_db):
    result = runner.invoke(cli.main, ["send-test", "nobody"])
    assert result.exit_code != 0
    assert "not a phone number" in result.output


def test_send_test_reports_store_failure(runner, cli_db):
    cli_db.fail_with(ServerSelectionTimeoutError("no servers"))
    result = runner.invoke(cli.main, ["send-test", "0501234567"])
    assert result.exit_code != 0
    assert "enqueue failed" in result.output


def test_failed_listing_and_requeue(runner, cli_db):
    now = ManualClock().now_dt()
    job = MessageJob.new("appt9_cancelled", WhatsAppPayload(to="972500000009", body="x"), None, now=now)
    doc = {**job.to_doc(), "status": "failed", "attempts": 3, "last_error": "HTTP 400: bad number"}
    _run(cli_db.whatsapp_queue.insert_one(doc))

    listed = runner.invoke(cli.main, ["failed"])
    assert listed.exit_code == 0, listed.output
    assert "appt9_cancelled\tto=972500000009\tattempts=3\terror=HTTP 400: bad number" in listed.output

    requeued = runner.invoke(cli.main, ["requeue", "appt9_cancelled"])
    assert requeued.exit_code == 0
    assert "Requeued appt9_cancelled" in requeued.output
    assert cli_db.whatsapp_queue.rows["appt9_cancelled"]["status"] == "pending"

    again = runner.invoke(cli.main, ["requeue", "appt9_cancelled"])
    assert again.exit_code != 0
    assert "is not a failed job" in again.output

    assert "No failed jobs." in runner.invoke(cli.main, ["failed"]).output


def test_logs_listing(runner, cli_db):
    now = ManualClock().now_dt()
    job = MessageJob.new("k_logged", WhatsAppPayload(to="972500000001", body="x"), None, now=now)
    entry = DeliveryLogEntry.from_job(job, status=LogStatus.sent, now=now, worker_id="w1")
    _run(cli_db.whatsapp_logs.insert_one(entry.to_doc()))

    result = runner.invoke(cli.main, ["logs", "--limit", "5"])

    assert result.exit_code == 0, result.output
    assert "sent\tk_logged\tto=972500000001" in result.output


def test_serve_requires_credentials(runner):
    result = runner.invoke(cli.main, ["serve"])
    assert result.exit_code != 0
    assert "WHATSAPP_ACCESS_TOKEN" in result.output
