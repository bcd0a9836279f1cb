import json

import pytest

from waqueue.core.config import QueueConfig, WhatsAppConfig
from waqueue.errors import ConfigError

pytestmark = pytest.mark.unit

_ENV_NAMES = (
    "MONGO_URI",
    "MONGO_DB",
    "QUEUE_POLL_INTERVAL_SEC",
    "QUEUE_LEASE_SEC",
    "QUEUE_RECLAIM_INTERVAL_SEC",
    "QUEUE_MAX_ATTEMPTS",
    "QUEUE_WORKERS",
    "PORT",
    "WHATSAPP_ACCESS_TOKEN",
    "WHATSAPP_PHONE_NUMBER_ID",
    "WHATSAPP_VERIFY_TOKEN",
    "WHATSAPP_API_VERSION",
    "WHATSAPP_TIMEOUT_SEC",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults_and_derived_ms():
    cfg = QueueConfig.load()
    assert cfg.max_attempts == 3
    assert cfg.poll_interval_ms == 5000
    assert cfg.lease_ms == 120_000
    assert cfg.reclaim_interval_ms == 300_000
    assert cfg.base_backoff_ms == 1000
    assert cfg.max_backoff_ms == 3_600_000
    assert cfg.queue_collection == "whatsapp_queue"
    assert cfg.log_collection == "whatsapp_logs"


def test_env_then_overrides(monkeypatch):
    monkeypatch.setenv("MONGO_URI", "mongodb://db:27017")
    monkeypatch.setenv("QUEUE_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("QUEUE_LEASE_SEC", "30")
    monkeypatch.setenv("PORT", "9000")

    cfg = QueueConfig.load(overrides={"max_attempts": 7})

    assert cfg.mongo_uri == "mongodb://db:27017"
    assert cfg.max_attempts == 7
    assert cfg.lease_ms == 30_000
    assert cfg.http_port == 9000


def test_json_file_shared_by_both_sections(tmp_path, monkeypatch):
    path = tmp_path / "waqueue.json"
    path.write_text(json.dumps({"mongo_db": "clinic", "workers": 4, "verify_token": "from-file"}))
    monkeypatch.setenv("WHATSAPP_VERIFY_TOKEN", "from-env")

    qcfg = QueueConfig.load(path)
    wcfg = WhatsAppConfig.load(path)

    assert qcfg.mongo_db == "clinic" and qcfg.workers == 4
    assert wcfg.verify_token == "from-env"


def test_missing_json_file_is_ignored(tmp_path):
    assert QueueConfig.load(tmp_path / "absent.json").mongo_db == "waqueue"


def test_bad_env_value_names_variable(monkeypatch):
    monkeypatch.setenv("QUEUE_MAX_ATTEMPTS", "three")
    with pytest.raises(ValueError, match="QUEUE_MAX_ATTEMPTS"):
        QueueConfig.load()


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_attempts": 0},
        {"base_backoff_sec": 0},
        {"base_backoff_sec": 0.0004},
        {"base_backoff_sec": 10, "max_backoff_sec": 5},
        {"jitter_pct": 1.5},
        {"lease_sec": 0},
        {"workers": 0},
        {"mongo_db": ""},
    ],
)
def test_invalid_values_rejected(overrides):
    with pytest.raises(ValueError):
        QueueConfig.load(overrides=overrides)


def test_whatsapp_messages_url_and_requirements(monkeypatch):
    monkeypatch.setenv("WHATSAPP_PHONE_NUMBER_ID", "1234567890")

    cfg = WhatsAppConfig.load()
    assert cfg.messages_url == "https://graph.facebook.com/v19.0/1234567890/messages"

    with pytest.raises(ConfigError, match="WHATSAPP_ACCESS_TOKEN"):
        cfg.require_delivery()

    monkeypatch.setenv("WHATSAPP_ACCESS_TOKEN", "EAAG")
    WhatsAppConfig.load().require_delivery()


def test_both_credentials_reported_when_missing():
    with pytest.raises(ConfigError) as ei:
        WhatsAppConfig().require_delivery()
    assert "WHATSAPP_ACCESS_TOKEN" in str(ei.value)
    assert "WHATSAPP_PHONE_NUMBER_ID" in str(ei.value)
