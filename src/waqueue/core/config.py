from __future__ import annotations

"""
waqueue.core.config
===================

Typed configuration for the delivery queue and the WhatsApp provider.
- Load order: defaults -> optional JSON file -> environment -> explicit overrides.
- Derives millisecond fields from seconds to avoid repeated conversions.
- Secrets come from the environment only; nothing is hardcoded in the processing logic.
"""

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from ..errors import ConfigError
from .types import DEFAULT_COUNTRY_CODE


def _try_load_json(path: Path | None) -> dict[str, Any]:
    if not path:
        return {}
    try:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        # Fail soft; env and overrides still apply
        pass
    return {}


def _env_overrides(mapping: dict[str, tuple[str, type]]) -> dict[str, Any]:
    """Read `{field: (ENV_NAME, type)}` from the environment, casting present values."""
    out: dict[str, Any] = {}
    for field_name, (env_name, cast) in mapping.items():
        raw = os.getenv(env_name)
        if raw is None or raw == "":
            continue
        try:
            out[field_name] = cast(raw)
        except ValueError as e:
            raise ValueError(f"{env_name} must be a valid {cast.__name__}, got {raw!r}") from e
    return out


# ---------------------------------------------------------------------------


@dataclass
class QueueConfig:
    """Store, scheduling and retry settings shared by workers and the reclaimer."""

    # ---- Store
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "waqueue"
    queue_collection: str = "whatsapp_queue"
    log_collection: str = "whatsapp_logs"
    devices_collection: str = "devices"

    # ---- Timings (seconds)
    poll_interval_sec: float = 5.0
    lease_sec: float = 120.0
    reclaim_interval_sec: float = 300.0
    base_backoff_sec: float = 1.0
    max_backoff_sec: float = 3600.0

    # ---- Retry / throughput
    max_attempts: int = 3
    jitter_pct: float = 0.2
    batch_size: int = 1
    workers: int = 1

    # ---- HTTP surface
    http_host: str = "0.0.0.0"
    http_port: int = 8080

    # ---- Derived (ms)
    poll_interval_ms: int = 0
    lease_ms: int = 0
    reclaim_interval_ms: int = 0
    base_backoff_ms: int = 0
    max_backoff_ms: int = 0

    _ENV = {
        "mongo_uri": ("MONGO_URI", str),
        "mongo_db": ("MONGO_DB", str),
        "poll_interval_sec": ("QUEUE_POLL_INTERVAL_SEC", float),
        "lease_sec": ("QUEUE_LEASE_SEC", float),
        "reclaim_interval_sec": ("QUEUE_RECLAIM_INTERVAL_SEC", float),
        "max_attempts": ("QUEUE_MAX_ATTEMPTS", int),
        "workers": ("QUEUE_WORKERS", int),
        "http_port": ("PORT", int),
    }

    def __post_init__(self) -> None:
        if not self.mongo_db:
            raise ValueError("mongo_db must be a non-empty string")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_backoff_sec <= 0:
            raise ValueError("base_backoff_sec must be positive")
        if self.max_backoff_sec < self.base_backoff_sec:
            raise ValueError("max_backoff_sec must be >= base_backoff_sec")
        if not 0 <= self.jitter_pct <= 1:
            raise ValueError("jitter_pct must be within [0, 1]")
        if self.lease_sec <= 0 or self.poll_interval_sec <= 0 or self.reclaim_interval_sec <= 0:
            raise ValueError("lease_sec, poll_interval_sec and reclaim_interval_sec must be positive")
        if self.batch_size < 1 or self.workers < 1:
            raise ValueError("batch_size and workers must be >= 1")
        self._derive_ms()
        if self.base_backoff_ms < 1:
            raise ValueError("base_backoff_sec must be at least 0.001 (1 ms)")

    def _derive_ms(self) -> None:
        self.poll_interval_ms = int(self.poll_interval_sec * 1000)
        self.lease_ms = int(self.lease_sec * 1000)
        self.reclaim_interval_ms = int(self.reclaim_interval_sec * 1000)
        self.base_backoff_ms = int(self.base_backoff_sec * 1000)
        self.max_backoff_ms = int(self.max_backoff_sec * 1000)

    @classmethod
    def load(cls, path: Path | str | None = None, *, overrides: dict[str, Any] | None = None) -> QueueConfig:
        """
        Load config from JSON file (if provided), then apply env and overrides.

        Env overrides:
          - MONGO_URI, MONGO_DB
          - QUEUE_POLL_INTERVAL_SEC, QUEUE_LEASE_SEC, QUEUE_RECLAIM_INTERVAL_SEC
          - QUEUE_MAX_ATTEMPTS, QUEUE_WORKERS
          - PORT
        """
        data: dict[str, Any] = {}
        data.update(_try_load_json(Path(path) if path else None))
        data.update(_env_overrides(cls._ENV))
        if overrides:
            data.update(overrides)
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


# ---------------------------------------------------------------------------


@dataclass
class WhatsAppConfig:
    """Provider credentials and endpoint settings."""

    access_token: str = ""
    phone_number_id: str = ""
    verify_token: str = ""
    api_base_url: str = "https://graph.facebook.com"
    api_version: str = "v19.0"
    timeout_sec: float | None = None  # None -> httpx default
    default_country_code: str = DEFAULT_COUNTRY_CODE

    _ENV = {
        "access_token": ("WHATSAPP_ACCESS_TOKEN", str),
        "phone_number_id": ("WHATSAPP_PHONE_NUMBER_ID", str),
        "verify_token": ("WHATSAPP_VERIFY_TOKEN", str),
        "api_version": ("WHATSAPP_API_VERSION", str),
        "timeout_sec": ("WHATSAPP_TIMEOUT_SEC", float),
    }

    def __post_init__(self) -> None:
        if not self.default_country_code.isdigit():
            raise ValueError("default_country_code must contain digits only")

    @property
    def messages_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/{self.api_version}/{self.phone_number_id}/messages"

    def require_delivery(self) -> None:
        """Fail fast when delivery credentials are missing."""
        missing = [
            env for attr, env in (("access_token", "WHATSAPP_ACCESS_TOKEN"), ("phone_number_id", "WHATSAPP_PHONE_NUMBER_ID"))
            if not getattr(self, attr)
        ]
        if missing:
            raise ConfigError(f"missing required environment: {', '.join(missing)}")

    @classmethod
    def load(cls, path: Path | str | None = None, *, overrides: dict[str, Any] | None = None) -> WhatsAppConfig:
        """
        Load from JSON file (if provided), then apply env and overrides.

        Env overrides:
          - WHATSAPP_ACCESS_TOKEN, WHATSAPP_PHONE_NUMBER_ID, WHATSAPP_VERIFY_TOKEN
          - WHATSAPP_API_VERSION, WHATSAPP_TIMEOUT_SEC
        """
        data: dict[str, Any] = {}
        data.update(_try_load_json(Path(path) if path else None))
        data.update(_env_overrides(cls._ENV))
        if overrides:
            data.update(overrides)
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
