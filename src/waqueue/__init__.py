from __future__ import annotations

try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("waqueue")
except Exception:  # pragma: no cover
    # running from a source tree without installed metadata
    __version__ = "0.0.0"

from .core.config import QueueConfig, WhatsAppConfig
from .errors import ConfigError, DeliveryError, EnqueueError, WaQueueError
from .models import JobStatus, MessageJob, PushPayload, WhatsAppPayload
from .queue import (
    BackoffPolicy,
    DeliveryWorker,
    EnqueueGate,
    EnqueueResult,
    LeaseManager,
    StuckJobReclaimer,
)
from .service import QueueService

__all__ = [
    "BackoffPolicy",
    "ConfigError",
    "DeliveryError",
    "DeliveryWorker",
    "EnqueueError",
    "EnqueueGate",
    "EnqueueResult",
    "JobStatus",
    "LeaseManager",
    "MessageJob",
    "PushPayload",
    "QueueConfig",
    "QueueService",
    "StuckJobReclaimer",
    "WaQueueError",
    "WhatsAppConfig",
    "WhatsAppPayload",
    "__version__",
]
