# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Durable outbound message queue: enqueue gate, lease manager, delivery worker,
retry policy and stuck-job reclaimer.
"""

from .admin import list_failed, recent_logs, requeue_failed
from .backoff import BackoffPolicy, RetryDecision
from .enqueue import EnqueueGate, EnqueueResult
from .lease import LeaseManager
from .reclaimer import StuckJobReclaimer
from .worker import DeliveryWorker

__all__ = [
    "BackoffPolicy",
    "DeliveryWorker",
    "EnqueueGate",
    "EnqueueResult",
    "LeaseManager",
    "RetryDecision",
    "StuckJobReclaimer",
    "list_failed",
    "recent_logs",
    "requeue_failed",
]
