# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Error taxonomy for the delivery queue.

Expected outcomes (duplicate enqueue, lost claim race) are NOT exceptions: they are
return values. Exceptions below are either fatal at startup (ConfigError), surfaced to
the enqueuing caller (EnqueueError), or converted into retry state by the worker
(DeliveryError).
"""


class WaQueueError(Exception):
    """Base class for all waqueue errors."""

    ...


class ConfigError(WaQueueError):
    """Required configuration is missing or invalid. Stops the process at startup."""

    ...


class EnqueueError(WaQueueError):
    """The store rejected or could not accept a new job for a reason other than a duplicate key."""

    def __init__(self, dedupe_key: str, message: str) -> None:
        super().__init__(f"enqueue failed for {dedupe_key!r}: {message}")
        self.dedupe_key = dedupe_key


class DeliveryError(WaQueueError):
    """
    The provider rejected the message or could not be reached.
    `status_code` is None for transport-level failures (DNS, connect, timeout).
    """

    def __init__(self, detail: str, *, status_code: int | None = None) -> None:
        super().__init__(detail if status_code is None else f"HTTP {status_code}: {detail}")
        self.detail = detail
        self.status_code = status_code
