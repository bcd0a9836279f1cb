# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Mongo-backed message store accessors (DB object injected by the caller).
"""

from .collections import devices_coll, ensure_indexes, log_coll, queue_coll

__all__ = [
    "devices_coll",
    "ensure_indexes",
    "log_coll",
    "queue_coll",
]
