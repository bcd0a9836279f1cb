from __future__ import annotations

"""
waqueue.core.types
==================

Shared type aliases and constants. Keep this module tiny and dependency-free.
"""

from collections.abc import Mapping
from typing import Any, Final

# ---- Time & IDs --------------------------------------------------------------

Millis = int
Seconds = float
TimestampMs = int  # wall-clock epoch timestamp (ms)

DedupeKey = str
WorkerId = str
PhoneNumber = str  # digits only, international format (e.g. 972501234567)

ROMappingStrAny = Mapping[str, Any]

# ---- Constants ---------------------------------------------------------------

WORKER_ID_PREFIX: Final[str] = "whatsapp-processor"
DEFAULT_COUNTRY_CODE: Final[str] = "972"
MAX_ERROR_LEN: Final[int] = 2000


__all__ = [
    "Millis",
    "Seconds",
    "TimestampMs",
    "DedupeKey",
    "WorkerId",
    "PhoneNumber",
    "ROMappingStrAny",
    "WORKER_ID_PREFIX",
    "DEFAULT_COUNTRY_CODE",
    "MAX_ERROR_LEN",
]
