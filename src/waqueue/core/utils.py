from __future__ import annotations

"""
waqueue.core.utils
==================

Low-level helpers with no external dependencies:
- Jitter for retry backoff.
- Worker identity generation.
- Error text clipping for persisted diagnostics.
"""

import json
import random
import uuid
from typing import Any

from .types import MAX_ERROR_LEN, WORKER_ID_PREFIX


def add_jitter_ms(base_ms: int, *, pct: float = 0.20, rng: random.Random | None = None) -> int:
    """
    Add non-negative jitter to a base delay:
        result = base_ms + delta, delta uniform in [0, base_ms * pct]

    Examples:
        add_jitter_ms(2000) -> value in [2000..2400]
        add_jitter_ms(2000, pct=0) -> 2000
    """
    if base_ms <= 0 or pct <= 0:
        return max(0, base_ms)
    r = rng or random
    return base_ms + int(r.uniform(0.0, base_ms * pct))


def new_worker_id(prefix: str = WORKER_ID_PREFIX) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def clip_error(detail: Any, *, limit: int = MAX_ERROR_LEN) -> str:
    """Render an error detail as text bounded to `limit` characters."""
    if isinstance(detail, str):
        text = detail
    else:
        try:
            text = json.dumps(detail, ensure_ascii=False, separators=(",", ":"), default=str)
        except (TypeError, ValueError):
            text = str(detail)
    return text if len(text) <= limit else text[: limit - 3] + "..."
