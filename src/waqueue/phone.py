from __future__ import annotations

import re

from .core.types import DEFAULT_COUNTRY_CODE, PhoneNumber

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str | None, *, country_code: str = DEFAULT_COUNTRY_CODE) -> PhoneNumber | None:
    """
    Normalize a local or international number to digits-only international format.

        "050-123-4567"     -> "972501234567"
        "+972 50 123 4567" -> "972501234567"
        "501234567"        -> "972501234567"

    Returns None when no digits remain.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if not digits:
        return None
    if digits.startswith("0"):
        return country_code + digits[1:]
    if not digits.startswith(country_code):
        return country_code + digits
    return digits
