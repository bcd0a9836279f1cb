# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Delivery channels: WhatsApp (primary) and push (fallback).
"""

from .push import (
    INVALID_TOKEN_CODES,
    DevicePushNotifier,
    NullPushNotifier,
    PushNotifier,
    PushSendResult,
    PushTransport,
)
from .whatsapp import MessageSender, WhatsAppSender

__all__ = [
    "INVALID_TOKEN_CODES",
    "DevicePushNotifier",
    "MessageSender",
    "NullPushNotifier",
    "PushNotifier",
    "PushSendResult",
    "PushTransport",
    "WhatsAppSender",
]
