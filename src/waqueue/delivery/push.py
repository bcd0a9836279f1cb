# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Push fallback channel.

The queue only depends on `PushNotifier.notify(payload) -> int`, which must never
raise: push is best-effort and is not retried here. `DevicePushNotifier` resolves the
entity's registered device tokens, hands them to a `PushTransport` and prunes tokens
the provider reports as dead.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Final, Protocol, runtime_checkable

from ..core.config import QueueConfig
from ..core.log import get_logger, log_context, swallow, warn_once
from ..models import PushPayload
from ..storage.collections import devices_coll

INVALID_TOKEN_CODES: Final[frozenset[str]] = frozenset(
    {
        "messaging/invalid-registration-token",
        "messaging/registration-token-not-registered",
    }
)


@dataclass(frozen=True)
class PushSendResult:
    token: str
    ok: bool
    error_code: str | None = None


@runtime_checkable
class PushTransport(Protocol):
    """Provider-side multicast send (e.g. FCM). One result per token, same order."""

    async def send_multicast(
        self, tokens: Sequence[str], *, title: str, body: str, data: dict[str, str]
    ) -> list[PushSendResult]: ...


@runtime_checkable
class PushNotifier(Protocol):
    async def notify(self, payload: PushPayload) -> int:
        """Send to the entity's devices; return how many succeeded. Never raises."""
        ...


class NullPushNotifier:
    """Used when no push transport is configured: logs and drops."""

    def __init__(self) -> None:
        self.log = get_logger("push")

    async def notify(self, payload: PushPayload) -> int:
        warn_once(self.log, code="push.transport.missing", msg="push transport not configured; fallback dropped")
        self.log.info(
            "push skipped",
            event="push.skipped",
            entity_type=payload.entity_type,
            entity_id=payload.entity_id,
        )
        return 0


class DevicePushNotifier:
    def __init__(self, *, db, transport: PushTransport, cfg: QueueConfig | None = None) -> None:
        self.db = db
        self.transport = transport
        self.cfg = cfg or QueueConfig.load()
        self.log = get_logger("push")

    @property
    def devices(self) -> Any:
        return devices_coll(self.db, self.cfg)

    async def _tokens_for(self, entity_type: str, entity_id: str) -> list[str]:
        tokens: list[str] = []
        async for d in self.devices.find({"entity_type": entity_type, "entity_id": entity_id}, {"token": 1}):
            tok = d.get("token")
            if tok and tok not in tokens:
                tokens.append(tok)
        return tokens

    async def notify(self, payload: PushPayload) -> int:
        with log_context(entity_type=payload.entity_type, entity_id=payload.entity_id):
            try:
                tokens = await self._tokens_for(payload.entity_type, payload.entity_id)
                if not tokens:
                    self.log.info("no device tokens", event="push.no_tokens")
                    return 0
                results = await self.transport.send_multicast(
                    tokens, title=payload.title, body=payload.body, data=dict(payload.data)
                )
            except Exception:
                self.log.error("push send failed", event="push.failed", exc_info=True)
                return 0

            sent = sum(1 for r in results if r.ok)
            self.log.info("push sent", event="push.sent", success=sent, total=len(tokens))

            dead = [r.token for r in results if not r.ok and r.error_code in INVALID_TOKEN_CODES]
            if dead:
                with swallow(logger=self.log, code="push.prune", msg="pruning dead tokens failed", level=logging.WARNING):
                    res = await self.devices.delete_many(
                        {"entity_type": payload.entity_type, "entity_id": payload.entity_id, "token": {"$in": dead}}
                    )
                    self.log.info("pruned dead tokens", event="push.pruned", count=res.deleted_count)
            return sent
