# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
WhatsApp Cloud API sender.

POST {api_base_url}/{api_version}/{phone_number_id}/messages with a bearer token.
Any 2xx is a success; any other status or transport error raises DeliveryError,
which the worker turns into a retry.
"""

from typing import Protocol, runtime_checkable

import httpx

from ..core.config import WhatsAppConfig
from ..core.log import get_logger
from ..core.utils import clip_error
from ..errors import DeliveryError
from ..models import WhatsAppPayload


@runtime_checkable
class MessageSender(Protocol):
    """Primary delivery channel. Returns the provider message id, if any."""

    async def send(self, payload: WhatsAppPayload) -> str | None: ...


class WhatsAppSender:
    def __init__(self, cfg: WhatsAppConfig, *, client: httpx.AsyncClient | None = None) -> None:
        self.cfg = cfg
        self._own_client = client is None
        if client is not None:
            self._client = client
        elif cfg.timeout_sec is None:
            self._client = httpx.AsyncClient()
        else:
            self._client = httpx.AsyncClient(timeout=cfg.timeout_sec)
        self.log = get_logger("whatsapp")

    async def aclose(self) -> None:
        if self._own_client:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.cfg.access_token}",
            "Content-Type": "application/json",
        }

    async def send(self, payload: WhatsAppPayload) -> str | None:
        to = payload.destination
        if to is None:
            raise DeliveryError("payload has no destination")
        body = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": payload.body},
        }
        try:
            resp = await self._client.post(self.cfg.messages_url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise DeliveryError(clip_error(f"{type(e).__name__}: {e}")) from e

        if not resp.is_success:
            try:
                detail = clip_error(resp.json())
            except ValueError:
                detail = clip_error(resp.text)
            raise DeliveryError(detail, status_code=resp.status_code)

        try:
            messages = resp.json().get("messages") or []
        except (ValueError, AttributeError):
            messages = []
        message_id = messages[0].get("id") if messages and isinstance(messages[0], dict) else None
        self.log.debug("provider accepted message", event="whatsapp.sent", provider_message_id=message_id)
        return message_id
