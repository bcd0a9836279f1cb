# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Inbound HTTP surface.

- GET  /webhook   provider verification handshake (hub.mode / hub.verify_token / hub.challenge)
- POST /webhook   provider events (delivery receipts, replies); logged only
- GET  /_health   liveness

When a QueueService is passed, it runs for the lifetime of the app.
"""

import hmac
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import PlainTextResponse

from .core.config import WhatsAppConfig
from .core.log import get_logger

if TYPE_CHECKING:
    from .service import QueueService

router = APIRouter()
log = get_logger("webhook")


def _token_ok(expected: str, got: str | None) -> bool:
    return bool(expected) and got is not None and hmac.compare_digest(expected.encode(), got.encode())


@router.get("/webhook")
async def verify_webhook(
    request: Request,
    mode: str | None = Query(None, alias="hub.mode"),
    token: str | None = Query(None, alias="hub.verify_token"),
    challenge: str | None = Query(None, alias="hub.challenge"),
):
    cfg: WhatsAppConfig = request.app.state.wa_cfg
    if mode == "subscribe" and _token_ok(cfg.verify_token, token):
        log.info("webhook verified", event="webhook.verified")
        return PlainTextResponse(challenge or "")
    log.warning("webhook verification failed", event="webhook.verify.failed", mode=mode)
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("/webhook")
async def receive_webhook(request: Request):
    try:
        body = await request.json()
    except ValueError:
        body = None
    log.info("webhook event received", event="webhook.received", body=body)
    return PlainTextResponse("OK")


@router.get("/_health")
async def health():
    return PlainTextResponse("OK")


def create_app(*, wa_cfg: WhatsAppConfig | None = None, service: QueueService | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if service is not None:
            await service.start()
        try:
            yield
        finally:
            if service is not None:
                await service.stop()

    app = FastAPI(title="waqueue", lifespan=lifespan)
    app.state.wa_cfg = wa_cfg or WhatsAppConfig.load()
    app.include_router(router)
    return app
