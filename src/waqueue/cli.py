from __future__ import annotations

import asyncio

import click
import uvicorn

from .core.config import QueueConfig, WhatsAppConfig
from .core.log import configure_from_env
from .core.time import SystemClock
from .delivery.whatsapp import WhatsAppSender
from .errors import ConfigError, EnqueueError
from .phone import normalize_phone
from .queue.admin import list_failed, recent_logs, requeue_failed
from .queue.enqueue import EnqueueGate
from .service import QueueService, open_database
from .webhook import create_app


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    envvar="WAQUEUE_CONFIG",
    help="Optional JSON config file (env vars still override it)",
)
@click.pass_context
def main(ctx: click.Context, config_path: str | None):
    """WhatsApp delivery queue"""
    configure_from_env()
    ctx.obj = {
        "queue": QueueConfig.load(config_path),
        "whatsapp": WhatsAppConfig.load(config_path),
    }


async def _serve(qcfg: QueueConfig, wcfg: WhatsAppConfig) -> None:
    async with open_database(qcfg) as db:
        sender = WhatsAppSender(wcfg)
        try:
            service = QueueService(db=db, sender=sender, cfg=qcfg)
            app = create_app(wa_cfg=wcfg, service=service)
            server = uvicorn.Server(uvicorn.Config(app, host=qcfg.http_host, port=qcfg.http_port, log_config=None))
            await server.serve()
        finally:
            await sender.aclose()


@main.command("serve")
@click.pass_obj
def serve(obj):
    """Run delivery workers, the reclaimer and the webhook server."""
    wcfg: WhatsAppConfig = obj["whatsapp"]
    try:
        wcfg.require_delivery()
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    asyncio.run(_serve(obj["queue"], wcfg))


@main.command("failed")
@click.option("--limit", default=50, show_default=True, type=int)
@click.pass_obj
def failed(obj, limit: int):
    """List jobs that exhausted their attempts."""
    qcfg: QueueConfig = obj["queue"]

    async def _run():
        async with open_database(qcfg) as db:
            return await list_failed(db, qcfg, limit=limit)

    jobs = asyncio.run(_run())
    if not jobs:
        click.echo("No failed jobs.")
        return
    for j in jobs:
        click.echo(f"{j.dedupe_key}\tto={j.payload.to or '-'}\tattempts={j.attempts}\terror={j.last_error or '-'}")


@main.command("requeue")
@click.argument("dedupe_key")
@click.pass_obj
def requeue(obj, dedupe_key: str):
    """Reset a failed job to pending with a fresh attempt budget."""
    qcfg: QueueConfig = obj["queue"]

    async def _run():
        async with open_database(qcfg) as db:
            return await requeue_failed(db, qcfg, dedupe_key)

    if not asyncio.run(_run()):
        raise click.ClickException(f"{dedupe_key} is not a failed job")
    click.echo(f"Requeued {dedupe_key}")


@main.command("logs")
@click.option("--limit", default=50, show_default=True, type=int)
@click.pass_obj
def logs(obj, limit: int):
    """Show recent delivery history, newest first."""
    qcfg: QueueConfig = obj["queue"]

    async def _run():
        async with open_database(qcfg) as db:
            return await recent_logs(db, qcfg, limit=limit)

    for e in asyncio.run(_run()):
        click.echo(f"{e.processed_at.isoformat()}\t{e.status}\t{e.dedupe_key}\tto={e.payload.to or '-'}")


@main.command("send-test")
@click.argument("phone")
@click.option("--body", default="Test message", show_default=True)
@click.pass_obj
def send_test(obj, phone: str, body: str):
    """Enqueue a one-off message to PHONE (local or international format)."""
    qcfg: QueueConfig = obj["queue"]
    wcfg: WhatsAppConfig = obj["whatsapp"]
    to = normalize_phone(phone, country_code=wcfg.default_country_code)
    if to is None:
        raise click.ClickException(f"not a phone number: {phone!r}")

    clock = SystemClock()
    key = f"test_{clock.now_ms()}"

    async def _run():
        async with open_database(qcfg) as db:
            return await EnqueueGate(db=db, cfg=qcfg, clock=clock).enqueue(key, {"to": to, "body": body})

    try:
        result = asyncio.run(_run())
    except EnqueueError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"{result.value}: {key} -> {to}")


if __name__ == "__main__":
    main()
