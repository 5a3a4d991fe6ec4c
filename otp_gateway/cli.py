"""Click CLI for the OTP gateway."""

from __future__ import annotations

import asyncio
import json
import logging

import click
from dotenv import load_dotenv

from .config import get_settings
from .exceptions import GatewayError, NotConfigured
from .gateway import build_gateway
from .mail import ImapTransport, resolve_mail_server
from .pin import hash_pin

load_dotenv()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@click.group()
def cli() -> None:
    """OTP Gateway CLI."""
    _configure_logging(get_settings().log_level)


@cli.command("serve")
@click.option("--host", default="0.0.0.0", show_default=True, help="Bind address")
@click.option("--port", default=3000, show_default=True, type=int, help="Bind port")
def serve_cmd(host: str, port: int) -> None:
    """Run the HTTP API."""
    import uvicorn

    click.echo(f"Starting OTP gateway on {host}:{port}")
    uvicorn.run("otp_gateway.api:app", host=host, port=port, log_level="info")


@cli.command("hash-pin")
@click.argument("pin")
@click.option("--rounds", default=12, show_default=True, type=int, help="bcrypt cost factor")
def hash_pin_cmd(pin: str, rounds: int) -> None:
    """Print a bcrypt hash of PIN for use as pinHash or GLOBAL_PIN."""
    click.echo(hash_pin(pin, rounds=rounds))


@cli.command("sync-pins")
def sync_pins_cmd() -> None:
    """Replay rotation notifications from the sync inbox into the ledger."""
    gateway = build_gateway(get_settings())
    try:
        report = asyncio.run(gateway.sync_rotated_pins())
    except GatewayError as e:
        raise click.ClickException(e.message) from e
    click.echo(json.dumps(report.model_dump(), indent=2))


@cli.command("get-otp")
@click.argument("email")
@click.option("--pin", required=True, help="Access PIN for EMAIL")
def get_otp_cmd(email: str, pin: str) -> None:
    """Exchange PIN for the current OTP of EMAIL."""
    gateway = build_gateway(get_settings())

    async def _run() -> dict[str, str]:
        try:
            lookup = await gateway.get_otp(email, pin)
            return {"otp": lookup.code or "", "source": lookup.source.value}
        finally:
            await gateway.drain()

    try:
        result = asyncio.run(_run())
    except GatewayError as e:
        raise click.ClickException(f"{e.message} ({e.status_code})") from e
    click.echo(json.dumps(result))


@cli.command("check-imap")
@click.argument("email")
def check_imap_cmd(email: str) -> None:
    """Open and close an IMAP session for a configured account."""
    settings = get_settings()
    gateway = build_gateway(settings)
    record = gateway.store.get(email)
    try:
        if record is None or not record.mail_app_password:
            raise NotConfigured(f"no app password configured for {email}")
        config = resolve_mail_server(
            record.account_id,
            record.mail_app_password,
            timeout=settings.external_timeout_seconds,
            verify_tls=settings.imap_verify_tls,
        )
        transport = ImapTransport()
        try:
            transport.connect(config)
        finally:
            transport.close()
    except GatewayError as e:
        raise click.ClickException(e.message) from e
    click.echo(f"IMAP connected: {config.host} as {record.account_id}")


if __name__ == "__main__":
    cli()
