"""
Moonday CLI - Command line interface for jobs and bot setup.

Usage:
    moonday --help                              Show all commands
    moonday tick                                Run one delivery tick now
    moonday tick --at 2024-03-10T06:30:00Z      Replay a tick for a past minute
    moonday webhook-set https://bot.example.com Register the Telegram webhook
    moonday webhook-info                        Show the current webhook
    moonday webhook-delete                      Remove the webhook
"""

import asyncio
import json
from datetime import datetime
from typing import Any

import typer

app = typer.Typer(
    name="moonday",
    help="Moonday CLI - delivery jobs and Telegram setup",
    no_args_is_help=True,
)


# --- Output helpers ---


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


def build_webhook_url(base_url: str, path_secret: str) -> str:
    """Webhook URL for a public base URL, with the secret path segment if configured."""
    trimmed = base_url.rstrip("/")
    if path_secret:
        return f"{trimmed}/telegram/webhook/{path_secret}"
    return f"{trimmed}/telegram/webhook"


def _call_telegram(method: str, body: dict[str, Any] | None = None) -> None:
    """Invoke a Bot API method and print the JSON payload."""
    from app.config import get_settings
    from app.services.telegram_service import TelegramAPIError, TelegramDispatcher

    settings = get_settings()
    if not settings.telegram_bot_token:
        _print_error("TELEGRAM_BOT_TOKEN is not set")
        raise typer.Exit(1)

    dispatcher = TelegramDispatcher(settings.telegram_bot_token)
    try:
        payload = asyncio.run(dispatcher.call(method, body))
    except TelegramAPIError as e:
        _print_error(str(e))
        raise typer.Exit(1) from e

    typer.echo(json.dumps(payload, indent=2))


@app.command()
def tick(
    at: datetime | None = typer.Option(
        None,
        "--at",
        help="Evaluate as of this instant (ISO 8601; naive values are UTC)",
        formats=[
            "%Y-%m-%dT%H:%M:%S%z",
            "%Y-%m-%dT%H:%M:%SZ",
            "%Y-%m-%dT%H:%M:%S",
            "%Y-%m-%dT%H:%M",
        ],
    ),
):
    """Run one delivery tick (morning/evening notes due this minute)."""
    from app.core.logging import setup_logging
    from app.services.delivery_scheduler import build_delivery_scheduler

    setup_logging()
    result = asyncio.run(build_delivery_scheduler().tick(now=at))

    typer.echo("")
    for key, value in result.as_dict().items():
        typer.echo(f"  {key:<10} {value}")

    if result.failed or result.errors:
        raise typer.Exit(1)


@app.command("webhook-set")
def webhook_set(
    base_url: str = typer.Argument(..., help="Public base URL, e.g. https://bot.example.com"),
):
    """Register the Telegram webhook for this deployment."""
    from app.config import get_settings

    settings = get_settings()
    body: dict[str, Any] = {"url": build_webhook_url(base_url, settings.telegram_webhook_secret)}
    if settings.telegram_webhook_token:
        body["secret_token"] = settings.telegram_webhook_token

    _call_telegram("setWebhook", body)
    _print_success(f"Webhook set to {body['url']}")


@app.command("webhook-info")
def webhook_info():
    """Show the webhook Telegram currently has on record."""
    _call_telegram("getWebhookInfo")


@app.command("webhook-delete")
def webhook_delete(
    drop_pending: bool = typer.Option(
        False, "--drop-pending", help="Also discard updates Telegram has queued"
    ),
):
    """Remove the Telegram webhook."""
    _call_telegram("deleteWebhook", {"drop_pending_updates": drop_pending})
    _print_success("Webhook deleted")


@app.command()
def migrate():
    """Run database migrations (alembic upgrade head)."""
    import subprocess

    result = subprocess.run(["alembic", "upgrade", "head"], check=False)
    raise typer.Exit(result.returncode)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server."""
    import subprocess

    cmd = ["uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
