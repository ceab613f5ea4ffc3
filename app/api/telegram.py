"""Telegram webhook endpoints."""

from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Header, HTTPException, status

from app.config import Settings
from app.conversation.telegram_adapter import TelegramUpdateHandler, get_update_handler
from app.core.logging import get_logger
from app.core.security import secret_matches
from app.dependencies import AppSettings

logger = get_logger(__name__)
router = APIRouter()

UpdateHandler = Annotated[TelegramUpdateHandler, Depends(get_update_handler)]
SecretTokenHeader = Annotated[str | None, Header(alias="X-Telegram-Bot-Api-Secret-Token")]


async def _process_in_background(handler: TelegramUpdateHandler, update: dict[str, Any]) -> None:
    try:
        await handler.process_update(update)
    except Exception as e:
        logger.bind(update_id=update.get("update_id"), error=str(e)).error(
            "telegram_update_processing_failed"
        )


def _accept_update(
    settings: Settings,
    handler: TelegramUpdateHandler,
    background_tasks: BackgroundTasks,
    update: dict[str, Any],
    path_secret: str | None,
    header_token: str | None,
) -> dict[str, bool]:
    if not secret_matches(settings.telegram_webhook_secret, path_secret):
        logger.warning("telegram_webhook_bad_path_secret")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid webhook path secret",
        )

    if not secret_matches(settings.telegram_webhook_token, header_token):
        logger.warning("telegram_webhook_bad_token")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid webhook token",
        )

    # Acknowledge now; Telegram retries updates that are not answered quickly
    background_tasks.add_task(_process_in_background, handler, update)
    return {"ok": True}


@router.post("/webhook")
async def telegram_webhook(
    background_tasks: BackgroundTasks,
    settings: AppSettings,
    handler: UpdateHandler,
    update: Annotated[dict[str, Any], Body()],
    secret_token: SecretTokenHeader = None,
) -> dict[str, bool]:
    """Receive one Telegram update (no path secret)."""
    return _accept_update(settings, handler, background_tasks, update, None, secret_token)


@router.post("/webhook/{secret}")
async def telegram_webhook_with_secret(
    secret: str,
    background_tasks: BackgroundTasks,
    settings: AppSettings,
    handler: UpdateHandler,
    update: Annotated[dict[str, Any], Body()],
    secret_token: SecretTokenHeader = None,
) -> dict[str, bool]:
    """Receive one Telegram update on the secret path."""
    return _accept_update(settings, handler, background_tasks, update, secret, secret_token)
