"""
Telegram Bot API client.

Implements MessageDispatcher for scheduled and interactive replies, plus the
few management calls the bot needs (callback answers, webhook setup).
"""

from typing import Any

import httpx

from app.config import get_settings
from app.core.logging import get_logger
from app.services.dispatcher import DispatchError, MessageDispatcher, SendOptions

logger = get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class TelegramAPIError(DispatchError):
    """Telegram answered with an HTTP error or `ok: false`."""

    def __init__(self, method: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"Telegram API {method} failed: {message}")
        self.method = method
        self.status_code = status_code


class TelegramDispatcher(MessageDispatcher):
    """Sends messages through the Telegram Bot API over httpx."""

    def __init__(
        self,
        bot_token: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = f"{TELEGRAM_API_BASE}/bot{bot_token}"
        self.timeout = timeout_seconds
        self._transport = transport

    async def send(self, chat_id: str, text: str, options: SendOptions | None = None) -> None:
        body: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if options:
            if options.reply_markup is not None:
                body["reply_markup"] = options.reply_markup
            body.update(options.extra)
        await self.call("sendMessage", body)

    async def answer_callback_query(self, callback_query_id: str) -> None:
        await self.call("answerCallbackQuery", {"callback_query_id": callback_query_id})

    async def call(self, method: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        """Invoke a Bot API method and return its decoded payload."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(f"{self.base_url}/{method}", json=body or {})
        except httpx.HTTPError as e:
            logger.bind(method=method, error=str(e)).warning("telegram_request_error")
            raise TelegramAPIError(method, str(e)) from e

        if resp.status_code >= 400:
            raise TelegramAPIError(method, f"HTTP {resp.status_code} {resp.text}", resp.status_code)

        try:
            payload: dict[str, Any] = resp.json()
        except ValueError as e:
            raise TelegramAPIError(method, "invalid JSON response", resp.status_code) from e

        if not payload.get("ok"):
            raise TelegramAPIError(
                method, payload.get("description", "unknown error"), resp.status_code
            )
        return payload


_dispatcher_instance: TelegramDispatcher | None = None


def get_telegram_dispatcher() -> TelegramDispatcher:
    """Get the shared dispatcher built from settings."""
    global _dispatcher_instance
    if _dispatcher_instance is None:
        _dispatcher_instance = TelegramDispatcher(get_settings().telegram_bot_token)
    return _dispatcher_instance
