"""Translate Telegram Bot API updates into conversation events."""

from typing import Any

from app.config import get_config
from app.conversation.engine import ConversationEngine, build_conversation_engine
from app.conversation.events import (
    ButtonEvent,
    CommandEvent,
    InboundEvent,
    LocationEvent,
    TextEvent,
)
from app.core.logging import get_logger
from app.services.dispatcher import DispatchError
from app.services.telegram_service import TelegramDispatcher, get_telegram_dispatcher
from app.services.update_cache import UpdateDeduplicator

logger = get_logger(__name__)


def parse_command(text: str) -> tuple[str, str]:
    """Split "/name@bot argument" into ("name", "argument")."""
    head, _, rest = text.strip().partition(" ")
    name = head.lstrip("/").split("@", 1)[0].lower()
    return name, rest.strip()


def parse_update(update: dict[str, Any]) -> InboundEvent | None:
    """
    Map one update to an event.

    Supports messages (text, commands, locations) and inline button
    callbacks. Anything else (edits, channel posts, stickers) returns None.
    """
    callback = update.get("callback_query")
    if callback:
        sender = callback.get("from") or {}
        chat = (callback.get("message") or {}).get("chat") or {}
        data = callback.get("data")
        if "id" not in sender or not data:
            return None
        chat_id = chat.get("id", sender["id"])
        return ButtonEvent(user_id=str(sender["id"]), chat_id=str(chat_id), token=data)

    message = update.get("message")
    if not message:
        return None

    sender = message.get("from") or {}
    chat = message.get("chat") or {}
    if "id" not in sender or "id" not in chat:
        return None
    user_id, chat_id = str(sender["id"]), str(chat["id"])

    location = message.get("location")
    if location:
        return LocationEvent(
            user_id=user_id,
            chat_id=chat_id,
            lat=float(location["latitude"]),
            lon=float(location["longitude"]),
        )

    text = message.get("text")
    if not isinstance(text, str) or not text.strip():
        return None

    if text.startswith("/"):
        name, argument = parse_command(text)
        if not name:
            return None
        return CommandEvent(user_id=user_id, chat_id=chat_id, name=name, argument=argument)

    return TextEvent(user_id=user_id, chat_id=chat_id, text=text)


class TelegramUpdateHandler:
    """Deduplicates updates, acknowledges callbacks and feeds the engine."""

    def __init__(
        self,
        engine: ConversationEngine,
        dispatcher: TelegramDispatcher,
        deduplicator: UpdateDeduplicator,
    ) -> None:
        self.engine = engine
        self.dispatcher = dispatcher
        self.deduplicator = deduplicator

    async def process_update(self, update: dict[str, Any]) -> bool:
        """
        Handle one webhook update.

        Returns:
            True if an event reached the engine
        """
        update_id = update.get("update_id")
        if isinstance(update_id, int) and not self.deduplicator.check_and_remember(update_id):
            logger.bind(update_id=update_id).info("telegram_update_duplicate")
            return False

        callback = update.get("callback_query")
        if callback and callback.get("id"):
            # Stop the client's loading spinner whatever happens next
            try:
                await self.dispatcher.answer_callback_query(str(callback["id"]))
            except DispatchError as e:
                logger.bind(update_id=update_id, error=str(e)).warning("callback_answer_failed")

        event = parse_update(update)
        if event is None:
            logger.bind(update_id=update_id).debug("telegram_update_ignored")
            return False

        await self.engine.handle(event)
        return True


_handler_instance: TelegramUpdateHandler | None = None


def get_update_handler() -> TelegramUpdateHandler:
    """Get the shared update handler (one dedupe window per process)."""
    global _handler_instance
    if _handler_instance is None:
        updates = get_config().updates
        _handler_instance = TelegramUpdateHandler(
            engine=build_conversation_engine(),
            dispatcher=get_telegram_dispatcher(),
            deduplicator=UpdateDeduplicator(
                ttl_seconds=updates.dedupe_ttl_seconds,
                max_entries=updates.dedupe_max_entries,
            ),
        )
    return _handler_instance


def reset_update_handler() -> None:
    """Reset the handler instance. Useful for testing."""
    global _handler_instance
    _handler_instance = None
