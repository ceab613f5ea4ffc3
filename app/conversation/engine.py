"""
Conversation engine: onboarding and settings flows for the Telegram bot.

Each user has one conversation state (step + payload). While the step is
not IDLE, every text or command is read as input for that step, except
cancel. Transitions are compare-and-set on the step the handler read, so a
double submit becomes a logged no-op instead of a second transition.

Onboarding:  JOIN -> WAITING_LOCATION -> WAITING_MORNING_TIME
             -> WAITING_EVENING_TIME -> commit -> IDLE
Settings:    CHANGE_MORNING -> WAITING_UPDATE_MORNING_TIME -> IDLE
             CHANGE_EVENING -> WAITING_UPDATE_EVENING_TIME -> IDLE
"""

from typing import Any

from app.config import get_config
from app.conversation import keyboards, messages
from app.conversation.events import (
    ButtonEvent,
    CommandEvent,
    InboundEvent,
    LocationEvent,
    TextEvent,
)
from app.core.datetime_utils import (
    is_valid_hhmm,
    is_valid_timezone,
    local_date,
    local_now,
    local_tomorrow,
)
from app.core.logging import get_logger
from app.models.conversation import ConversationStep
from app.models.subscriber import Subscriber
from app.services.content import (
    ContentGenerationError,
    ContentMode,
    ContentProvider,
    ContentRateLimitError,
    get_content_provider,
)
from app.services.dispatcher import DispatchError, MessageDispatcher, SendOptions
from app.services.timezone_lookup import TimezoneLookup, get_timezone_lookup
from app.stores.base import ConversationStore, SubscriberProfile, SubscriberStore

logger = get_logger(__name__)

IDLE = ConversationStep.IDLE

# Payload keys carried from the location step through the time steps
LOCATION_KEYS = ("timezone", "lat", "lon")

SOURCE_JOIN = "join"
SOURCE_SETLOCATION = "setlocation"

UPDATE_STEPS = {
    ConversationStep.WAITING_UPDATE_MORNING_TIME: "morning",
    ConversationStep.WAITING_UPDATE_EVENING_TIME: "evening",
}


def _step_text(event: InboundEvent) -> str | None:
    """Raw text an event contributes as step input."""
    if isinstance(event, TextEvent):
        return event.text.strip()
    if isinstance(event, CommandEvent):
        return event.text
    return None


def _carry(payload: dict[str, Any], keys: tuple[str, ...]) -> dict[str, Any]:
    return {key: payload[key] for key in keys if key in payload}


class ConversationEngine:
    """Routes inbound events through the per-user state machine."""

    def __init__(
        self,
        subscribers: SubscriberStore,
        conversations: ConversationStore,
        content_provider: ContentProvider,
        dispatcher: MessageDispatcher,
        timezone_lookup: TimezoneLookup,
        default_timezone: str,
    ) -> None:
        self._subscribers = subscribers
        self._conversations = conversations
        self._content = content_provider
        self._dispatcher = dispatcher
        self._timezone_lookup = timezone_lookup
        self.default_timezone = default_timezone

    async def handle(self, event: InboundEvent) -> None:
        """Process one event. Never raises; failures end in a generic reply."""
        try:
            await self._route(event)
        except Exception as e:
            logger.bind(
                user_id=event.user_id,
                event_type=type(event).__name__,
                error=str(e),
            ).error("conversation_event_failed")
            await self._reply_safely(event.chat_id, messages.GENERIC_ERROR)

    async def _route(self, event: InboundEvent) -> None:
        snapshot = await self._conversations.get_state(event.user_id)
        step = snapshot.step if snapshot else IDLE
        payload = dict(snapshot.payload) if snapshot else {}

        if isinstance(event, ButtonEvent):
            await self._on_button(event, step)
        elif self._is_cancel(event):
            await self._cancel(event)
        elif step != IDLE:
            await self._on_step_input(event, step, payload)
        elif isinstance(event, CommandEvent):
            await self._on_command(event)
        elif isinstance(event, TextEvent):
            await self._on_idle_text(event)
        else:
            logger.bind(user_id=event.user_id, event_type=type(event).__name__).debug(
                "conversation_event_ignored"
            )

    # -- Buttons ---------------------------------------------------------

    async def _on_button(self, event: ButtonEvent, step: ConversationStep) -> None:
        if event.token == keyboards.JOIN:
            await self._request_location(event, step, SOURCE_JOIN)
            return

        if event.token not in keyboards.BUTTON_TOKENS:
            logger.bind(user_id=event.user_id, token=event.token).warning("unknown_button_token")
            return

        subscriber = await self._subscribers.find_by_id(event.user_id)
        if subscriber is None:
            await self._reply(event.chat_id, messages.NOT_ONBOARDED)
            return

        if event.token == keyboards.DISABLE:
            await self._set_active(event, subscriber, active=False)
        elif event.token == keyboards.ENABLE:
            await self._set_active(event, subscriber, active=True)
        elif event.token == keyboards.CHANGE_MORNING:
            await self._request_time_update(
                event, step, ConversationStep.WAITING_UPDATE_MORNING_TIME, subscriber.morning_time
            )
        elif event.token == keyboards.CHANGE_EVENING:
            await self._request_time_update(
                event, step, ConversationStep.WAITING_UPDATE_EVENING_TIME, subscriber.evening_time
            )

    async def _set_active(self, event: InboundEvent, subscriber: Subscriber, active: bool) -> None:
        if subscriber.is_active == active:
            await self._reply(
                event.chat_id, messages.ALREADY_ACTIVE if active else messages.ALREADY_PAUSED
            )
            return

        if not await self._subscribers.set_active(event.user_id, active):
            await self._reply(event.chat_id, messages.NOT_ONBOARDED)
            return

        logger.bind(user_id=event.user_id, active=active).info("subscriber_active_changed")
        await self._reply(event.chat_id, messages.RESUMED if active else messages.PAUSED)

    async def _request_time_update(
        self,
        event: InboundEvent,
        step: ConversationStep,
        next_step: ConversationStep,
        current: str | None,
    ) -> None:
        if not await self._transition(event.user_id, step, next_step, {}):
            return
        label = UPDATE_STEPS[next_step]
        await self._reply(
            event.chat_id,
            messages.ask_update_time(label, current),
            keyboards.cancel_keyboard(),
        )

    async def _request_location(
        self, event: InboundEvent, step: ConversationStep, source: str
    ) -> None:
        if not await self._transition(
            event.user_id, step, ConversationStep.WAITING_LOCATION, {"source": source}
        ):
            return
        text = messages.ASK_LOCATION
        if source == SOURCE_SETLOCATION:
            text = messages.ASK_LOCATION_UPDATE
        await self._reply(event.chat_id, text, keyboards.location_keyboard())

    # -- Cancel ----------------------------------------------------------

    @staticmethod
    def _is_cancel(event: InboundEvent) -> bool:
        if isinstance(event, CommandEvent):
            return event.name == "cancel"
        if isinstance(event, TextEvent):
            return event.text.strip() == keyboards.CANCEL_TEXT
        return False

    async def _cancel(self, event: InboundEvent) -> None:
        await self._conversations.clear_state(event.user_id)
        logger.bind(user_id=event.user_id).info("conversation_cancelled")

        subscriber = await self._subscribers.find_by_id(event.user_id)
        markup = keyboards.control_keyboard() if subscriber else keyboards.remove_keyboard()
        await self._reply(event.chat_id, messages.CANCELLED, markup)

    # -- Step input ------------------------------------------------------

    async def _on_step_input(
        self,
        event: InboundEvent,
        step: ConversationStep,
        payload: dict[str, Any],
    ) -> None:
        if step == ConversationStep.WAITING_LOCATION:
            await self._on_location_input(event, payload)
        elif step == ConversationStep.WAITING_MORNING_TIME:
            await self._on_morning_time(event, payload)
        elif step == ConversationStep.WAITING_EVENING_TIME:
            await self._on_evening_time(event, payload)
        elif step in UPDATE_STEPS:
            await self._on_time_update(event, step)

    async def _on_location_input(self, event: InboundEvent, payload: dict[str, Any]) -> None:
        step = ConversationStep.WAITING_LOCATION
        source = payload.get("source", SOURCE_JOIN)
        existing = await self._subscribers.find_by_id(event.user_id)
        fallback_tz = self.default_timezone
        if existing and is_valid_timezone(existing.timezone):
            fallback_tz = existing.timezone

        lat: float | None = None
        lon: float | None = None
        detected = True

        if isinstance(event, LocationEvent):
            lat, lon = event.lat, event.lon
            found = await self._timezone_lookup.lookup(lat, lon)
            detected = found is not None
            timezone = found or fallback_tz
        else:
            text = _step_text(event) or ""
            if text == keyboards.SKIP_TEXT:
                if source == SOURCE_SETLOCATION:
                    if await self._conversations.clear_state(event.user_id, expected_step=step):
                        await self._reply(
                            event.chat_id,
                            messages.LOCATION_UNCHANGED,
                            self._idle_keyboard(existing),
                        )
                    return
                timezone = fallback_tz
            elif is_valid_timezone(text):
                timezone = text
            else:
                await self._reply(
                    event.chat_id, messages.LOCATION_REPROMPT, keyboards.location_keyboard()
                )
                return

        if source == SOURCE_SETLOCATION:
            await self._save_location_directly(event, timezone, lat, lon, detected, existing)
            return

        next_payload: dict[str, Any] = {"timezone": timezone}
        if lat is not None and lon is not None:
            next_payload.update(lat=lat, lon=lon)
        if not await self._transition(
            event.user_id, step, ConversationStep.WAITING_MORNING_TIME, next_payload
        ):
            return

        if lat is not None and lon is not None:
            text = messages.location_saved(lat, lon, timezone, detected)
        else:
            text = messages.timezone_detected(timezone, detected=True)
        await self._reply(
            event.chat_id, f"{text}\n\n{messages.ASK_MORNING_TIME}", keyboards.cancel_keyboard()
        )

    async def _save_location_directly(
        self,
        event: InboundEvent,
        timezone: str,
        lat: float | None,
        lon: float | None,
        detected: bool,
        existing: Subscriber | None,
    ) -> None:
        if not await self._conversations.clear_state(
            event.user_id, expected_step=ConversationStep.WAITING_LOCATION
        ):
            return

        if lat is not None and lon is not None:
            await self._subscribers.save_location(event.user_id, event.chat_id, lat, lon, timezone)
            text = messages.location_saved(lat, lon, timezone, detected)
        else:
            await self._subscribers.save_timezone(event.user_id, event.chat_id, timezone)
            text = messages.timezone_saved(timezone)

        logger.bind(user_id=event.user_id, timezone=timezone).info("subscriber_location_saved")
        subscriber = existing or await self._subscribers.find_by_id(event.user_id)
        await self._reply(event.chat_id, text, self._idle_keyboard(subscriber))

    async def _on_morning_time(self, event: InboundEvent, payload: dict[str, Any]) -> None:
        value = _step_text(event)
        if not is_valid_hhmm(value):
            await self._reply(event.chat_id, messages.INVALID_TIME)
            return

        next_payload = {**_carry(payload, LOCATION_KEYS), "morning_time": value}
        if not await self._transition(
            event.user_id,
            ConversationStep.WAITING_MORNING_TIME,
            ConversationStep.WAITING_EVENING_TIME,
            next_payload,
        ):
            return
        await self._reply(event.chat_id, messages.ASK_EVENING_TIME)

    async def _on_evening_time(self, event: InboundEvent, payload: dict[str, Any]) -> None:
        step = ConversationStep.WAITING_EVENING_TIME
        value = _step_text(event)
        if not is_valid_hhmm(value):
            await self._reply(event.chat_id, messages.INVALID_TIME)
            return

        morning_time = payload.get("morning_time")
        if not is_valid_hhmm(morning_time):
            logger.bind(user_id=event.user_id).warning("onboarding_morning_time_missing")
            if await self._transition(
                event.user_id,
                step,
                ConversationStep.WAITING_MORNING_TIME,
                _carry(payload, LOCATION_KEYS),
            ):
                await self._reply(
                    event.chat_id, f"{messages.MORNING_TIME_MISSING}\n{messages.ASK_MORNING_TIME}"
                )
            return

        timezone = payload.get("timezone")
        if not is_valid_timezone(timezone):
            existing = await self._subscribers.find_by_id(event.user_id)
            timezone = existing.timezone if existing else self.default_timezone

        profile = SubscriberProfile(
            telegram_user_id=event.user_id,
            telegram_chat_id=event.chat_id,
            timezone=timezone,
            morning_time=morning_time,
            evening_time=value,
            lat=payload.get("lat"),
            lon=payload.get("lon"),
        )

        # Claim the transition first so a double submit commits once
        if not await self._conversations.clear_state(event.user_id, expected_step=step):
            logger.bind(user_id=event.user_id).info("onboarding_commit_skipped")
            return
        try:
            subscriber = await self._subscribers.upsert(profile)
        except Exception:
            await self._conversations.set_state(event.user_id, step, payload, expected_step=IDLE)
            raise

        logger.bind(user_id=event.user_id, timezone=timezone).info("onboarding_completed")
        await self._reply(
            event.chat_id,
            messages.onboarding_complete(subscriber),
            keyboards.control_keyboard(),
        )

    async def _on_time_update(self, event: InboundEvent, step: ConversationStep) -> None:
        value = _step_text(event)
        if not is_valid_hhmm(value):
            await self._reply(event.chat_id, messages.INVALID_TIME)
            return

        if not await self._conversations.clear_state(event.user_id, expected_step=step):
            return

        label = UPDATE_STEPS[step]
        try:
            if step == ConversationStep.WAITING_UPDATE_MORNING_TIME:
                updated = await self._subscribers.update_morning_time(event.user_id, value)
            else:
                updated = await self._subscribers.update_evening_time(event.user_id, value)
        except Exception:
            await self._conversations.set_state(event.user_id, step, {}, expected_step=IDLE)
            raise

        if not updated:
            await self._reply(event.chat_id, messages.NOT_ONBOARDED, keyboards.remove_keyboard())
            return

        logger.bind(user_id=event.user_id, slot=label, value=value).info("delivery_time_updated")
        await self._reply(
            event.chat_id, messages.time_updated(label, value), keyboards.control_keyboard()
        )

    # -- Idle commands and texts -----------------------------------------

    async def _on_command(self, event: CommandEvent) -> None:
        name = event.name
        if name == "start":
            await self._reply(event.chat_id, messages.WELCOME, keyboards.join_keyboard())
        elif name == "help":
            await self._reply(event.chat_id, messages.HELP)
        elif name == "settings":
            await self._show_settings(event)
        elif name in ("stop", "resume"):
            subscriber = await self._subscribers.find_by_id(event.user_id)
            if subscriber is None:
                await self._reply(event.chat_id, messages.NOT_ONBOARDED)
                return
            await self._set_active(event, subscriber, active=name == "resume")
        elif name == "today":
            await self._send_on_demand(event, ContentMode.TODAY)
        elif name == "tomorrow":
            await self._send_on_demand(event, ContentMode.TOMORROW)
        elif name == "settimezone":
            await self._set_timezone(event)
        elif name == "setlocation":
            await self._request_location(event, IDLE, SOURCE_SETLOCATION)
        else:
            await self._reply(event.chat_id, messages.HELP)

    async def _on_idle_text(self, event: TextEvent) -> None:
        text = event.text.strip()
        if text == keyboards.TODAY_TEXT:
            await self._send_on_demand(event, ContentMode.TODAY)
        elif text == keyboards.TOMORROW_TEXT:
            await self._send_on_demand(event, ContentMode.TOMORROW)
        elif text == keyboards.SETTINGS_TEXT:
            await self._show_settings(event)
        else:
            logger.bind(user_id=event.user_id).debug("idle_text_ignored")

    async def _show_settings(self, event: InboundEvent) -> None:
        subscriber = await self._subscribers.find_by_id(event.user_id)
        if subscriber is None:
            await self._reply(event.chat_id, messages.NOT_ONBOARDED)
            return
        await self._reply(
            event.chat_id,
            messages.settings_summary(subscriber),
            keyboards.settings_keyboard(subscriber.is_active),
        )

    async def _set_timezone(self, event: CommandEvent) -> None:
        timezone = event.argument.strip()
        if not timezone:
            await self._reply(event.chat_id, messages.SETTIMEZONE_USAGE)
            return
        if not is_valid_timezone(timezone):
            await self._reply(event.chat_id, messages.INVALID_TIMEZONE)
            return

        subscriber = await self._subscribers.save_timezone(event.user_id, event.chat_id, timezone)
        await self._conversations.clear_state(event.user_id)
        logger.bind(user_id=event.user_id, timezone=timezone).info("subscriber_timezone_saved")
        await self._reply(
            event.chat_id, messages.timezone_saved(timezone), self._idle_keyboard(subscriber)
        )

    async def _send_on_demand(self, event: InboundEvent, mode: ContentMode) -> None:
        """Generate today's or tomorrow's note outside the schedule.

        Needs a profile for the timezone. Does not touch the delivery ledger.
        """
        subscriber = await self._subscribers.find_by_id(event.user_id)
        if subscriber is None:
            await self._reply(event.chat_id, messages.NOT_ONBOARDED)
            return

        local = local_now(subscriber.timezone, self.default_timezone)
        target_date = local_date(local) if mode == ContentMode.TODAY else local_tomorrow(local)

        try:
            text = await self._content.generate(target_date, str(local.tzinfo), mode)
        except ContentRateLimitError:
            await self._reply(event.chat_id, messages.CONTENT_RATE_LIMITED)
            return
        except ContentGenerationError as e:
            logger.bind(user_id=event.user_id, mode=mode.value, error=str(e)).error(
                "on_demand_content_failed"
            )
            await self._reply(event.chat_id, messages.CONTENT_UNAVAILABLE)
            return

        await self._reply(event.chat_id, text)

    # -- Helpers ---------------------------------------------------------

    async def _transition(
        self,
        user_id: str,
        expected: ConversationStep,
        next_step: ConversationStep,
        payload: dict[str, Any],
    ) -> bool:
        changed = await self._conversations.set_state(
            user_id, next_step, payload, expected_step=expected
        )
        if not changed:
            logger.bind(
                user_id=user_id,
                expected_step=expected.value,
                next_step=next_step.value,
            ).info("conversation_transition_skipped")
        return changed

    @staticmethod
    def _idle_keyboard(subscriber: Subscriber | None) -> SendOptions:
        if subscriber is not None and subscriber.morning_time and subscriber.evening_time:
            return keyboards.control_keyboard()
        return keyboards.remove_keyboard()

    async def _reply(self, chat_id: str, text: str, options: SendOptions | None = None) -> None:
        await self._dispatcher.send(chat_id, text, options)

    async def _reply_safely(self, chat_id: str, text: str) -> None:
        try:
            await self._dispatcher.send(chat_id, text)
        except DispatchError as e:
            logger.bind(chat_id=chat_id, error=str(e)).warning("conversation_reply_failed")


def build_conversation_engine() -> ConversationEngine:
    """Wire the engine with the SQL stores and configured collaborators."""
    from app.services.telegram_service import get_telegram_dispatcher
    from app.stores.conversations import SQLConversationStore
    from app.stores.subscribers import SQLSubscriberStore

    return ConversationEngine(
        subscribers=SQLSubscriberStore(),
        conversations=SQLConversationStore(),
        content_provider=get_content_provider(),
        dispatcher=get_telegram_dispatcher(),
        timezone_lookup=get_timezone_lookup(),
        default_timezone=get_config().settings.default_timezone,
    )
