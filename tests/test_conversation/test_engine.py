"""Tests for the conversation engine state machine."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.conversation import keyboards, messages
from app.conversation.engine import ConversationEngine
from app.conversation.events import ButtonEvent, CommandEvent, LocationEvent, TextEvent
from app.models.conversation import ConversationStep
from app.services.content import (
    ContentGenerationError,
    ContentMode,
    ContentRateLimitError,
    FallbackContentProvider,
    HTTPContentProvider,
    StaticContentProvider,
)
from app.services.dispatcher import DispatchError

pytestmark = pytest.mark.asyncio

USER = "5001"
CHAT = "5001"
JOIN_PAYLOAD = {"source": "join"}


def text(value: str) -> TextEvent:
    return TextEvent(user_id=USER, chat_id=CHAT, text=value)


def command(name: str, argument: str = "") -> CommandEvent:
    return CommandEvent(user_id=USER, chat_id=CHAT, name=name, argument=argument)


def button(token: str) -> ButtonEvent:
    return ButtonEvent(user_id=USER, chat_id=CHAT, token=token)


def location(lat: float = 52.52, lon: float = 13.405) -> LocationEvent:
    return LocationEvent(user_id=USER, chat_id=CHAT, lat=lat, lon=lon)


def last_reply(dispatcher: AsyncMock) -> str:
    return dispatcher.send.await_args.args[1]


def last_markup(dispatcher: AsyncMock) -> dict | None:
    args = dispatcher.send.await_args.args
    if len(args) < 3 or args[2] is None:
        return None
    return args[2].reply_markup


async def step_of(conversation_store) -> ConversationStep:
    state = await conversation_store.get_state(USER)
    return state.step if state else ConversationStep.IDLE


class TestOnboarding:
    """JOIN -> location -> morning -> evening -> commit."""

    async def test_full_flow(
        self, conversation_engine, conversation_store, subscriber_store, mock_dispatcher
    ):
        await conversation_engine.handle(button(keyboards.JOIN))
        state = await conversation_store.get_state(USER)
        assert state.step == ConversationStep.WAITING_LOCATION
        assert state.payload == {"source": "join"}
        assert last_reply(mock_dispatcher) == messages.ASK_LOCATION
        assert last_markup(mock_dispatcher)["keyboard"][0][0]["request_location"] is True

        await conversation_engine.handle(location())
        state = await conversation_store.get_state(USER)
        assert state.step == ConversationStep.WAITING_MORNING_TIME
        assert state.payload == {"timezone": "Europe/Berlin", "lat": 52.52, "lon": 13.405}
        assert messages.ASK_MORNING_TIME in last_reply(mock_dispatcher)

        await conversation_engine.handle(text("07:30"))
        state = await conversation_store.get_state(USER)
        assert state.step == ConversationStep.WAITING_EVENING_TIME
        assert state.payload == {
            "timezone": "Europe/Berlin",
            "lat": 52.52,
            "lon": 13.405,
            "morning_time": "07:30",
        }

        await conversation_engine.handle(text("21:00"))
        state = await conversation_store.get_state(USER)
        assert state.step == ConversationStep.IDLE
        assert state.payload == {}

        subscriber = await subscriber_store.find_by_id(USER)
        assert subscriber.morning_time == "07:30"
        assert subscriber.evening_time == "21:00"
        assert subscriber.timezone == "Europe/Berlin"
        assert subscriber.is_active is True
        assert subscriber.lat == pytest.approx(52.52)
        assert last_markup(mock_dispatcher) == keyboards.control_keyboard().reply_markup

    async def test_invalid_time_keeps_step_and_payload(
        self, conversation_engine, conversation_store, mock_dispatcher
    ):
        payload = {"timezone": "Asia/Tokyo"}
        await conversation_store.set_state(USER, ConversationStep.WAITING_MORNING_TIME, payload)

        for bad in ("8:3", "8:30", "24:00", "noon"):
            await conversation_engine.handle(text(bad))

            state = await conversation_store.get_state(USER)
            assert state.step == ConversationStep.WAITING_MORNING_TIME
            assert state.payload == payload
            assert last_reply(mock_dispatcher) == messages.INVALID_TIME

    async def test_commands_are_step_input_while_pending(
        self, conversation_engine, conversation_store, mock_dispatcher
    ):
        """/start during the morning step is just an invalid time."""
        await conversation_store.set_state(USER, ConversationStep.WAITING_MORNING_TIME, {})

        await conversation_engine.handle(command("start"))

        assert await step_of(conversation_store) == ConversationStep.WAITING_MORNING_TIME
        assert last_reply(mock_dispatcher) == messages.INVALID_TIME

    async def test_missing_morning_time_regresses(
        self, conversation_engine, conversation_store, subscriber_store, mock_dispatcher
    ):
        await conversation_store.set_state(
            USER, ConversationStep.WAITING_EVENING_TIME, {"timezone": "Asia/Tokyo"}
        )

        await conversation_engine.handle(text("21:00"))

        state = await conversation_store.get_state(USER)
        assert state.step == ConversationStep.WAITING_MORNING_TIME
        assert state.payload == {"timezone": "Asia/Tokyo"}
        assert await subscriber_store.find_by_id(USER) is None
        assert messages.MORNING_TIME_MISSING in last_reply(mock_dispatcher)

    async def test_commit_claimed_elsewhere_is_noop(
        self, conversation_engine, conversation_store, subscriber_store
    ):
        """A double submit whose transition was already claimed does not upsert."""
        await conversation_store.set_state(
            USER, ConversationStep.WAITING_EVENING_TIME, {"morning_time": "07:00"}
        )

        with patch.object(conversation_store, "clear_state", AsyncMock(return_value=False)):
            await conversation_engine.handle(text("21:00"))

        assert await subscriber_store.find_by_id(USER) is None

    async def test_upsert_failure_restores_state(
        self, conversation_engine, conversation_store, subscriber_store, mock_dispatcher
    ):
        payload = {"timezone": "Asia/Tokyo", "morning_time": "07:00"}
        await conversation_store.set_state(USER, ConversationStep.WAITING_EVENING_TIME, payload)

        failing_upsert = AsyncMock(side_effect=RuntimeError("db down"))
        with patch.object(subscriber_store, "upsert", failing_upsert):
            await conversation_engine.handle(text("21:00"))

        state = await conversation_store.get_state(USER)
        assert state.step == ConversationStep.WAITING_EVENING_TIME
        assert state.payload == payload
        assert last_reply(mock_dispatcher) == messages.GENERIC_ERROR

    async def test_no_immediate_send_after_commit(
        self, conversation_engine, conversation_store, mock_content_provider
    ):
        await conversation_store.set_state(
            USER, ConversationStep.WAITING_EVENING_TIME, {"morning_time": "07:00"}
        )

        await conversation_engine.handle(text("21:00"))

        mock_content_provider.generate.assert_not_awaited()

    async def test_commit_without_timezone_uses_default(
        self, conversation_engine, conversation_store, subscriber_store
    ):
        await conversation_store.set_state(
            USER, ConversationStep.WAITING_EVENING_TIME, {"morning_time": "07:00"}
        )

        await conversation_engine.handle(text("21:00"))

        subscriber = await subscriber_store.find_by_id(USER)
        assert subscriber.timezone == "Europe/Amsterdam"


class TestLocationStep:
    """Input accepted while WAITING_LOCATION."""

    async def test_skip_uses_default_timezone(self, conversation_engine, conversation_store):
        await conversation_store.set_state(USER, ConversationStep.WAITING_LOCATION, JOIN_PAYLOAD)

        await conversation_engine.handle(text(keyboards.SKIP_TEXT))

        state = await conversation_store.get_state(USER)
        assert state.step == ConversationStep.WAITING_MORNING_TIME
        assert state.payload == {"timezone": "Europe/Amsterdam"}

    async def test_typed_timezone(self, conversation_engine, conversation_store):
        await conversation_store.set_state(USER, ConversationStep.WAITING_LOCATION, JOIN_PAYLOAD)

        await conversation_engine.handle(text("Asia/Tokyo"))

        state = await conversation_store.get_state(USER)
        assert state.payload == {"timezone": "Asia/Tokyo"}

    async def test_other_text_reprompts(
        self, conversation_engine, conversation_store, mock_dispatcher
    ):
        await conversation_store.set_state(USER, ConversationStep.WAITING_LOCATION, JOIN_PAYLOAD)

        await conversation_engine.handle(text("Berlin please"))

        assert await step_of(conversation_store) == ConversationStep.WAITING_LOCATION
        assert last_reply(mock_dispatcher) == messages.LOCATION_REPROMPT

    async def test_lookup_failure_falls_back(
        self, conversation_engine, conversation_store, mock_timezone_lookup, mock_dispatcher
    ):
        mock_timezone_lookup.lookup.return_value = None
        await conversation_store.set_state(USER, ConversationStep.WAITING_LOCATION, JOIN_PAYLOAD)

        await conversation_engine.handle(location())

        state = await conversation_store.get_state(USER)
        assert state.payload["timezone"] == "Europe/Amsterdam"
        assert "/settimezone" in last_reply(mock_dispatcher)

    async def test_setlocation_saves_directly(
        self, conversation_engine, conversation_store, subscriber_store, subscriber_factory
    ):
        await subscriber_factory(user_id=USER, timezone="Europe/Paris")

        await conversation_engine.handle(command("setlocation"))
        state = await conversation_store.get_state(USER)
        assert state.step == ConversationStep.WAITING_LOCATION
        assert state.payload == {"source": "setlocation"}

        await conversation_engine.handle(location())

        assert await step_of(conversation_store) == ConversationStep.IDLE
        subscriber = await subscriber_store.find_by_id(USER)
        assert subscriber.timezone == "Europe/Berlin"
        assert subscriber.lat == pytest.approx(52.52)
        assert subscriber.morning_time == "08:00"


class TestCancel:
    """Cancel resets from any step."""

    @pytest.mark.parametrize("step", [s for s in ConversationStep if s != ConversationStep.IDLE])
    async def test_cancel_text_from_any_step(
        self, conversation_engine, conversation_store, mock_dispatcher, step
    ):
        await conversation_store.set_state(USER, step, {"morning_time": "07:00"})

        await conversation_engine.handle(text(keyboards.CANCEL_TEXT))

        state = await conversation_store.get_state(USER)
        assert state.step == ConversationStep.IDLE
        assert state.payload == {}
        assert last_reply(mock_dispatcher) == messages.CANCELLED

    async def test_cancel_command(self, conversation_engine, conversation_store):
        await conversation_store.set_state(USER, ConversationStep.WAITING_EVENING_TIME, {})

        await conversation_engine.handle(command("cancel"))

        assert await step_of(conversation_store) == ConversationStep.IDLE


class TestButtons:
    """Settings buttons."""

    @pytest.mark.parametrize(
        "token",
        [keyboards.DISABLE, keyboards.ENABLE, keyboards.CHANGE_MORNING, keyboards.CHANGE_EVENING],
    )
    async def test_requires_existing_subscriber(
        self, conversation_engine, conversation_store, subscriber_store, mock_dispatcher, token
    ):
        await conversation_engine.handle(button(token))

        assert last_reply(mock_dispatcher) == messages.NOT_ONBOARDED
        assert await subscriber_store.find_by_id(USER) is None
        assert await conversation_store.get_state(USER) is None

    async def test_disable_twice(
        self, conversation_engine, subscriber_store, subscriber_factory, mock_dispatcher
    ):
        await subscriber_factory(user_id=USER)

        await conversation_engine.handle(button(keyboards.DISABLE))
        assert last_reply(mock_dispatcher) == messages.PAUSED

        await conversation_engine.handle(button(keyboards.DISABLE))
        assert last_reply(mock_dispatcher) == messages.ALREADY_PAUSED

        subscriber = await subscriber_store.find_by_id(USER)
        assert subscriber.is_active is False

    async def test_enable(
        self, conversation_engine, subscriber_store, subscriber_factory, mock_dispatcher
    ):
        await subscriber_factory(user_id=USER, is_active=False)

        await conversation_engine.handle(button(keyboards.ENABLE))

        assert last_reply(mock_dispatcher) == messages.RESUMED
        assert (await subscriber_store.find_by_id(USER)).is_active is True

    async def test_change_morning_time(
        self, conversation_engine, conversation_store, subscriber_store, subscriber_factory
    ):
        await subscriber_factory(user_id=USER, morning_time="08:00")

        await conversation_engine.handle(button(keyboards.CHANGE_MORNING))
        assert await step_of(conversation_store) == ConversationStep.WAITING_UPDATE_MORNING_TIME

        await conversation_engine.handle(text("8:15"))
        assert await step_of(conversation_store) == ConversationStep.WAITING_UPDATE_MORNING_TIME

        await conversation_engine.handle(text("06:15"))
        assert await step_of(conversation_store) == ConversationStep.IDLE
        assert (await subscriber_store.find_by_id(USER)).morning_time == "06:15"

    async def test_change_button_supersedes_pending_flow(
        self, conversation_engine, conversation_store, subscriber_store, subscriber_factory
    ):
        await subscriber_factory(user_id=USER, evening_time="21:00")
        await conversation_store.set_state(USER, ConversationStep.WAITING_LOCATION, JOIN_PAYLOAD)

        await conversation_engine.handle(button(keyboards.CHANGE_EVENING))
        state = await conversation_store.get_state(USER)
        assert state.step == ConversationStep.WAITING_UPDATE_EVENING_TIME
        assert state.payload == {}

        await conversation_engine.handle(text("22:30"))
        assert (await subscriber_store.find_by_id(USER)).evening_time == "22:30"

    async def test_unknown_token_is_ignored(self, conversation_engine, mock_dispatcher):
        await conversation_engine.handle(button("SOMETHING_ELSE"))

        mock_dispatcher.send.assert_not_awaited()


class TestIdleInput:
    """Commands and texts with no pending step."""

    async def test_free_text_without_profile_is_noop(
        self, conversation_engine, conversation_store, mock_dispatcher
    ):
        await conversation_engine.handle(text("hello there"))

        mock_dispatcher.send.assert_not_awaited()
        assert await conversation_store.get_state(USER) is None

    async def test_start_offers_join(self, conversation_engine, mock_dispatcher):
        await conversation_engine.handle(command("start"))

        assert last_reply(mock_dispatcher) == messages.WELCOME
        join_button = last_markup(mock_dispatcher)["inline_keyboard"][0][0]
        assert join_button["callback_data"] == keyboards.JOIN

    async def test_settings_summary(self, conversation_engine, subscriber_factory, mock_dispatcher):
        await subscriber_factory(user_id=USER, morning_time="07:00", evening_time="22:00")

        await conversation_engine.handle(text(keyboards.SETTINGS_TEXT))

        reply = last_reply(mock_dispatcher)
        assert "Morning: 07:00" in reply
        assert "Evening: 22:00" in reply
        tokens = [
            row[0]["callback_data"] for row in last_markup(mock_dispatcher)["inline_keyboard"]
        ]
        assert tokens == [keyboards.CHANGE_MORNING, keyboards.CHANGE_EVENING, keyboards.DISABLE]

    async def test_settings_without_profile(self, conversation_engine, mock_dispatcher):
        await conversation_engine.handle(command("settings"))

        assert last_reply(mock_dispatcher) == messages.NOT_ONBOARDED

    async def test_stop_and_resume(self, conversation_engine, subscriber_store, subscriber_factory):
        await subscriber_factory(user_id=USER)

        await conversation_engine.handle(command("stop"))
        assert (await subscriber_store.find_by_id(USER)).is_active is False

        await conversation_engine.handle(command("resume"))
        assert (await subscriber_store.find_by_id(USER)).is_active is True

    async def test_settimezone(self, conversation_engine, subscriber_store, mock_dispatcher):
        await conversation_engine.handle(command("settimezone", "America/New_York"))

        subscriber = await subscriber_store.find_by_id(USER)
        assert subscriber.timezone == "America/New_York"
        assert subscriber.morning_time is None
        assert last_reply(mock_dispatcher) == messages.timezone_saved("America/New_York")

    async def test_settimezone_invalid(
        self, conversation_engine, subscriber_store, mock_dispatcher
    ):
        await conversation_engine.handle(command("settimezone", "Moon/Base"))

        assert last_reply(mock_dispatcher) == messages.INVALID_TIMEZONE
        assert await subscriber_store.find_by_id(USER) is None

    async def test_settimezone_missing_argument(self, conversation_engine, mock_dispatcher):
        await conversation_engine.handle(command("settimezone"))

        assert last_reply(mock_dispatcher) == messages.SETTIMEZONE_USAGE


class TestOnDemandContent:
    """/today, /tomorrow and their keyboard texts."""

    async def test_today(
        self,
        conversation_engine,
        subscriber_factory,
        mock_content_provider,
        mock_dispatcher,
        delivery_ledger,
    ):
        await subscriber_factory(user_id=USER, timezone="Europe/Paris")

        await conversation_engine.handle(command("today"))

        _, timezone, mode = mock_content_provider.generate.await_args.args
        assert timezone == "Europe/Paris"
        assert mode == ContentMode.TODAY
        assert last_reply(mock_dispatcher) == "Your note"
        assert await delivery_ledger.list_entries() == []

    @pytest.mark.parametrize("event", [command("today"), text(keyboards.TOMORROW_TEXT)])
    async def test_requires_profile(
        self, conversation_engine, subscriber_store, mock_content_provider, mock_dispatcher, event
    ):
        await conversation_engine.handle(event)

        assert last_reply(mock_dispatcher) == messages.NOT_ONBOARDED
        mock_content_provider.generate.assert_not_awaited()
        assert await subscriber_store.find_by_id(USER) is None

    async def test_tomorrow_text_uses_subscriber_timezone(
        self, conversation_engine, subscriber_factory, mock_content_provider
    ):
        await subscriber_factory(user_id=USER, timezone="Asia/Tokyo")

        await conversation_engine.handle(text(keyboards.TOMORROW_TEXT))

        _, timezone, mode = mock_content_provider.generate.await_args.args
        assert timezone == "Asia/Tokyo"
        assert mode == ContentMode.TOMORROW

    async def test_rate_limit_asks_to_retry_later(
        self, conversation_engine, subscriber_factory, mock_content_provider, mock_dispatcher
    ):
        await subscriber_factory(user_id=USER)
        mock_content_provider.generate.side_effect = ContentRateLimitError("429")

        await conversation_engine.handle(command("today"))

        assert last_reply(mock_dispatcher) == messages.CONTENT_RATE_LIMITED

    async def test_rate_limited_service_is_not_replaced_by_static_text(
        self,
        subscriber_store,
        conversation_store,
        subscriber_factory,
        mock_dispatcher,
        mock_timezone_lookup,
    ):
        await subscriber_factory(user_id=USER)
        chain = FallbackContentProvider(
            [
                HTTPContentProvider(
                    url="https://content.test/generate",
                    transport=httpx.MockTransport(lambda request: httpx.Response(429)),
                ),
                StaticContentProvider({"TODAY": "static {date}"}),
            ]
        )
        engine = ConversationEngine(
            subscribers=subscriber_store,
            conversations=conversation_store,
            content_provider=chain,
            dispatcher=mock_dispatcher,
            timezone_lookup=mock_timezone_lookup,
            default_timezone="Europe/Amsterdam",
        )

        await engine.handle(command("today"))

        assert last_reply(mock_dispatcher) == messages.CONTENT_RATE_LIMITED

    async def test_generation_failure(
        self, conversation_engine, subscriber_factory, mock_content_provider, mock_dispatcher
    ):
        await subscriber_factory(user_id=USER)
        mock_content_provider.generate.side_effect = ContentGenerationError("boom")

        await conversation_engine.handle(command("tomorrow"))

        assert last_reply(mock_dispatcher) == messages.CONTENT_UNAVAILABLE


class TestErrorHandling:
    async def test_store_error_sends_generic_reply(
        self, conversation_engine, conversation_store, mock_dispatcher
    ):
        with patch.object(
            conversation_store, "get_state", AsyncMock(side_effect=RuntimeError("db down"))
        ):
            await conversation_engine.handle(text("hi"))

        mock_dispatcher.send.assert_awaited_once_with(CHAT, messages.GENERIC_ERROR)

    async def test_failed_reply_does_not_raise(self, conversation_engine, mock_dispatcher):
        mock_dispatcher.send.side_effect = DispatchError("network down")

        await conversation_engine.handle(command("help"))

        assert mock_dispatcher.send.await_count == 2
