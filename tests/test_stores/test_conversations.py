"""Tests for the SQL conversation store."""

import pytest

from app.models.conversation import ConversationStep

pytestmark = pytest.mark.asyncio

USER = "1001"


class TestGetState:
    async def test_missing_state_is_none(self, conversation_store):
        assert await conversation_store.get_state(USER) is None

    async def test_roundtrip_payload(self, conversation_store):
        await conversation_store.set_state(
            USER, ConversationStep.WAITING_EVENING_TIME, {"morning_time": "07:30"}
        )

        state = await conversation_store.get_state(USER)

        assert state.step == ConversationStep.WAITING_EVENING_TIME
        assert state.payload == {"morning_time": "07:30"}


class TestSetState:
    """Tests for compare-and-set semantics."""

    async def test_unconditional_write_creates_row(self, conversation_store):
        changed = await conversation_store.set_state(USER, ConversationStep.WAITING_LOCATION)

        assert changed is True
        state = await conversation_store.get_state(USER)
        assert state.step == ConversationStep.WAITING_LOCATION
        assert state.payload == {}

    async def test_missing_row_counts_as_idle(self, conversation_store):
        """Expecting IDLE on a fresh user should succeed."""
        changed = await conversation_store.set_state(
            USER,
            ConversationStep.WAITING_LOCATION,
            {"source": "join"},
            expected_step=ConversationStep.IDLE,
        )

        assert changed is True

    async def test_missing_row_does_not_match_other_steps(self, conversation_store):
        changed = await conversation_store.set_state(
            USER,
            ConversationStep.WAITING_EVENING_TIME,
            expected_step=ConversationStep.WAITING_MORNING_TIME,
        )

        assert changed is False
        assert await conversation_store.get_state(USER) is None

    async def test_expected_step_matches(self, conversation_store):
        await conversation_store.set_state(USER, ConversationStep.WAITING_MORNING_TIME)

        changed = await conversation_store.set_state(
            USER,
            ConversationStep.WAITING_EVENING_TIME,
            {"morning_time": "08:00"},
            expected_step=ConversationStep.WAITING_MORNING_TIME,
        )

        assert changed is True
        state = await conversation_store.get_state(USER)
        assert state.step == ConversationStep.WAITING_EVENING_TIME

    async def test_double_submit_is_rejected(self, conversation_store):
        """The second of two identical transitions finds the step already moved."""
        await conversation_store.set_state(USER, ConversationStep.WAITING_MORNING_TIME)

        first = await conversation_store.set_state(
            USER,
            ConversationStep.WAITING_EVENING_TIME,
            {"morning_time": "08:00"},
            expected_step=ConversationStep.WAITING_MORNING_TIME,
        )
        second = await conversation_store.set_state(
            USER,
            ConversationStep.WAITING_EVENING_TIME,
            {"morning_time": "09:00"},
            expected_step=ConversationStep.WAITING_MORNING_TIME,
        )

        assert first is True
        assert second is False
        state = await conversation_store.get_state(USER)
        assert state.payload == {"morning_time": "08:00"}

    async def test_new_step_replaces_payload(self, conversation_store):
        await conversation_store.set_state(
            USER, ConversationStep.WAITING_MORNING_TIME, {"timezone": "Asia/Tokyo"}
        )
        await conversation_store.set_state(USER, ConversationStep.WAITING_UPDATE_MORNING_TIME, {})

        state = await conversation_store.get_state(USER)
        assert state.payload == {}


class TestClearState:
    async def test_clear_resets_to_idle(self, conversation_store):
        await conversation_store.set_state(
            USER, ConversationStep.WAITING_EVENING_TIME, {"morning_time": "08:00"}
        )

        assert await conversation_store.clear_state(USER) is True

        state = await conversation_store.get_state(USER)
        assert state.step == ConversationStep.IDLE
        assert state.payload == {}

    async def test_conditional_clear(self, conversation_store):
        await conversation_store.set_state(USER, ConversationStep.WAITING_LOCATION)

        wrong = await conversation_store.clear_state(
            USER, expected_step=ConversationStep.WAITING_EVENING_TIME
        )
        right = await conversation_store.clear_state(
            USER, expected_step=ConversationStep.WAITING_LOCATION
        )

        assert wrong is False
        assert right is True
