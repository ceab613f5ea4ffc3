"""Abstract store contracts used by the scheduler and the conversation engine.

The core only depends on these interfaces. The SQLAlchemy implementations
live next to this module; tests run them against in-memory SQLite.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from app.models.conversation import ConversationStep
from app.models.delivery_log import DeliveryLog, DeliverySlot, DeliveryStatus
from app.models.subscriber import Subscriber


@dataclass
class SubscriberProfile:
    """Values written by an onboarding commit."""

    telegram_user_id: str
    telegram_chat_id: str
    timezone: str
    morning_time: str
    evening_time: str
    lat: float | None = None
    lon: float | None = None


@dataclass
class ConversationSnapshot:
    """Current step and payload of a user's conversation."""

    step: ConversationStep
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReservationResult:
    """Outcome of a ledger reservation attempt."""

    reserved: bool
    entry_id: uuid.UUID | None = None


class SubscriberStore(ABC):
    """Per-user profile storage keyed by the external Telegram user id."""

    @abstractmethod
    async def find_by_id(self, user_id: str) -> Subscriber | None:
        pass

    @abstractmethod
    async def upsert(self, profile: SubscriberProfile) -> Subscriber:
        """Create or update a profile with both slot times and activate it."""
        pass

    @abstractmethod
    async def set_active(self, user_id: str, active: bool) -> bool:
        """Flip the active flag. Returns False if no profile exists."""
        pass

    @abstractmethod
    async def update_morning_time(self, user_id: str, value: str) -> bool:
        pass

    @abstractmethod
    async def update_evening_time(self, user_id: str, value: str) -> bool:
        pass

    @abstractmethod
    async def list_active_eligible(self) -> list[Subscriber]:
        """Active subscribers with at least one slot time configured."""
        pass

    @abstractmethod
    async def save_timezone(self, user_id: str, chat_id: str, timezone: str) -> Subscriber:
        """Store a timezone, creating a profile without slot times if needed."""
        pass

    @abstractmethod
    async def save_location(
        self,
        user_id: str,
        chat_id: str,
        lat: float,
        lon: float,
        timezone: str,
    ) -> Subscriber:
        """Store coordinates and their timezone, creating a profile if needed."""
        pass


class ConversationStore(ABC):
    """One conversation state record per user.

    Writes accept an optional `expected_step`. When given, the write only
    applies if the stored step still matches (a missing record counts as
    IDLE) and the method returns False otherwise.
    """

    @abstractmethod
    async def get_state(self, user_id: str) -> ConversationSnapshot | None:
        pass

    @abstractmethod
    async def set_state(
        self,
        user_id: str,
        step: ConversationStep,
        payload: dict[str, Any] | None = None,
        expected_step: ConversationStep | None = None,
    ) -> bool:
        pass

    async def clear_state(
        self,
        user_id: str,
        expected_step: ConversationStep | None = None,
    ) -> bool:
        """Reset to IDLE with an empty payload."""
        return await self.set_state(user_id, ConversationStep.IDLE, {}, expected_step)


class DeliveryLedger(ABC):
    """Reservation ledger giving at-most-once delivery per subscriber/slot/date."""

    @abstractmethod
    async def reserve(
        self,
        subscriber_id: uuid.UUID,
        slot: DeliverySlot,
        target_date: date,
    ) -> ReservationResult:
        pass

    @abstractmethod
    async def mark_status(
        self,
        entry_id: uuid.UUID,
        status: DeliveryStatus,
        error: str | None = None,
    ) -> bool:
        """Single terminal write for a reserved entry."""
        pass

    @abstractmethod
    async def list_entries(
        self,
        status: DeliveryStatus | None = None,
        target_date: date | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DeliveryLog]:
        pass
