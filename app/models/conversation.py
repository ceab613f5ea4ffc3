"""Per-user conversation state for guided input flows."""

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import Enum, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class ConversationStep(str, enum.Enum):
    """Position of a user within a guided input flow."""

    IDLE = "IDLE"
    WAITING_LOCATION = "WAITING_LOCATION"
    WAITING_MORNING_TIME = "WAITING_MORNING_TIME"
    WAITING_EVENING_TIME = "WAITING_EVENING_TIME"
    WAITING_UPDATE_MORNING_TIME = "WAITING_UPDATE_MORNING_TIME"
    WAITING_UPDATE_EVENING_TIME = "WAITING_UPDATE_EVENING_TIME"


class ConversationState(Base):
    """One row per user: current step plus the payload carried between steps."""

    __tablename__ = "conversation_states"

    telegram_user_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    step: Mapped[ConversationStep] = mapped_column(
        Enum(ConversationStep, name="conversation_step", native_enum=False, length=40),
        default=ConversationStep.IDLE,
    )
    payload: Mapped[dict[str, Any]] = mapped_column(default=dict)
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<ConversationState {self.telegram_user_id}:{self.step.value}>"
