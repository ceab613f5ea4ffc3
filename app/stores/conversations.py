"""SQLAlchemy-backed conversation state store with compare-and-set writes."""

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import AsyncSessionLocal
from app.core.logging import get_logger
from app.models.conversation import ConversationState, ConversationStep
from app.stores.base import ConversationSnapshot, ConversationStore

logger = get_logger(__name__)


class SQLConversationStore(ConversationStore):
    """Conversation states in the `conversation_states` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or AsyncSessionLocal

    async def get_state(self, user_id: str) -> ConversationSnapshot | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ConversationState).where(ConversationState.telegram_user_id == user_id)
            )
            row = result.scalar_one_or_none()

        if row is None:
            return None
        return ConversationSnapshot(step=row.step, payload=dict(row.payload or {}))

    async def set_state(
        self,
        user_id: str,
        step: ConversationStep,
        payload: dict[str, Any] | None = None,
        expected_step: ConversationStep | None = None,
    ) -> bool:
        payload = dict(payload or {})

        async with self._session_factory() as db:
            stmt = (
                update(ConversationState)
                .where(ConversationState.telegram_user_id == user_id)
                .values(step=step, payload=payload)
            )
            if expected_step is not None:
                stmt = stmt.where(ConversationState.step == expected_step)

            result = await db.execute(stmt)
            if result.rowcount:
                await db.commit()
                return True

            # Nothing updated: either there is no row yet, or the step moved on
            exists = await db.execute(
                select(ConversationState.telegram_user_id).where(
                    ConversationState.telegram_user_id == user_id
                )
            )
            if exists.scalar_one_or_none() is not None:
                await db.rollback()
                logger.bind(
                    user_id=user_id,
                    expected_step=expected_step.value if expected_step else None,
                    next_step=step.value,
                ).info("conversation_step_mismatch")
                return False

            if expected_step not in (None, ConversationStep.IDLE):
                await db.rollback()
                return False

            db.add(ConversationState(telegram_user_id=user_id, step=step, payload=payload))
            try:
                await db.commit()
            except IntegrityError:
                # Another request created the row first
                await db.rollback()
                if expected_step is None:
                    return await self.set_state(user_id, step, payload)
                logger.bind(user_id=user_id, next_step=step.value).info(
                    "conversation_step_mismatch"
                )
                return False

        return True
