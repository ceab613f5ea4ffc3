from app.models.base import Base
from app.models.conversation import ConversationState, ConversationStep
from app.models.delivery_log import DeliveryLog, DeliverySlot, DeliveryStatus
from app.models.job_run import JobRun
from app.models.subscriber import Subscriber

__all__ = [
    "Base",
    "Subscriber",
    "ConversationState",
    "ConversationStep",
    "DeliveryLog",
    "DeliverySlot",
    "DeliveryStatus",
    "JobRun",
]
