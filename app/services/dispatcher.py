"""Message dispatcher contract: deliver text to a user's chat."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


class DispatchError(Exception):
    """Delivery to the user's channel failed."""


@dataclass
class SendOptions:
    """Optional rendering hints passed through to the transport."""

    reply_markup: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class MessageDispatcher(ABC):
    """Sends a text message to a chat/channel id."""

    @abstractmethod
    async def send(self, chat_id: str, text: str, options: SendOptions | None = None) -> None:
        """
        Deliver a message.

        Raises:
            DispatchError: The transport rejected or failed the request
        """
        pass
