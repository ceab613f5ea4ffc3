"""Abstract base class and errors for notification content providers."""

import enum
from abc import ABC, abstractmethod
from datetime import date


class ContentMode(str, enum.Enum):
    """Whether a message is about the recipient's local today or tomorrow."""

    TODAY = "TODAY"
    TOMORROW = "TOMORROW"


class ContentGenerationError(Exception):
    """Content could not be produced (transient or permanent)."""


class ContentRateLimitError(ContentGenerationError):
    """The upstream generator is rate limited; the caller should try later."""


class ContentProvider(ABC):
    """Produces the finished message body for a date in a timezone."""

    provider_name: str = "unknown"

    @abstractmethod
    async def generate(self, target_date: date, timezone: str, mode: ContentMode) -> str:
        """
        Build the message text.

        Args:
            target_date: Local calendar date the message is about
            timezone: IANA timezone of the recipient
            mode: TODAY for the morning note, TOMORROW for the evening look-ahead

        Returns:
            Message body ready to send

        Raises:
            ContentRateLimitError: Upstream rate limit
            ContentGenerationError: Any other failure
        """
        pass
