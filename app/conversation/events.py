"""Inbound events the conversation engine understands.

The transport adapter turns raw updates into one of these; the engine never
sees transport payloads.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class CommandEvent:
    """A slash command, e.g. `/settimezone Europe/Berlin`."""

    user_id: str
    chat_id: str
    name: str
    argument: str = ""

    @property
    def text(self) -> str:
        """The command as the user typed it."""
        return f"/{self.name} {self.argument}".strip()


@dataclass(frozen=True)
class TextEvent:
    user_id: str
    chat_id: str
    text: str


@dataclass(frozen=True)
class ButtonEvent:
    """An inline button press carrying one of the tokens in keyboards.py."""

    user_id: str
    chat_id: str
    token: str


@dataclass(frozen=True)
class LocationEvent:
    user_id: str
    chat_id: str
    lat: float
    lon: float


InboundEvent = CommandEvent | TextEvent | ButtonEvent | LocationEvent
