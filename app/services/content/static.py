"""Static provider - template text when no generator is reachable."""

from datetime import date

from .base import ContentGenerationError, ContentMode, ContentProvider


class StaticContentProvider(ContentProvider):
    """
    Fills a configured template per mode.

    Used as the last link of the fallback chain so subscribers still get a
    short note when the content service is down.
    """

    provider_name = "static"

    def __init__(self, templates: dict[str, str]) -> None:
        self._templates = templates

    async def generate(self, target_date: date, timezone: str, mode: ContentMode) -> str:
        template = self._templates.get(mode.value)
        if not template:
            raise ContentGenerationError(f"No static template for mode {mode.value}")
        return template.format(date=target_date.isoformat(), timezone=timezone)
