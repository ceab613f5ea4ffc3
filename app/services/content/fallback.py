"""Fallback chain - tries providers in order until one yields text."""

from datetime import date

from app.core.logging import get_logger

from .base import ContentGenerationError, ContentMode, ContentProvider, ContentRateLimitError

logger = get_logger(__name__)


class FallbackContentProvider(ContentProvider):
    """
    Wraps several providers behind one ContentProvider.

    Callers see one call that either succeeds or raises. A rate limit from
    any provider is re-raised at once without trying the rest, so callers can
    answer "try again later" instead of sending filler. If every provider
    fails otherwise, the last error is re-raised unchanged.
    """

    def __init__(self, providers: list[ContentProvider]) -> None:
        if not providers:
            raise ValueError("FallbackContentProvider needs at least one provider")
        self._providers = providers

    @property
    def provider_name(self) -> str:  # type: ignore[override]
        return "fallback:" + ",".join(p.provider_name for p in self._providers)

    async def generate(self, target_date: date, timezone: str, mode: ContentMode) -> str:
        last_error: ContentGenerationError | None = None

        for provider in self._providers:
            try:
                return await provider.generate(target_date, timezone, mode)
            except ContentRateLimitError:
                logger.bind(
                    provider=provider.provider_name,
                    target_date=target_date.isoformat(),
                ).warning("content_provider_rate_limited")
                raise
            except ContentGenerationError as e:
                last_error = e
                logger.bind(
                    provider=provider.provider_name,
                    error=str(e),
                    target_date=target_date.isoformat(),
                ).warning("content_provider_failed")

        assert last_error is not None
        raise last_error
