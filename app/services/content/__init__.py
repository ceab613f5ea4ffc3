"""Notification content providers behind a single capability."""

from app.config import get_config

from .base import ContentGenerationError, ContentMode, ContentProvider, ContentRateLimitError
from .fallback import FallbackContentProvider
from .http import HTTPContentProvider
from .static import StaticContentProvider

__all__ = [
    "ContentGenerationError",
    "ContentMode",
    "ContentProvider",
    "ContentRateLimitError",
    "FallbackContentProvider",
    "HTTPContentProvider",
    "StaticContentProvider",
    "get_content_provider",
    "reset_content_provider",
]

_provider_instance: ContentProvider | None = None


def get_content_provider() -> ContentProvider:
    """
    Get the configured content provider.

    The HTTP service is used first when configured; the static templates
    from config.yml are always the last resort.
    """
    global _provider_instance
    if _provider_instance is not None:
        return _provider_instance

    config = get_config()
    settings = config.settings

    providers: list[ContentProvider] = []
    if settings.content_service_url:
        providers.append(
            HTTPContentProvider(
                url=settings.content_service_url,
                token=settings.content_service_token,
                timeout_seconds=config.content.request_timeout_seconds,
            )
        )
    providers.append(StaticContentProvider(config.content.fallback_text))

    _provider_instance = FallbackContentProvider(providers)
    return _provider_instance


def reset_content_provider() -> None:
    """Reset the provider instance. Useful for testing."""
    global _provider_instance
    _provider_instance = None
