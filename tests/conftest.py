"""
Pytest configuration and fixtures for Moonday tests.

Provides:
- Async test database with SQLite
- SQL-backed stores bound to the test database
- Test client for API testing
- Factory fixtures for creating test data
- Mock collaborators (dispatcher, content provider, timezone lookup)
"""

import uuid
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import Settings, get_settings
from app.conversation.engine import ConversationEngine
from app.conversation.telegram_adapter import get_update_handler, reset_update_handler
from app.core.database import get_db
from app.dependencies import get_delivery_ledger
from app.main import app
from app.models import Base, Subscriber
from app.services.content import ContentProvider, reset_content_provider
from app.services.dispatcher import MessageDispatcher
from app.services.timezone_lookup import TimezoneLookup
from app.stores.base import SubscriberProfile
from app.stores.conversations import SQLConversationStore
from app.stores.delivery_ledger import SQLDeliveryLedger
from app.stores.subscribers import SQLSubscriberStore

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

DEFAULT_TIMEZONE = "Europe/Amsterdam"


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    telegram_bot_token: str = "test-token"
    telegram_webhook_secret: str = ""
    telegram_webhook_token: str = ""
    default_timezone: str = DEFAULT_TIMEZONE
    scheduler_enabled: bool = False


@pytest.fixture(autouse=True)
def reset_singletons():
    """Drop process-wide service instances between tests."""
    yield
    reset_content_provider()
    reset_update_handler()


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine, as the stores expect."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def subscriber_store(session_factory) -> SQLSubscriberStore:
    return SQLSubscriberStore(session_factory)


@pytest_asyncio.fixture
async def conversation_store(session_factory) -> SQLConversationStore:
    return SQLConversationStore(session_factory)


@pytest_asyncio.fixture
async def delivery_ledger(session_factory) -> SQLDeliveryLedger:
    return SQLDeliveryLedger(session_factory)


@pytest.fixture
def update_handler_mock() -> AsyncMock:
    """Stand-in for the webhook's update handler."""
    handler = AsyncMock()
    handler.process_update.return_value = True
    return handler


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    delivery_ledger: SQLDeliveryLedger,
    update_handler_mock: AsyncMock,
) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database and collaborator overrides."""

    async def override_get_db():
        yield db_session

    def override_get_settings():
        return TestSettings()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = override_get_settings
    app.dependency_overrides[get_delivery_ledger] = lambda: delivery_ledger
    app.dependency_overrides[get_update_handler] = lambda: update_handler_mock

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def subscriber_factory(subscriber_store: SQLSubscriberStore):
    """Factory for creating onboarded subscribers."""

    async def _create_subscriber(
        user_id: str | None = None,
        timezone: str = "Europe/Paris",
        morning_time: str = "08:00",
        evening_time: str = "21:00",
        is_active: bool = True,
    ) -> Subscriber:
        if user_id is None:
            user_id = str(uuid.uuid4().int % 10**9)

        subscriber = await subscriber_store.upsert(
            SubscriberProfile(
                telegram_user_id=user_id,
                telegram_chat_id=user_id,
                timezone=timezone,
                morning_time=morning_time,
                evening_time=evening_time,
            )
        )
        if not is_active:
            await subscriber_store.set_active(user_id, False)
            subscriber.is_active = False
        return subscriber

    return _create_subscriber


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_dispatcher() -> AsyncMock:
    """Dispatcher that records every send."""
    return AsyncMock(spec=MessageDispatcher)


@pytest.fixture
def mock_content_provider() -> AsyncMock:
    """Content provider returning a fixed note."""
    provider = AsyncMock(spec=ContentProvider)
    provider.generate.return_value = "Your note"
    return provider


@pytest.fixture
def mock_timezone_lookup() -> AsyncMock:
    """Timezone lookup that resolves every coordinate to Europe/Berlin."""
    lookup = AsyncMock(spec=TimezoneLookup)
    lookup.lookup.return_value = "Europe/Berlin"
    return lookup


@pytest.fixture
def conversation_engine(
    subscriber_store,
    conversation_store,
    mock_content_provider,
    mock_dispatcher,
    mock_timezone_lookup,
) -> ConversationEngine:
    """Engine wired to the SQLite stores and mock collaborators."""
    return ConversationEngine(
        subscribers=subscriber_store,
        conversations=conversation_store,
        content_provider=mock_content_provider,
        dispatcher=mock_dispatcher,
        timezone_lookup=mock_timezone_lookup,
        default_timezone=DEFAULT_TIMEZONE,
    )
