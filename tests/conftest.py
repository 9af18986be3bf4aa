"""
Shared test configuration and fixtures for CRM tests.

Every test gets its own SQLite database file, so tests never see each other's rows. The schema
is created from the model metadata; migrations are not exercised here.
"""

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from social.graze.crm.app.config import Settings
from social.graze.crm.app.handlers.helpers import bearer_resolver_factory
from social.graze.crm.app.metrics import NoOpMetricsClient
from social.graze.crm.app.server import start_web_server
from social.graze.crm.crm.admin import provision_user
from social.graze.crm.crm.identity import PlatformIdentityResolver
from social.graze.crm.mcp.dispatcher import Dispatcher
from social.graze.crm.model.base import Base
import social.graze.crm.model.crm  # noqa: F401
import social.graze.crm.model.ephemeral  # noqa: F401

from tests.test_helpers import (
    ADMIN_EMAIL,
    AUTH_APP_URL,
    BASE_URL,
    MEMBER_EMAIL,
    OUTSIDER_EMAIL,
    TickingClock,
)


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'crm.db'}"


@pytest_asyncio.fixture(scope="function")
async def engine(database_url):
    """Create an async SQLAlchemy engine with every table created."""
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(session_maker):
    """Create async database session for testing."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock(datetime(2025, 6, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def encryption_key() -> Fernet:
    return Fernet(Fernet.generate_key())


@pytest.fixture
def settings(database_url, encryption_key) -> Settings:
    return Settings(
        base_url=BASE_URL,
        auth_app_url=AUTH_APP_URL,
        expected_audience="convex",
        pg_dsn=database_url,
        encryption_key=encryption_key,
        metrics_backend="none",
        sentry_dsn=None,
    )


async def provision(session_maker, email: str, name: str, clock=None):
    async with session_maker() as session:
        async with session.begin():
            if clock is None:
                return await provision_user(session, email, name)
            return await provision_user(session, email, name, clock=clock)


@pytest_asyncio.fixture
async def admin_user(session_maker, clock):
    """The admin of a freshly provisioned tenant."""
    return await provision(session_maker, ADMIN_EMAIL, "Ada Admin", clock)


@pytest.fixture
def dispatcher(session_maker, settings, clock) -> Dispatcher:
    return Dispatcher(
        session_maker,
        bearer_resolver_factory(settings),
        NoOpMetricsClient(),
        settings.resource_metadata_url,
        clock=clock,
    )


@pytest.fixture
def call(dispatcher, admin_user):
    """
    Invoke a tool the way the MCP endpoint does, as the user with the given email.

    Defaults to the tenant admin.
    """

    async def call_tool(name, arguments=None, email=ADMIN_EMAIL):
        return await dispatcher.call_tool_as(
            name, arguments or {}, PlatformIdentityResolver(email)
        )

    return call_tool


@pytest_asyncio.fixture
async def member_user(call, session_maker):
    """An active member of the admin's tenant."""
    await call("invite_user", {"email": MEMBER_EMAIL, "name": "Grace Member"})
    return await provision(session_maker, MEMBER_EMAIL, "Grace Member")


@pytest_asyncio.fixture
async def client(settings, engine):
    """An aiohttp test client for the full application, sharing the test database."""
    app = await start_web_server(settings)
    async with TestClient(TestServer(app)) as client:
        yield client


@pytest_asyncio.fixture
async def outsider_user(session_maker):
    """The admin of a second, unrelated tenant."""
    return await provision(session_maker, OUTSIDER_EMAIL, "Otto Outsider")
