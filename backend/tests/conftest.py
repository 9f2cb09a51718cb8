"""Shared fixtures for the magic login test suite.

In-memory components are the default. Tests that need PostgreSQL use the
``db_session_factory`` fixture, which skips when no server is listening on
port 5432.
"""

import socket
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from magic_login.core.config import Settings
from magic_login.core.hooks import Hooks
from magic_login.main import create_app
from magic_login.models.base import Base
from magic_login.services.components import MagicLoginComponents, build_components
from magic_login.services.login_attempt_log import LoginAttemptLog
from magic_login.services.token_manager import TokenManager
from magic_login.services.token_store import InMemoryTokenStore

# Security: test-only secrets. Production values come from the environment.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105
TEST_INTERNAL_API_KEY = "test-internal-api-key"  # nosec B105

# httpx's ASGI client talks to this host; it is also the canonical site
SITE_URL = "http://testserver"

TEST_USER_ID = 42
TEST_EMAIL = "reader@example.com"

INITIAL_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


class FrozenClock:
    """Controllable UTC clock for expiry tests."""

    def __init__(self, now: datetime = INITIAL_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_settings(**overrides: object) -> Settings:
    """Settings for tests, isolated from any local .env file."""
    values: dict[str, object] = {
        "site_url": SITE_URL,
        "auth_secret": SecretStr(TEST_AUTH_SECRET),
        "auth_cookie_secure": False,
        "internal_api_key": SecretStr(TEST_INTERNAL_API_KEY),
        "logging_enabled": True,
        "cleanup_worker_enabled": False,
        "rate_limit_enabled": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # type: ignore[arg-type]


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections on port 5432."""
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(("127.0.0.1", 5432))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available."""
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Start database with: docker compose up -d"
        )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def hooks() -> Hooks:
    return Hooks()


@pytest.fixture
def store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
def manager(store: InMemoryTokenStore, hooks: Hooks, clock: FrozenClock) -> TokenManager:
    return TokenManager(store, hooks=hooks, clock=clock)


@pytest.fixture
def attempt_log(hooks: Hooks, clock: FrozenClock) -> LoginAttemptLog:
    return LoginAttemptLog(enabled=True, hooks=hooks, clock=clock)


@pytest.fixture
def components(
    test_settings: Settings,
    store: InMemoryTokenStore,
    hooks: Hooks,
    clock: FrozenClock,
) -> MagicLoginComponents:
    return build_components(test_settings, store=store, hooks=hooks, clock=clock)


@pytest.fixture
def app(components: MagicLoginComponents):
    """Create test application instance around the in-memory components."""
    return create_app(components=components)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the test application."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=SITE_URL) as ac:
        yield ac


@pytest_asyncio.fixture
async def db_session_factory() -> AsyncGenerator[
    async_sessionmaker[AsyncSession], None
]:
    """Session factory for a freshly created test schema.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    db_settings = make_settings(database_name="magic_login_test")
    engine = create_async_engine(db_settings.database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()
