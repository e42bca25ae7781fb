"""
Pytest fixtures for mediasync testing infrastructure.

This module provides:
1. Test environment settings
2. A fake trigger backend so scheduler tests fire CRON triggers by hand
3. An in-memory credential store and a SQLite-backed session factory
4. A fake clock/sleep pair for rate limiter tests
"""

import asyncio
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mediasync.config import get_settings
from mediasync.core.security import CredentialVault
from mediasync.models.orm import Base
from mediasync.models.tokens import ClientCredentials, OAuthTokenPair
from mediasync.scheduler.cron import CronSchedule

TEST_ENCRYPTION_KEY = "test-encryption-key-for-testing-must-be-32-chars"


# ==================== SESSION FIXTURES ====================

@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables once per session."""
    os.environ["MEDIASYNC_ENVIRONMENT"] = "testing"
    os.environ["MEDIASYNC_ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
    os.environ["MEDIASYNC_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ==================== SCHEDULER FIXTURES ====================

class FakeTriggerHandle:
    """Trigger handle that records pause/resume/remove calls."""

    def __init__(self, name: str, schedule: str, callback):
        self.name = name
        self.schedule = schedule
        self.callback = callback
        self.paused = False
        self.removed = False

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def remove(self) -> None:
        self.removed = True


class FakeTriggerBackend:
    """TriggerBackend whose triggers only fire when a test calls fire()."""

    def __init__(self):
        self.handles: dict[str, FakeTriggerHandle] = {}
        self.started = False

    def add(self, name: str, schedule: CronSchedule, callback) -> FakeTriggerHandle:
        handle = FakeTriggerHandle(name, schedule, callback)
        self.handles[name] = handle
        return handle

    def start(self) -> None:
        self.started = True

    def shutdown(self) -> None:
        self.started = False

    async def fire(self, name: str) -> bool:
        """Fire a job's trigger like a CRON tick would. Returns False if it could not fire."""
        handle = self.handles.get(name)
        if handle is None or handle.paused or handle.removed or not self.started:
            return False
        await handle.callback()
        return True


@pytest.fixture
def trigger_backend() -> FakeTriggerBackend:
    return FakeTriggerBackend()


# ==================== CLOCK FIXTURES ====================

class FakeClock:
    """Monotonic clock that only advances when sleep() is awaited."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        # Yield so other tasks can interleave like a real sleep
        await asyncio.sleep(0)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# ==================== CREDENTIAL FIXTURES ====================

class InMemoryCredentialStore:
    """CredentialStore backed by a dict, counting reads and writes."""

    def __init__(self, tokens: dict[str, OAuthTokenPair] | None = None):
        self.tokens: dict[str, OAuthTokenPair] = dict(tokens or {})
        self.reads = 0
        self.saves: list[tuple[str, OAuthTokenPair]] = []

    async def get_tokens(self, integration: str) -> OAuthTokenPair | None:
        self.reads += 1
        return self.tokens.get(integration)

    async def save_tokens(self, integration: str, tokens: OAuthTokenPair) -> None:
        self.saves.append((integration, tokens))
        self.tokens[integration] = tokens


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def client_credentials() -> ClientCredentials:
    return ClientCredentials(
        client_id="client-id-123",
        client_secret="client-secret-456",
        redirect_uri="http://localhost:3000/api/v1/auth/trakt/callback",
        token_url="https://api.trakt.example/oauth/token",
    )


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(TEST_ENCRYPTION_KEY)


# ==================== DATABASE FIXTURES ====================

@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory bound to a fresh in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
