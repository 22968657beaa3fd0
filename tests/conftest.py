"""
Test fixtures using async SQLite for fast, isolated tests.
No PostgreSQL required for unit tests.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from keypool.config import PoolConfig
from keypool.credentials.models import Credential
from keypool.credentials.service import register_credential
from keypool.db.base import Base
from keypool.pool.manager import CredentialPool


class FakeClock:
    """Settable stand-in for utcnow() so cool-downs can elapse instantly."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest_asyncio.fixture
async def session_factory():
    """A fresh in-memory SQLite database per test, shared by every session."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def pool_config() -> PoolConfig:
    return PoolConfig()


@pytest.fixture
def pool(session_factory, pool_config, clock) -> CredentialPool:
    return CredentialPool(session_factory, pool_config, clock=clock)


@pytest.fixture
def add_key(session_factory):
    """Register a key in its own committed transaction; returns its id."""

    async def _add_key(
        service_name: str = "gemini",
        key_name: str | None = None,
        secret: str | None = None,
        usage_limit: int | None = None,
        priority: int = 0,
    ) -> uuid.UUID:
        async with session_factory() as session:
            async with session.begin():
                cred = await register_credential(
                    session,
                    service_name=service_name,
                    key_name=key_name or f"key-{uuid.uuid4().hex[:6]}",
                    plaintext_secret=secret or f"AIza-{uuid.uuid4().hex}",
                    usage_limit=usage_limit,
                    priority=priority,
                )
            return cred.id

    return _add_key


@pytest.fixture
def load(session_factory):
    """Read a credential's current row through a fresh session."""

    async def _load(credential_id: uuid.UUID) -> Credential:
        async with session_factory() as session:
            return await session.get(Credential, credential_id)

    return _load
