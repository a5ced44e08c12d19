"""
Pytest configuration and shared fixtures.
"""

import asyncio
import inspect
import os
import random
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import CollectorRegistry
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from webhook_queue.api.auth import create_access_token
from webhook_queue.api.main import create_app
from webhook_queue.config import Settings
from webhook_queue.db.connection import create_session_factory, get_test_engine
from webhook_queue.db.models import Base, WebhookJob
from webhook_queue.observability.metrics import MetricsCollector
from webhook_queue.queue.locks import LocalAdvisoryLock
from webhook_queue.queue.service import WebhookQueue


async def _wait_until(
    predicate: Callable[[], Any],
    timeout: float = 5.0,
    interval: float = 0.02,
) -> None:
    """Poll ``predicate`` (sync or async) until it returns a truthy value."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        if result:
            return
        if loop.time() > deadline:
            raise AssertionError(f"Condition not met within {timeout}s")
        await asyncio.sleep(interval)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Create test settings with short delays."""
    return Settings(
        database_url=os.getenv(
            "TEST_DATABASE_URL",
            f"sqlite+aiosqlite:///{tmp_path / 'webhooks.db'}",
        ),
        api_secret_key="test-secret-key",
        log_level="DEBUG",
        log_format="console",
        webhook_max_retries=3,
        webhook_base_delay_ms=10,
        webhook_max_delay_ms=50,
        webhook_max_batch=5,
        webhook_pending_cooldown_ms=10,
        webhook_pending_max_cooldown_ms=50,
        webhook_max_recursive_depth=100,
        webhook_sweep_interval_seconds=0,
    )


@pytest_asyncio.fixture
async def async_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test engine with a fresh schema (file-backed SQLite unless TEST_DATABASE_URL is set)."""
    engine = get_test_engine(test_settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector(CollectorRegistry())


@pytest.fixture
def advisory_lock() -> LocalAdvisoryLock:
    return LocalAdvisoryLock()


@pytest_asyncio.fixture
async def webhook_queue(
    session_factory: async_sessionmaker[AsyncSession],
    advisory_lock: LocalAdvisoryLock,
    test_settings: Settings,
    metrics: MetricsCollector,
) -> AsyncGenerator[WebhookQueue]:
    """Create a queue against the test database."""
    queue = WebhookQueue(
        session_factory=session_factory,
        lock=advisory_lock,
        settings=test_settings,
        metrics=metrics,
        rng=random.Random(42),
    )

    yield queue

    await queue.close()


@pytest.fixture
def get_jobs(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[list[WebhookJob]]]:
    """Load jobs straight from the database, oldest first."""

    async def _get_jobs(tenant_id: str | None = None) -> list[WebhookJob]:
        stmt = select(WebhookJob).order_by(WebhookJob.id.asc())
        if tenant_id is not None:
            stmt = stmt.where(WebhookJob.tenant_id == tenant_id)
        async with session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    return _get_jobs


@pytest.fixture
def app(webhook_queue: WebhookQueue) -> FastAPI:
    """Create a FastAPI app serving the test queue."""
    return create_app(webhook_queue=webhook_queue)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def test_tenant_id() -> str:
    """Generate a test tenant ID."""
    return f"test-tenant-{uuid4().hex[:8]}.myshopify.com"


@pytest.fixture
def auth_headers(test_tenant_id: str) -> dict[str, str]:
    """Create authentication headers for testing."""
    token = create_access_token(tenant_id=test_tenant_id)
    return {
        "Authorization": f"Bearer {token}",
    }


@pytest.fixture
def sample_payload() -> dict[str, Any]:
    """Create a sample webhook payload."""
    return {
        "id": 820982911946154508,
        "email": "jon@example.com",
        "line_items": [{"sku": "IPOD2008PINK", "quantity": 1}],
    }


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a condition until it holds or the timeout expires."""
    return _wait_until
