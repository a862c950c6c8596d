"""Root conftest for engine, repository and API tests.

Provides:
- In-memory SQLite database (replaces production engine)
- httpx AsyncClient against the FastAPI app with mocked Temporal
- In-memory engine collaborators (tests/fakes.py) and a fixed clock
"""

from __future__ import annotations

import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "onboarding-test-logs"))
os.environ.setdefault("SEED_DEFAULT_TEMPLATES", "false")
os.environ.setdefault("AUTOMATION_ENABLED", "false")

from datetime import date, datetime, timezone  # noqa: E402
from typing import AsyncGenerator  # noqa: E402
from unittest.mock import AsyncMock, MagicMock, patch  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.database as db_module  # noqa: E402
from app.database import Base  # noqa: E402

# Import all ORM models so they register with Base.metadata
import app.models.db  # noqa: E402, F401

from onboarding.catalog import DEFAULT_AUTOMATION_RULES  # noqa: E402
from onboarding.models import HireProfile, TaskTemplate, WorkflowTemplate  # noqa: E402

from tests.fakes import EngineHarness, FixedClock  # noqa: E402


# ---------------------------------------------------------------------------
# Engine fixtures (no database)
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def harness(clock: FixedClock) -> EngineHarness:
    """Service, lifecycle and automation wired to in-memory collaborators."""
    return EngineHarness(clock=clock)


@pytest.fixture
def engineer() -> HireProfile:
    return HireProfile(
        id="hire-eng", name="Ada Lovelace", role="staff", department="Engineering",
        start_date=date(2024, 1, 1), manager_id="mgr-1",
    )


@pytest.fixture
def chain_template() -> WorkflowTemplate:
    """Four tasks: t3 depends on t1, t4 on t2 and t3."""
    return WorkflowTemplate(
        id="chain",
        name="Chain Onboarding",
        tasks=[
            TaskTemplate(id="t1", title="Paperwork", category="documentation", days_from_start=0),
            TaskTemplate(id="t2", title="Laptop", category="setup", days_from_start=1),
            TaskTemplate(id="t3", title="Security Briefing", category="meeting",
                         days_from_start=5, dependencies=["t1"]),
            TaskTemplate(id="t4", title="First Project", days_from_start=10,
                         dependencies=["t2", "t3"]),
        ],
    )


# ---------------------------------------------------------------------------
# In-memory async SQLite engine (StaticPool shares one connection)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite engine per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def test_session(test_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Per-test database session with automatic rollback."""
    factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )
    async with factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def _reset_process_state():
    """Rule toggles and hire locks are process-wide; restore them per test."""
    import app.dependencies as deps

    deps._rules[:] = list(DEFAULT_AUTOMATION_RULES)
    deps._locks.discard_idle()
    yield
    deps._rules[:] = list(DEFAULT_AUTOMATION_RULES)


# ---------------------------------------------------------------------------
# Temporal mock
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_temporal_client():
    """Mock Temporal client for route tests."""
    client = AsyncMock()
    client.start_workflow = AsyncMock(return_value=MagicMock(id="test-wf-id"))
    handle = MagicMock()
    handle.cancel = AsyncMock()
    client.get_workflow_handle = MagicMock(return_value=handle)
    return client


# ---------------------------------------------------------------------------
# FastAPI test client: patches DB engine + Temporal at module level
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(
    test_engine: AsyncEngine,
    mock_temporal_client,
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI routes.

    Replaces the production DB engine/session_factory in app.database
    with the test in-memory engine, so all get_session_ctx() calls
    throughout the codebase use the test DB. Bulk hires run one at a
    time because every session shares the single in-memory connection.
    """
    original_engine = db_module.engine
    original_factory = db_module.async_session_factory

    test_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )
    db_module.engine = test_engine
    db_module.async_session_factory = test_factory

    try:
        with patch("app.temporal_adapter.get_client", AsyncMock(return_value=mock_temporal_client)), \
                patch("app.dependencies.BULK_CONCURRENCY", 1):
            from app.main import app

            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as ac:
                yield ac
    finally:
        db_module.engine = original_engine
        db_module.async_session_factory = original_factory
