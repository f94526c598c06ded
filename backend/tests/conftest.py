"""Shared pytest fixtures for the workflow automation engine test suite.

Provides:
- In-memory async SQLite database with savepoint support
- AsyncSession bound to it
- FastAPI test client (httpx.AsyncClient) sharing that session
- Pre-seeded actors and a workflow factory
"""

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from db.base import Base  # noqa: E402
from db.database import create_session_factory, enable_sqlite_savepoints  # noqa: E402


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)

    # Import all models so Base.metadata knows about them
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session; the HTTP client reuses it."""
    async_session_factory = create_session_factory(db_engine)
    async with async_session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(db_session):
    """Create a FastAPI app instance wired to the test session."""
    from app.dependencies import get_db
    from app.main import create_app

    test_app = create_app()

    async def _override_get_db():
        yield db_session

    test_app.dependency_overrides[get_db] = _override_get_db
    yield test_app
    test_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client (lifespan not run; tables come from db_engine)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Test data fixtures
# ---------------------------------------------------------------------------

DISTRICT_ID = "district-1"
SCHOOL_ID = "school-1"


async def _add_actor(session: AsyncSession, user_id: str, role: str, district_id=DISTRICT_ID, school_id=SCHOOL_ID):
    from db.models.actor_profile import ActorProfile

    profile = ActorProfile(
        user_id=user_id,
        role=role,
        district_id=district_id,
        school_id=school_id,
        full_name=f"{role.title()} User",
    )
    session.add(profile)
    await session.flush()
    return profile


@pytest_asyncio.fixture
async def teacher_actor(db_session):
    """A teacher in district-1/school-1 (no automation actions)."""
    await _add_actor(db_session, "user-teacher", "teacher")
    await db_session.commit()
    from services.actor_service import ActorService

    return await ActorService(db_session).resolve("user-teacher")


@pytest_asyncio.fixture
async def admin_actor(db_session):
    """A district admin in district-1/school-1 (manage, approve, replay)."""
    await _add_actor(db_session, "user-admin", "district_admin")
    await db_session.commit()
    from services.actor_service import ActorService

    return await ActorService(db_session).resolve("user-admin")


@pytest.fixture
def make_workflow(db_session):
    """Factory creating a published workflow (snapshot included)."""
    from services.workflow_service import WorkflowService

    async def _make(
        definition: dict,
        event_name: str = "attendance.missed",
        district_id=DISTRICT_ID,
        school_id=None,
        publish: bool = True,
        name: str = "Test Workflow",
    ):
        svc = WorkflowService(db_session)
        workflow = await svc.create_workflow(
            name=name,
            trigger={"type": "event", "event_name": event_name},
            definition=definition,
            district_id=district_id,
            school_id=school_id,
            created_by="user-admin",
        )
        if publish:
            await svc.publish(workflow)
        await db_session.commit()
        return workflow

    return _make
