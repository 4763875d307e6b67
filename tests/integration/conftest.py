"""
Integration test fixtures for UrbanWatch.

Each test gets a fresh in-memory SQLite database (aiosqlite) with the
full schema created from the models. The API is exercised through
httpx's ASGITransport with the module-level engine and session factory
patched to the test database; Redis, the classifier and the event
stream are replaced by in-process fakes.

All async fixtures and tests use loop_scope="session" to share a single event
loop across the session. This avoids "attached to a different loop" errors.
"""

import uuid
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from urbanwatch.db.models import (
    Base,
    CctvDevice,
    DeviceStatus,
    User,
    UserRole,
)
from urbanwatch.db.session import create_session_factory
from urbanwatch.services.assignment import DefaultPurokLeaderPolicy
from urbanwatch.services.auth import create_access_token, hash_password
from urbanwatch.services.classifier import SnapshotVerdict, verdict_from_analysis
from urbanwatch.services.storage import LocalMediaStorage

TEST_PASSWORD = "testpassword123"


# ── Fakes ────────────────────────────────────────────────────────────────────


class RecordingPublisher:
    """Keeps published events in memory."""

    def __init__(self) -> None:
        self.events: list = []

    async def publish(self, event) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [event.name for event in self.events]


class FakeClassifier:
    """Returns a preset verdict and records what it was asked."""

    def __init__(self, verdict: SnapshotVerdict) -> None:
        self.verdict = verdict
        self.calls: list[dict] = []

    async def classify(self, image_bytes, mime_type, *, device_name, location):
        self.calls.append({"size": len(image_bytes), "device_name": device_name})
        return self.verdict


EMERGENCY_ANALYSIS = {
    "is_valid": True,
    "accident_type": "Fire",
    "severity": "High",
    "title": "Fire near the market",
    "description": "Flames and heavy smoke beside the stalls.",
    "confidence": 91,
    "detected_objects": ["fire", "smoke"],
    "reasoning": "Visible flames",
}

FALSE_ALARM_ANALYSIS = {
    "is_valid": False,
    "accident_type": None,
    "severity": None,
    "title": None,
    "description": None,
    "confidence": 35,
    "detected_objects": ["car"],
    "reasoning": "Normal traffic, no collision",
}


# ── Database ─────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture(loop_scope="session")
async def test_engine() -> AsyncEngine:
    """Fresh in-memory database with all tables."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(loop_scope="session")
async def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(test_engine)


@pytest_asyncio.fixture(loop_scope="session")
async def db_session(session_factory) -> AsyncSession:
    """Session used for seeding and for calling services directly."""
    session = session_factory()
    yield session
    await session.close()


# ── Seed data ────────────────────────────────────────────────────────────────


async def _create_user(session: AsyncSession, name: str, email: str, role: UserRole, **extra) -> User:
    user = User(
        id=uuid.uuid4(),
        name=name,
        email=email,
        password_hash=hash_password(TEST_PASSWORD),
        role=role,
        **extra,
    )
    session.add(user)
    await session.commit()
    return user


@pytest_asyncio.fixture(loop_scope="session")
async def citizen(db_session) -> User:
    return await _create_user(
        db_session, "Juan Dela Cruz", "juan@example.com", UserRole.citizen, phone="09170000001"
    )


@pytest_asyncio.fixture(loop_scope="session")
async def other_citizen(db_session) -> User:
    return await _create_user(db_session, "Maria Santos", "maria@example.com", UserRole.citizen)


@pytest_asyncio.fixture(loop_scope="session")
async def purok_leader(db_session) -> User:
    return await _create_user(
        db_session, "Leader Reyes", "reyes@example.com", UserRole.purok_leader, phone="09170000002"
    )


@pytest_asyncio.fixture(loop_scope="session")
async def other_leader(db_session, purok_leader) -> User:
    """Second leader, created after the first so least-loaded ties favour purok_leader."""
    return await _create_user(
        db_session, "Leader Bautista", "bautista@example.com", UserRole.purok_leader
    )


@pytest_asyncio.fixture(loop_scope="session")
async def operator(db_session) -> User:
    return await _create_user(db_session, "Ops Garcia", "ops@example.com", UserRole.operator)


@pytest_asyncio.fixture(loop_scope="session")
async def device(db_session) -> CctvDevice:
    camera = CctvDevice(
        id=uuid.uuid4(),
        device_name="Market Cam 1",
        location_name="Public Market",
        latitude=14.5995,
        longitude=120.9842,
        status=DeviceStatus.active,
        yolo_enabled=True,
    )
    db_session.add(camera)
    await db_session.commit()
    return camera


# ── Collaborators ────────────────────────────────────────────────────────────


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def storage(tmp_path: Path) -> LocalMediaStorage:
    return LocalMediaStorage(tmp_path / "media", "/media")


@pytest.fixture
def assignment(purok_leader) -> DefaultPurokLeaderPolicy:
    return DefaultPurokLeaderPolicy(purok_leader.id)


@pytest.fixture
def emergency_classifier() -> FakeClassifier:
    return FakeClassifier(verdict_from_analysis(EMERGENCY_ANALYSIS))


@pytest.fixture
def false_alarm_classifier() -> FakeClassifier:
    return FakeClassifier(verdict_from_analysis(FALSE_ALARM_ANALYSIS))


@pytest.fixture
def auth_headers():
    """Build a bearer header for a seeded user."""

    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}

    return _headers


# ── API client ───────────────────────────────────────────────────────────────


@pytest_asyncio.fixture(loop_scope="session")
async def app_client(test_engine, session_factory, publisher, storage, emergency_classifier, purok_leader):
    """httpx AsyncClient with ASGITransport, patched to use the test database."""
    import urbanwatch.db.session as db_session_mod
    from urbanwatch.api.deps import get_assignment_policy
    from urbanwatch.api.main import app

    original_engine = db_session_mod._engine
    original_factory = db_session_mod._async_session_factory

    db_session_mod._engine = test_engine
    db_session_mod._async_session_factory = session_factory

    app.state.publisher = publisher
    app.state.storage = storage
    app.state.classifier = emergency_classifier
    app.dependency_overrides[get_assignment_policy] = lambda: DefaultPurokLeaderPolicy(purok_leader.id)

    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://testserver",
    ) as client:
        yield client

    app.dependency_overrides.clear()
    for name in ("publisher", "storage", "classifier"):
        if hasattr(app.state, name):
            delattr(app.state, name)

    db_session_mod._engine = original_engine
    db_session_mod._async_session_factory = original_factory
