"""
Test configuration and fixtures.

Provides:
- An in-memory SQLite database shared by the test and the app (StaticPool)
- User factories with real password hashes
- An on-disk database and a barrier-started thread runner for race tests
- A TestClient wired to the test database and a fresh IP block registry
"""
import asyncio
import os
import threading
import uuid
from typing import Generator

# Settings are read at import time, so the environment comes first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-0123456789abcdef"
os.environ["REDIS_URL"] = "memory://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["UNKNOWN_EMAIL_DELAY_SECONDS"] = "0"
os.environ["MAILTRAP_MODE"] = "true"
os.environ["TWILIO_TEST_MODE"] = "true"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from telemed import lockout
from telemed.auth import attempt_login
from telemed.database import get_session
from telemed.lockout import InMemoryIPBlockRegistry, get_ip_block_registry
from telemed.main import app
from telemed.rate_limit import limiter
from telemed.models import Specialty, User
from telemed.security import create_access_token, hash_password

PASSWORD = "correct-horse-42"


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """SQLite on disk, so each thread gets its own connection and writers really contend."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'telemed.db'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


@pytest.fixture
def ip_blocks() -> InMemoryIPBlockRegistry:
    return InMemoryIPBlockRegistry()


@pytest.fixture
def shared_ip_blocks(monkeypatch) -> InMemoryIPBlockRegistry:
    """Fresh process-wide registry for code that calls get_ip_block_registry() directly."""
    registry = InMemoryIPBlockRegistry()
    monkeypatch.setattr(lockout, "_registry", registry)
    return registry


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_user(session: Session):
    def _make(role: str = "patient", email: str = None, password: str = PASSWORD, **fields) -> User:
        user = User(
            role=role,
            email=email or f"{role}-{uuid.uuid4().hex[:8]}@example.com",
            full_name=fields.pop("full_name", f"Test {role.title()}"),
            password_hash=hash_password(password),
            **fields,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture
def patient(make_user) -> User:
    return make_user("patient", full_name="Pat Patient")


@pytest.fixture
def doctor(make_user) -> User:
    return make_user("doctor", full_name="Dr. Dana House")


@pytest.fixture
def specialty(session: Session) -> Specialty:
    specialty = Specialty(name="Cardiology")
    session.add(specialty)
    session.commit()
    session.refresh(specialty)
    return specialty


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}

    return _headers


@pytest.fixture
def login(session: Session, ip_blocks: InMemoryIPBlockRegistry):
    """Run the login state machine synchronously."""
    def _login(email: str, password: str, ip: str = "10.0.0.1", now=None):
        return asyncio.run(attempt_login(session, ip_blocks, email, password, ip, now=now))

    return _login


# =============================================================================
# HTTP client
# =============================================================================

@pytest.fixture
def client(engine, ip_blocks) -> Generator[TestClient, None, None]:
    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_ip_block_registry] = lambda: ip_blocks
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def rate_limits(monkeypatch):
    """Turn the limiter on with empty counters for one test."""
    monkeypatch.setattr(limiter, "enabled", True)
    limiter.reset()
    yield limiter
    limiter.reset()


# =============================================================================
# Concurrency
# =============================================================================

def run_concurrently(target, count: int, timeout: float = 30.0) -> list:
    """
    Call ``target(index)`` from ``count`` threads released together by a
    barrier. Returns each call's result, or the exception it raised, in
    index order.
    """
    barrier = threading.Barrier(count)
    results = [None] * count

    def worker(index: int):
        barrier.wait()
        try:
            results[index] = target(index)
        except Exception as exc:
            results[index] = exc

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout)
    return results
