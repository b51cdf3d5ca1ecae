"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of warden.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from warden.database.models import (  # noqa: E402
    Application,
    ApplicationStatus,
    Base,
    User,
    UserRole,
)

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Warden tables.

    Uses StaticPool so every session (and ``asyncio.to_thread`` worker)
    shares the same in-memory database.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def now() -> datetime:
    return NOW


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------
_next_platform_id = iter(range(10_000, 10_000_000))


def make_user(
    engine: Engine,
    *,
    role: UserRole = UserRole.MEMBER,
    can_vote: bool | None = None,
    name: str | None = None,
    game_name: str | None = None,
    positive: float = 0.0,
    negative: float = 0.0,
) -> int:
    """Insert a user and return its id.  Members and admins vote by default."""
    platform_id = next(_next_platform_id)
    if can_vote is None:
        can_vote = role in (UserRole.MEMBER, UserRole.ADMIN)
    with Session(engine) as session:
        user = User(
            platform_id=platform_id,
            display_name=name or f"user{platform_id}",
            role=role,
            can_vote=can_vote,
            game_name=game_name,
            reputation_positive=positive,
            reputation_negative=negative,
        )
        session.add(user)
        session.commit()
        return user.id


def make_application(
    engine: Engine,
    user_id: int,
    *,
    ends_at: datetime = NOW + timedelta(days=1),
    status: ApplicationStatus = ApplicationStatus.VOTING,
    game_name: str = "Steve_01",
) -> int:
    with Session(engine) as session:
        user = session.get(User, user_id)
        if status in (ApplicationStatus.PENDING, ApplicationStatus.VOTING):
            user.role = UserRole.APPLICANT
        app = Application(
            user_id=user_id,
            game_name=game_name,
            reason="I build castles",
            status=status,
            voting_ends_at=ends_at,
        )
        session.add(app)
        session.commit()
        return app.id


def make_voters(engine: Engine, count: int) -> list[int]:
    return [make_user(engine) for _ in range(count)]


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------
class FakeWhitelist:
    """Records whitelist calls; ``fail=True`` makes every call report failure."""

    def __init__(self, members: list[str] | None = None, fail: bool = False) -> None:
        self.members: list[str] = list(members or [])
        self.fail = fail
        self.added: list[tuple[str, str | None]] = []
        self.removed: list[str] = []

    def add_member(self, name: str, uuid: str | None = None) -> bool:
        self.added.append((name, uuid))
        if self.fail:
            return False
        if name not in self.members:
            self.members.append(name)
        return True

    def remove_member(self, name: str) -> bool:
        self.removed.append(name)
        if self.fail:
            return False
        if name in self.members:
            self.members.remove(name)
        return True

    def list_members(self) -> list[str]:
        return list(self.members)


class FakeNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[tuple[int, object]] = []
        self.fail = fail

    def notify(self, user_id, event) -> None:
        if self.fail:
            raise RuntimeError("delivery failed")
        self.sent.append((user_id, event))

    def kinds_for(self, user_id: int) -> list[str]:
        return [event.kind for uid, event in self.sent if uid == user_id]


@pytest.fixture
def whitelist() -> FakeWhitelist:
    return FakeWhitelist()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------
@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_admin_token()


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin", is_admin: bool = True) -> str:
    """Create a JWT.  Usable as both a fixture and a factory function."""
    import jwt

    from warden.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": is_admin},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def client(db_engine, whitelist):
    """FastAPI TestClient wired to the SQLite engine and a fake whitelist."""
    from fastapi.testclient import TestClient

    from warden.api.main import app
    from warden.api.routes import admin as admin_routes

    # Override the callables the routes were built with, which survive a
    # reload of warden.api.deps.
    app.dependency_overrides[admin_routes.get_engine] = lambda: db_engine
    app.dependency_overrides[admin_routes.get_whitelist] = lambda: whitelist
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
