"""
tests/conftest.py -- Shared test fixtures for identity-rbac tests.

This module provides:
  - make_settings(): Settings with a fixed key, bcrypt cost 4, and no .env file
  - FrozenClock / RecordingNotifier: deterministic collaborators for the core
  - service: an RbacService over an isolated in-memory database
  - _patch_lifespan(): wires a test service into app.state, bypassing real startup
  - api_client: TestClient plus a seeded Super Admin for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Every
fixture appends a uuid so no two fixtures share a database.

The DEBUG env var must be set before api.main is imported so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any api import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import _purge_loop, app
from auth.bootstrap import create_super_admin, seed_permissions
from auth.hashing import PasswordHasher
from auth.models import Role, User
from auth.oauth import build_oauth
from auth.service import RbacService, Repositories
from auth.store import Database
from auth.tokens import TokenService
from core.config import Settings
from core.errors import NotificationError

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"


def make_settings(**overrides) -> Settings:
    values = {"secret_key": TEST_SECRET, "bcrypt_rounds": 4}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def memory_db_url(name: str) -> str:
    return f"sqlite:///file:{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Deterministic collaborators
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when a test says so."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class SentMail:
    to: str
    template_name: str
    data: dict


@dataclass
class RecordingNotifier:
    """Notifier that records every message. Set fail=True to simulate a dead relay."""

    sent: list[SentMail] = field(default_factory=list)
    fail: bool = False

    def send(self, to: str, template_name: str, data: dict) -> None:
        if self.fail:
            raise NotificationError("relay unavailable")
        self.sent.append(SentMail(to, template_name, dict(data)))

    @property
    def last_token(self) -> str:
        return self.sent[-1].data["token"]


def build_test_service(db: Database, notifier: RecordingNotifier, clock=None) -> RbacService:
    settings = make_settings()
    kwargs = {"clock": clock} if clock is not None else {}
    return RbacService(
        db=db,
        repos=Repositories.for_database(db),
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        tokens=TokenService.from_settings(settings, **kwargs),
        notifier=notifier,
        invitation_url=settings.invitation_url,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------


def make_user(service: RbacService, email: str, password: str = "password123", role_ids=()) -> User:
    user_id = service.repos.principals.insert(User(email=email, hashed_password=service.hasher.hash(password)))
    if role_ids:
        service.repos.assignments.insert_many(user_id, list(role_ids), granted_by=None)
    return service.repos.principals.find_by_id(user_id)


def make_role(service: RbacService, name: str, permissions=(), is_active: bool = True) -> Role:
    """Create a role holding the named permissions, creating missing permissions on the way."""
    existing = {p.name: p.id for p in service.list_permissions()}
    permission_ids = []
    for perm_name in permissions:
        if perm_name not in existing:
            resource, action = perm_name.split(".", 1)
            existing[perm_name] = service.create_permission(resource, action).id
        permission_ids.append(existing[perm_name])
    role = service.create_role(name, f"{name} role", created_by=None, permission_ids=permission_ids)
    if not is_active:
        role = service.set_role_active(role.id, False)
    return role


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def db() -> Generator[Database, None, None]:
    database = Database(memory_db_url("core"))
    yield database
    database.close()


@pytest.fixture
def service(db: Database, notifier: RecordingNotifier, clock: FrozenClock) -> RbacService:
    return build_test_service(db, notifier, clock=clock)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, service: RbacService):
    """Return an async context manager that replaces the real lifespan.

    The real purge loop runs with an hour-long interval, so it never sweeps
    during a test module but still has to stop cleanly on shutdown.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.rbac = service
        app.state.oauth = build_oauth(settings)
        app.state.purge_stop = asyncio.Event()
        app.state.purge_task = asyncio.create_task(_purge_loop(app, 3600, app.state.purge_stop))
        yield
        app.state.purge_stop.set()
        await app.state.purge_task

    return test_lifespan


@dataclass
class ApiContext:
    client: TestClient
    service: RbacService
    notifier: RecordingNotifier
    admin: User
    admin_token: str

    def auth(self, token: str | None = None) -> dict:
        return {"Authorization": f"Bearer {token or self.admin_token}"}


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use an isolated in-memory store. A Super Admin
    holding every built-in permission exists before the client starts.
    """
    settings = make_settings()
    db = Database(memory_db_url("api"))
    notifier = RecordingNotifier()
    service = build_test_service(db, notifier)
    seed_permissions(service)
    admin = create_super_admin(service, ADMIN_EMAIL, ADMIN_PASSWORD)
    token = service.login(ADMIN_EMAIL, ADMIN_PASSWORD).access_token

    app.router.lifespan_context = _patch_lifespan(settings, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, service=service, notifier=notifier, admin=admin, admin_token=token)

    db.close()
