"""
Shared fixtures.

Every test gets its own file-backed SQLite database under ``tmp_path`` so that
concurrent operations use real, separate connections and real locks.
"""

import json
import logging

import pytest
from fastapi_users.password import PasswordHelper
from httpx import ASGITransport, AsyncClient

from core.config import settings
from core.logging_config import LogContext, configure_logging, reset_logging
from crud import items as items_crud
from crud import owners as owners_crud
from db.database import create_db_and_tables, make_engine, make_session_maker
from db.owner import OWNER_TYPE_LOCATION, OWNER_TYPE_PERSON
from db.users import ROLE_USER, User
from services.transfer_engine import TransferEngine

TEST_PASSWORD = "correct-horse-battery"

password_helper = PasswordHelper()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'skladisce-test.sqlite3'}"


@pytest.fixture
async def db_engine(db_url):
    engine = make_engine(db_url, lock_timeout=5.0)
    await create_db_and_tables(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return make_session_maker(db_engine)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as s:
        yield s


@pytest.fixture
def transfer_engine(session_maker):
    return TransferEngine(session_maker)


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def make_owner(session_maker):
    async def _make(name: str, owner_type: str = OWNER_TYPE_LOCATION):
        async with session_maker() as s:
            return await owners_crud.create_owner(s, name, owner_type)

    return _make


@pytest.fixture
def make_item(session_maker):
    async def _make(name: str = "Widget", description=None, status: str = "active"):
        async with session_maker() as s:
            return await items_crud.create_item(s, name, description, status)

    return _make


@pytest.fixture
def holding_of(session_maker):
    """Current quantity for (item, owner), or None when no holding row exists."""

    async def _get(item_id: int, owner_id: int):
        async with session_maker() as s:
            return await owners_crud.get_holding(s, item_id, owner_id)

    return _get


@pytest.fixture
def transfer_count(session_maker):
    from sqlalchemy import func, select

    from db.inventory.transfer import Transfer

    async def _count() -> int:
        async with session_maker() as s:
            return int((await s.execute(select(func.count(Transfer.id)))).scalar_one())

    return _count


@pytest.fixture
async def storage_and_alice(make_owner, make_item):
    """The cast used by most scenarios: a Widget, location Storage, person Alice."""
    widget = await make_item("Widget")
    storage = await make_owner("Storage", OWNER_TYPE_LOCATION)
    alice = await make_owner("Alice", OWNER_TYPE_PERSON)
    return widget, storage, alice


@pytest.fixture
def make_user(session_maker):
    async def _make(username: str, role: str = ROLE_USER, password: str = TEST_PASSWORD, email=None):
        async with session_maker() as s:
            user = User(
                email=email or f"{username}@example.com",
                username=username,
                role=role,
                hashed_password=password_helper.hash(password),
                is_active=True,
                is_superuser=role == "admin",
                is_verified=True,
            )
            s.add(user)
            await s.commit()
            await s.refresh(user)
            return user

    return _make


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


@pytest.fixture
async def app(session_maker, transfer_engine, monkeypatch):
    from core.auth import reset_jwt_secret_cache
    from db.database import get_async_session, get_session_maker
    from main import app as fastapi_app
    from services.transfer_engine import get_transfer_engine

    monkeypatch.setattr(settings, "jwt_secret", "test-secret-not-for-production")
    reset_jwt_secret_cache()

    async def _session():
        async with session_maker() as s:
            yield s

    fastapi_app.dependency_overrides[get_async_session] = _session
    fastapi_app.dependency_overrides[get_session_maker] = lambda: session_maker
    fastapi_app.dependency_overrides[get_transfer_engine] = lambda: transfer_engine
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()
    reset_jwt_secret_cache()


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def login(client):
    """Log in and return Authorization headers."""

    async def _login(username: str, password: str = TEST_PASSWORD) -> dict:
        resp = await client.post("/api/auth/jwt/login", data={"username": username, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}

    return _login


@pytest.fixture
async def admin_headers(make_user, login):
    await make_user("admin", role="admin")
    return await login("admin")


@pytest.fixture
async def manager_headers(make_user, login):
    await make_user("manager", role="manager")
    return await login("manager")


@pytest.fixture
async def user_headers(make_user, login):
    await make_user("worker", role="user")
    return await login("worker")


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.lines = []

    def emit(self, record):
        self.lines.append(self.format(record))


@pytest.fixture
def log_records():
    """Route the skladisce loggers into memory; returns a callable yielding parsed JSON records."""
    reset_logging()
    LogContext.clear()
    handler = _ListHandler()
    configure_logging(level=logging.DEBUG, handler=handler)
    yield lambda: [json.loads(line) for line in handler.lines]
    reset_logging()
    LogContext.clear()
