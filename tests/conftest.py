"""
tests/conftest.py -- Shared fixtures for the admin auth test suite.

This module provides:
  - db: a fresh, migrated AdminDatabase on a SQLite file under tmp_path
  - directory / limits: store-backed AdminDirectory and DailyLimitStore
  - clock: a controllable UTC clock for expiry tests
  - sessions: a SessionManager over SqlTokenStore sharing that clock
  - add_admin: helper that creates an admin with sensible defaults

Design: a real SQLite file per test (not :memory:) so every pooled aiosqlite
connection sees the same schema, and tests never share state.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from admins.directory import AdminDirectory
from admins.limits import DailyLimitStore
from admins.repository import SqlAdminRepository
from admins.store import AdminDatabase
from auth.sessions import SessionManager, SqlTokenStore


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest_asyncio.fixture
async def db(tmp_path):
    database = AdminDatabase(f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}")
    await database.init()
    yield database
    await database.close()


@pytest.fixture
def directory(db) -> AdminDirectory:
    return AdminDirectory(SqlAdminRepository(db))


@pytest.fixture
def limits(db, directory) -> DailyLimitStore:
    return DailyLimitStore(db, directory)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sessions(db, directory, clock) -> SessionManager:
    return SessionManager(SqlTokenStore(db, clock=clock), directory, clock=clock)


@pytest.fixture
def add_admin(directory):
    """Return an async helper: await add_admin("a@b.com", level=1, password="pw", ...)."""

    async def _add(email: str, level: int = 1, **fields):
        return await directory.add_admin({"email": email, "level": level, **fields})

    return _add
