"""
admins/store.py -- SQLAlchemy Core schema, engine and row mappers for admin data.

Pattern: Repository + Data Mapper. AdminDatabase owns the async engine and the
schema bootstrap; the repositories in admins/repository.py, admins/limits.py
and auth/sessions.py run their queries against AdminDatabase.engine and use
the mappers below. Route and service code never touches SQL directly.

Async: every query goes through an AsyncEngine (aiosqlite for SQLite,
asyncpg or similar elsewhere). A store call suspends the caller cooperatively
instead of blocking the event loop.

Column codec: forms (list[str]) and daily_limit_config (category -> limits)
are stored as JSON text. They are encoded on write and decoded on read here
and nowhere else, so domain code only ever sees Python values.

Schema bootstrap: init() creates admin_users if missing, then applies the
ordered migrations in admins/migrations.py. Both steps are idempotent and
safe to run on every startup.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import Column, Index, Integer, MetaData, PrimaryKeyConstraint, String, Table, Text, event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from admins.migrations import run_migrations
from admins.models import AdminUser, DailyLimitConfig
from core.constants import ADMIN_LEVEL_DAILY_LIMITS_TABLE, ADMIN_TOKENS_TABLE, ADMIN_USERS_TABLE

logger = logging.getLogger("adminauth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

admin_users = Table(
    ADMIN_USERS_TABLE,
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("password_hash", Text),  # NULL for federated-only admins
    Column("level", Integer, nullable=False),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("read_only", Integer, nullable=False, server_default="0"),
    Column("block_privilege", Integer, nullable=False, server_default="0"),
    Column("analytics_privilege", Integer, nullable=False, server_default="0"),
    Column("manage_admins_privilege", Integer, nullable=False, server_default="0"),
    Column("fetch_motivations_privilege", Integer, nullable=False, server_default="0"),
    Column("password_reset_token", Text),
    Column("password_reset_sent_at", String(32)),
    Column("company", String(255)),
    Column("forms", Text),  # JSON list
    Column("daily_limit_config", Text),  # JSON map category -> {alert, block}
    Column("timestamp", String(32), nullable=False),
    # Unique on the raw value. Case-insensitive uniqueness is enforced by
    # add_admin() looking up LOWER(email) before inserting.
    Index("uidx_admin_users_email", "email", unique=True),
)

admin_level_daily_limits = Table(
    ADMIN_LEVEL_DAILY_LIMITS_TABLE,
    metadata,
    Column("level", Integer, nullable=False),
    Column("category", String(30), nullable=False),
    Column("alert", Integer, nullable=False),
    Column("block", Integer, nullable=False),
    PrimaryKeyConstraint("level", "category"),
)

admin_tokens = Table(
    ADMIN_TOKENS_TABLE,
    metadata,
    Column("token", String(64), nullable=False),
    Column("ip", String(64), nullable=False),
    Column("username", String(255), nullable=False),
    Column("level", Integer, nullable=False),
    Column("extra", Text),  # JSON privilege snapshot
    Column("expires_at", String(32), nullable=False),
    PrimaryKeyConstraint("token", "ip"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. The aiosqlite adapter only exposes execute()
    through a cursor.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_flag(value: Any) -> int:
    return 1 if value else 0


# ---------------------------------------------------------------------------
# Engine owner
# ---------------------------------------------------------------------------


class AdminDatabase:
    """Async engine plus schema bootstrap for the admin tables.

    Usage:
        db = AdminDatabase("sqlite+aiosqlite:///./db/admin_auth.db")
        await db.init()
        ...
        await db.close()
    """

    def __init__(self, db_url: str) -> None:
        self.url = make_url(db_url)
        self.engine: AsyncEngine = create_async_engine(db_url)
        if self._is_sqlite_file():
            event.listen(self.engine.sync_engine, "connect", _set_wal_mode)

    def _is_sqlite_file(self) -> bool:
        return self.url.get_backend_name() == "sqlite" and self.url.database not in (None, "", ":memory:")

    async def init(self) -> list[str]:
        """Create the admin_users table if needed and apply pending migrations.

        The parent directory of a SQLite file is created first so a fresh
        deployment does not fail on a missing db/ folder.

        Returns the names of the migrations applied by this call.
        """
        if self._is_sqlite_file():
            Path(self.url.database).parent.mkdir(parents=True, exist_ok=True)
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all, tables=[admin_users])
        applied = await run_migrations(self.engine, metadata)
        logger.info("Admin store ready (%d migrations applied)", len(applied))
        return applied

    async def close(self) -> None:
        await self.engine.dispose()


# ---------------------------------------------------------------------------
# Column codec
# ---------------------------------------------------------------------------


def encode_forms(forms: Optional[list[str]]) -> Optional[str]:
    return json.dumps(list(forms)) if forms is not None else None


def decode_forms(raw: Optional[str]) -> list[str]:
    return json.loads(raw) if raw else []


def encode_daily_limit_config(config: Optional[dict[str, Any]]) -> Optional[str]:
    """Serialize a category map. Values may be DailyLimitConfig or plain dicts."""
    if config is None:
        return None
    plain = {}
    for category, limits in config.items():
        if isinstance(limits, DailyLimitConfig):
            plain[category] = {"alert": limits.alert, "block": limits.block}
        else:
            plain[category] = {"alert": limits["alert"], "block": limits["block"]}
    return json.dumps(plain)


def decode_daily_limit_config(raw: Optional[str]) -> Optional[dict[str, DailyLimitConfig]]:
    if not raw:
        return None
    data = json.loads(raw)
    return {category: DailyLimitConfig(alert=v["alert"], block=v["block"]) for category, v in data.items()}


_FLAG_COLUMNS = (
    "active",
    "read_only",
    "block_privilege",
    "analytics_privilege",
    "manage_admins_privilege",
    "fetch_motivations_privilege",
)


def admin_columns(fields: dict[str, Any]) -> dict[str, Any]:
    """Map domain field values to column values for an INSERT or UPDATE."""
    values = dict(fields)
    for name in _FLAG_COLUMNS:
        if name in values:
            values[name] = to_flag(values[name])
    if "forms" in values:
        values["forms"] = encode_forms(values["forms"])
    if "daily_limit_config" in values:
        values["daily_limit_config"] = encode_daily_limit_config(values["daily_limit_config"])
    return values


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def row_to_admin(row) -> AdminUser:
    return AdminUser(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        level=row.level,
        active=bool(row.active),
        read_only=bool(row.read_only),
        block_privilege=bool(row.block_privilege),
        analytics_privilege=bool(row.analytics_privilege),
        manage_admins_privilege=bool(row.manage_admins_privilege),
        fetch_motivations_privilege=bool(row.fetch_motivations_privilege),
        password_reset_token=row.password_reset_token,
        password_reset_sent_at=row.password_reset_sent_at,
        company=row.company,
        forms=decode_forms(row.forms),
        daily_limit_config=decode_daily_limit_config(row.daily_limit_config),
        timestamp=row.timestamp,
    )


def row_to_daily_limit(row) -> DailyLimitConfig:
    return DailyLimitConfig(alert=row.alert, block=row.block)
