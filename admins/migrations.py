"""
admins/migrations.py -- Ordered, forward-only, idempotent schema migrations.

Each migration carries its own "already applied" check, based on live schema
introspection rather than a version table, so the list can be re-run on every
startup and against databases created by any earlier release. Migrations run
in list order inside one transaction.

Append new migrations at the end. Never reorder or edit a released one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine

from core.constants import ADMIN_LEVEL_DAILY_LIMITS_TABLE, ADMIN_TOKENS_TABLE, ADMIN_USERS_TABLE

logger = logging.getLogger("adminauth.store")


@dataclass(frozen=True)
class Migration:
    name: str
    is_applied: Callable[[Connection, MetaData], bool]
    apply: Callable[[Connection, MetaData], None]


def _columns(conn: Connection, table: str) -> set[str]:
    return {col["name"] for col in inspect(conn).get_columns(table)}


def _add_column(table: str, column: str, ddl_type: str) -> Migration:
    # Names come from this module only, never from input.
    def is_applied(conn: Connection, metadata: MetaData) -> bool:
        return column in _columns(conn, table)

    def apply(conn: Connection, metadata: MetaData) -> None:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl_type}"))  # noqa: S608

    return Migration(f"add {table}.{column}", is_applied, apply)


def _create_table(table: str) -> Migration:
    def is_applied(conn: Connection, metadata: MetaData) -> bool:
        return inspect(conn).has_table(table)

    def apply(conn: Connection, metadata: MetaData) -> None:
        metadata.tables[table].create(conn)

    return Migration(f"create {table}", is_applied, apply)


MIGRATIONS: tuple[Migration, ...] = (
    _add_column(ADMIN_USERS_TABLE, "manage_admins_privilege", "INTEGER NOT NULL DEFAULT 0"),
    _add_column(ADMIN_USERS_TABLE, "forms", "TEXT"),
    _add_column(ADMIN_USERS_TABLE, "fetch_motivations_privilege", "INTEGER NOT NULL DEFAULT 0"),
    _add_column(ADMIN_USERS_TABLE, "daily_limit_config", "TEXT"),
    _create_table(ADMIN_LEVEL_DAILY_LIMITS_TABLE),
    _create_table(ADMIN_TOKENS_TABLE),
)


async def run_migrations(engine: AsyncEngine, metadata: MetaData) -> list[str]:
    """Apply every migration not yet reflected in the schema. Returns the names applied."""
    applied: list[str] = []
    async with engine.begin() as conn:
        for migration in MIGRATIONS:
            if await conn.run_sync(migration.is_applied, metadata):
                continue
            await conn.run_sync(migration.apply, metadata)
            logger.info("Applied migration: %s", migration.name)
            applied.append(migration.name)
    return applied
