"""
auth/facility.py -- Composition root for the admin auth facility.

create_facility() reads Settings once and decides, once, which admin
repository and which token backend to use. Nothing downstream re-checks
configuration per call.

Lifecycle (driven by the hosting application, e.g. a FastAPI lifespan):

    facility = create_facility(get_settings())
    await facility.start()   # create tables, run migrations, seed admins
    ...
    await facility.stop()    # close Redis, dispose the engine

Startup order matters: the schema must exist before seeding, and seeding
goes through add_admin() so configured admins get the same validation and
password hashing as admins created at runtime.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

import httpx

from admins.directory import AdminDirectory
from admins.limits import DailyLimitStore
from admins.repository import ConfigAdminRepository, SqlAdminRepository
from admins.store import AdminDatabase
from auth.google import GoogleIdentityResolver
from auth.login import LoginService
from auth.sessions import RedisTokenStore, SessionManager, SqlTokenStore, TokenStore
from core.config import Settings

logger = logging.getLogger("adminauth.facility")


@dataclass
class AdminAuthFacility:
    """Every component of the facility, wired together."""

    settings: Settings
    directory: AdminDirectory
    sessions: SessionManager
    login_service: LoginService
    resolver: GoogleIdentityResolver
    token_store: TokenStore
    db: Optional[AdminDatabase] = None
    # None in config-only mode: level defaults need the relational store.
    limits: Optional[DailyLimitStore] = None

    async def start(self) -> None:
        if self.db is not None:
            await self.db.init()
        if self.settings.use_db and self.settings.admin_users:
            await self.directory.seed_from_config(self.settings.admin_users)
        logger.info(
            "Admin auth facility started (%s admins, %s tokens)",
            "store-backed" if self.settings.use_db else "config-only",
            self.settings.token_backend,
        )

    async def stop(self) -> None:
        if isinstance(self.token_store, RedisTokenStore):
            await self.token_store.close()
        if self.db is not None:
            await self.db.close()
        logger.info("Admin auth facility stopped")

    async def login(self, args: dict[str, Any]) -> dict[str, Any]:
        return await self.login_service.login(args)

    async def validate_token(self, token: str, ip: str, level: int = 0) -> bool:
        return await self.sessions.validate_token([token, {"ip": ip}], level)


def create_facility(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AdminAuthFacility:
    """Build the facility for settings. Call start() before serving requests."""
    needs_db = settings.use_db or settings.token_backend == "sql"
    db = AdminDatabase(settings.database_url) if needs_db else None

    if settings.use_db:
        repository = SqlAdminRepository(db)
    else:
        repository = ConfigAdminRepository(settings.admin_users)

    directory = AdminDirectory(
        repository,
        password_salt=settings.password_hash_salt,
        reset_ttl=timedelta(seconds=settings.password_reset_ttl_seconds),
    )

    if settings.token_backend == "redis":
        token_store: TokenStore = RedisTokenStore.from_url(settings.redis_url)
    else:
        token_store = SqlTokenStore(db)

    sessions = SessionManager(token_store, directory, ttl=timedelta(seconds=settings.session_ttl_seconds))
    resolver = GoogleIdentityResolver.from_settings(settings, transport=transport)

    return AdminAuthFacility(
        settings=settings,
        directory=directory,
        sessions=sessions,
        login_service=LoginService(directory, sessions, resolver),
        resolver=resolver,
        token_store=token_store,
        db=db,
        limits=DailyLimitStore(db, directory) if settings.use_db else None,
    )
