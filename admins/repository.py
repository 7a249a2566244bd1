"""
admins/repository.py -- Where admin records come from.

AdminRepository is the seam between the directory's rules and the backing
storage. Two implementations exist and one is picked once, at construction
time in auth/facility.py:

  SqlAdminRepository     -- the durable relational store (admins/store.py).
  ConfigAdminRepository  -- a static allowlist from Settings.admin_users.
                            Read-only: every write raises DirectoryReadOnly.

The directory never checks which one it holds. It only reads ``writable``
to fail fast before validating a mutation.
"""

from __future__ import annotations

import hmac
import logging
from typing import Any, Optional, Protocol, Union

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError

from admins.limits import validate_daily_limit_config_shape
from admins.models import AdminUser, DailyLimitConfig
from admins.schemas import AdminCreate, parse_input
from admins.store import AdminDatabase, admin_columns, admin_users, now_iso, row_to_admin
from auth.passwords import verify_password
from core.errors import AdminAccountExists, DirectoryReadOnly, ValidationError

logger = logging.getLogger("adminauth.directory")

AdminIdentifier = Union[int, str]


class AdminRepository(Protocol):
    """Storage contract for admin records."""

    writable: bool

    async def get(self, identifier: AdminIdentifier, active: bool = True) -> Optional[AdminUser]:
        """Look up by surrogate id (int) or case-insensitive email (str)."""
        ...

    async def list_emails(self, active: bool = True, company: Optional[str] = None) -> list[str]:
        """Lowercased emails in ascending order."""
        ...

    async def insert(self, admin: AdminUser) -> int:
        """Persist a new admin and return its id. Raises AdminAccountExists on a duplicate email."""
        ...

    async def update(self, admin_id: int, fields: dict[str, Any]) -> bool:
        """Apply domain field values to one admin. Returns False if the id matched nothing."""
        ...

    async def delete(self, id_or_email: AdminIdentifier) -> bool:
        """Hard-delete by id or case-insensitive email. Returns False if nothing matched."""
        ...

    def password_matches(self, admin: AdminUser, password: str) -> bool:
        """Compare a candidate password with the credential this repository stores."""
        ...


def _is_id(identifier: AdminIdentifier) -> bool:
    return isinstance(identifier, int) and not isinstance(identifier, bool)


# ---------------------------------------------------------------------------
# Relational store
# ---------------------------------------------------------------------------


class SqlAdminRepository:
    """AdminRepository over the admin_users table."""

    writable = True

    def __init__(self, db: AdminDatabase) -> None:
        self.engine = db.engine

    async def get(self, identifier: AdminIdentifier, active: bool = True) -> Optional[AdminUser]:
        if _is_id(identifier):
            clause = admin_users.c.id == identifier
        elif isinstance(identifier, str) and identifier:
            clause = func.lower(admin_users.c.email) == identifier.lower()
        else:
            return None
        query = admin_users.select().where(clause)
        if active:
            query = query.where(admin_users.c.active == 1)
        async with self.engine.connect() as conn:
            row = (await conn.execute(query)).fetchone()
        return row_to_admin(row) if row is not None else None

    async def list_emails(self, active: bool = True, company: Optional[str] = None) -> list[str]:
        email = func.lower(admin_users.c.email)
        query = select(email.label("email"))
        if active:
            query = query.where(admin_users.c.active == 1)
        if company is not None:
            query = query.where(admin_users.c.company == company)
        async with self.engine.connect() as conn:
            rows = (await conn.execute(query.order_by(email.asc()))).fetchall()
        return [row.email for row in rows]

    async def insert(self, admin: AdminUser) -> int:
        values = admin_columns(
            {
                "email": admin.email,
                "password_hash": admin.password_hash,
                "level": admin.level,
                "active": admin.active,
                "read_only": admin.read_only,
                "block_privilege": admin.block_privilege,
                "analytics_privilege": admin.analytics_privilege,
                "manage_admins_privilege": admin.manage_admins_privilege,
                "fetch_motivations_privilege": admin.fetch_motivations_privilege,
                "company": admin.company,
                "forms": admin.forms,
                "daily_limit_config": admin.daily_limit_config,
                "timestamp": admin.timestamp or now_iso(),
            }
        )
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(admin_users.insert().values(**values))
                await conn.commit()
        except IntegrityError:
            # A concurrent add_admin() for the same email won the race.
            raise AdminAccountExists(details={"email": admin.email}) from None
        return result.inserted_primary_key[0]

    async def update(self, admin_id: int, fields: dict[str, Any]) -> bool:
        if not fields:
            return True
        async with self.engine.connect() as conn:
            result = await conn.execute(
                admin_users.update().where(admin_users.c.id == admin_id).values(**admin_columns(fields))
            )
            await conn.commit()
        return result.rowcount > 0

    async def delete(self, id_or_email: AdminIdentifier) -> bool:
        clause = func.lower(admin_users.c.email) == str(id_or_email).lower()
        if _is_id(id_or_email) or (isinstance(id_or_email, str) and id_or_email.isdigit()):
            clause = or_(admin_users.c.id == int(id_or_email), clause)
        async with self.engine.connect() as conn:
            result = await conn.execute(admin_users.delete().where(clause))
            await conn.commit()
        return result.rowcount > 0

    def password_matches(self, admin: AdminUser, password: str) -> bool:
        return verify_password(password, admin.password_hash)


# ---------------------------------------------------------------------------
# Static configuration
# ---------------------------------------------------------------------------


def _config_entry_to_admin(entry: Any) -> AdminUser:
    """Validate one configured admin against the same contract add_admin() uses.

    A missing or malformed field (no level, "false" for a flag, "3" for a
    level) raises ValidationError at startup rather than defaulting.
    """
    payload = parse_input(AdminCreate, entry)
    limits = payload.daily_limit_config
    if limits is not None and not validate_daily_limit_config_shape(entry["daily_limit_config"]):
        raise ValidationError("Invalid daily limit config", details={"fields": ["daily_limit_config"]})
    fields = payload.model_dump(exclude={"password", "forms", "daily_limit_config"})
    return AdminUser(
        **fields,
        password_hash=payload.password,
        forms=list(payload.forms or []),
        daily_limit_config=(
            {k: DailyLimitConfig(alert=v.alert, block=v.block) for k, v in limits.items()} if limits else None
        ),
    )


class ConfigAdminRepository:
    """Read-only AdminRepository over Settings.admin_users.

    Configured admins carry a plaintext "password" entry (or none, for
    federated-only accounts). It is compared in constant time. Config admins
    have no surrogate id, so id lookups always miss.
    """

    writable = False

    def __init__(self, entries: list[dict[str, Any]]) -> None:
        self._admins = [_config_entry_to_admin(e) for e in entries]

    async def get(self, identifier: AdminIdentifier, active: bool = True) -> Optional[AdminUser]:
        if not isinstance(identifier, str) or not identifier:
            return None
        wanted = identifier.lower()
        for admin in self._admins:
            if admin.email.lower() == wanted and (admin.active or not active):
                return admin
        return None

    async def list_emails(self, active: bool = True, company: Optional[str] = None) -> list[str]:
        return sorted(
            a.email.lower()
            for a in self._admins
            if (a.active or not active) and (company is None or a.company == company)
        )

    async def insert(self, admin: AdminUser) -> int:
        raise DirectoryReadOnly("Cannot add admins if DB is not available")

    async def update(self, admin_id: int, fields: dict[str, Any]) -> bool:
        raise DirectoryReadOnly("Cannot update admins if DB is not available")

    async def delete(self, id_or_email: AdminIdentifier) -> bool:
        raise DirectoryReadOnly("Cannot remove admins if DB is not available")

    def password_matches(self, admin: AdminUser, password: str) -> bool:
        if not isinstance(password, str) or not admin.password_hash or not password:
            return False
        return hmac.compare_digest(admin.password_hash.encode("utf-8"), password.encode("utf-8"))
